from __future__ import annotations

import logging
import math
from typing import Any, List, Optional, Sequence

from .errors import ConfigurationError
from .models import ClassifiedRecord, VcfHeaderInfo

logger = logging.getLogger(__name__)

REDUCE_MAX = "max"
REDUCE_MIN = "min"
REDUCE_FIRST = "first"
REDUCE_ALLELE = "allele"

REDUCTIONS = (REDUCE_MAX, REDUCE_MIN, REDUCE_FIRST, REDUCE_ALLELE)

# VCF Number values the allele reduction can index; "1" is a scalar and never reduced.
_ALLELE_NUMBERS = ("A", "R", "1")


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(f):
        return None
    return f


class ScoreExtractor:
    """Read a numeric confidence score from a classified record.

    Parameters
    ----------
    field:
        ``QUAL``, ``INFO.<KEY>`` or ``FORMAT.<KEY>``. A bare ``<KEY>`` is read
        from FORMAT.
    reduce:
        How multi-value fields are reduced to one score: ``max``, ``min``,
        ``first``, or ``allele`` (value for the first called non-reference allele).
    """

    def __init__(self, field: str = "QUAL", *, reduce: str = REDUCE_MAX) -> None:
        field = field.strip()
        if not field:
            raise ConfigurationError("Score field must not be empty")
        if reduce not in REDUCTIONS:
            raise ConfigurationError(
                f"Unknown score reduction '{reduce}'. Choose one of: {', '.join(REDUCTIONS)}"
            )
        if field.upper() == "QUAL":
            self.section, self.key = "QUAL", "QUAL"
        elif "." in field and field.split(".", 1)[0].upper() in ("INFO", "FORMAT"):
            section, key = field.split(".", 1)
            self.section, self.key = section.upper(), key
        else:
            self.section, self.key = "FORMAT", field
        self.reduce = reduce
        self._number = "1"

    @property
    def field(self) -> str:
        if self.section == "QUAL":
            return "QUAL"
        return f"{self.section}.{self.key}"

    def set_header(self, header: VcfHeaderInfo) -> None:
        if self.section == "QUAL":
            return
        declared = header.info_fields if self.section == "INFO" else header.format_fields
        if self.key not in declared:
            raise ConfigurationError(
                f"Score field {self.field} is not declared in the VCF header"
            )
        if self.section == "FORMAT" and header.sample is None:
            raise ConfigurationError(
                f"Score field {self.field} needs a sample, but none could be resolved"
            )
        number = str(declared[self.key])
        if self.reduce == REDUCE_ALLELE and number not in _ALLELE_NUMBERS:
            raise ConfigurationError(
                f"Score field {self.field} has Number={number}; the allele reduction needs "
                "a per-allele field (Number=A or Number=R)"
            )
        self._number = number

    def extract(self, record: ClassifiedRecord) -> Optional[float]:
        """Return the score, or None when it is missing or not numeric."""
        if self.section == "QUAL":
            return _to_float(record.qual)
        values = record.info if self.section == "INFO" else record.format
        value = values.get(self.key)
        if isinstance(value, (list, tuple)):
            return self._reduce(value, record)
        return _to_float(value)

    def _reduce(self, values: Sequence[Any], record: ClassifiedRecord) -> Optional[float]:
        if self.reduce == REDUCE_ALLELE:
            return self._allele_value(values, record)
        if self.reduce == REDUCE_FIRST:
            return _to_float(values[0]) if values else None
        nums: List[float] = [f for f in (_to_float(v) for v in values) if f is not None]
        if not nums:
            return None
        return max(nums) if self.reduce == REDUCE_MAX else min(nums)

    def _allele_value(self, values: Sequence[Any], record: ClassifiedRecord) -> Optional[float]:
        gt = record.genotype
        if gt is None:
            return None
        called = [a for a in gt if a > 0]
        if not called:
            return None
        idx = called[0] if self._number == "R" else called[0] - 1
        if idx >= len(values):
            return None
        return _to_float(values[idx])
