from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import ConfigurationError
from .filters import RocFilter, build_roc_filters
from .scores import REDUCE_ALLELE, REDUCE_MAX, ScoreExtractor
from .vcf_io import OUTPUT_MODES, OUTPUT_SPLIT

logger = logging.getLogger(__name__)

DEFAULT_ROC_SUBSETS = ("ALL", "SNP", "NON_SNP")

_RESCALE_SUFFIXES = {"rescale": True, "no-rescale": False, "norescale": False}

FilterSpec = Tuple[Tuple[str, ...], Optional[bool]]


def parse_filter_spec(text: str) -> FilterSpec:
    """Parse ``ID[+ID...][:rescale|:no-rescale]`` into identifiers and a rescale override."""
    body, rescale = text.strip(), None
    if ":" in body:
        body, suffix = body.rsplit(":", 1)
        key = suffix.strip().lower()
        if key not in _RESCALE_SUFFIXES:
            raise ConfigurationError(
                f"Unknown rescale option '{suffix}' in ROC subset '{text}' (use :rescale or :no-rescale)"
            )
        rescale = _RESCALE_SUFFIXES[key]
    identifiers = tuple(i.strip() for i in body.split("+"))
    if not body.strip() or any(not i for i in identifiers):
        raise ConfigurationError(f"Empty ROC filter identifier in '{text}'")
    return identifiers, rescale


def split_subsets(values: Iterable[str]) -> List[str]:
    """Flatten repeated/comma-separated ``--roc-subset`` values."""
    out: List[str] = []
    for v in values:
        out.extend(s.strip() for s in v.split(",") if s.strip())
    return out


def parse_expressions(values: Iterable[str]) -> Dict[str, str]:
    """Parse ``NAME=EXPR`` definitions."""
    out: Dict[str, str] = {}
    for v in values:
        if "=" not in v:
            raise ConfigurationError(f"ROC expression must look like NAME=EXPR: {v}")
        name, expr = v.split("=", 1)
        name = name.strip()
        if not name or "+" in name or ":" in name or "," in name:
            raise ConfigurationError(f"Invalid ROC expression name '{name}'")
        if name in out:
            raise ConfigurationError(f"ROC expression '{name}' is defined twice")
        out[name] = expr.strip()
    return out


@dataclass
class EvalConfig:
    """Validated evaluation settings.

    Attributes
    ----------
    filters:
        ROC subsets, one curve each: ``ID[+ID...][:rescale|:no-rescale]``.
    expressions:
        User-defined expression filters, NAME -> EXPR.
    rescale:
        Run-wide rescale default for filters without an override. None means no rescale.
    score_field, score_reduce:
        Where the score is read from and how multi-value fields are reduced.
    output_mode:
        Which classified VCF files are written; ROC tables are always written.
    """

    filters: Sequence[str] = DEFAULT_ROC_SUBSETS
    expressions: Dict[str, str] = field(default_factory=dict)
    rescale: Optional[bool] = None
    score_field: str = "QUAL"
    score_reduce: str = REDUCE_MAX
    output_mode: str = OUTPUT_SPLIT
    sample: Optional[str] = None
    gzip: bool = False
    threads: int = 1

    def __post_init__(self) -> None:
        if self.output_mode not in OUTPUT_MODES:
            raise ConfigurationError(
                f"Unknown output mode '{self.output_mode}'. Choose one of: {', '.join(OUTPUT_MODES)}"
            )
        if int(self.threads) < 1:
            raise ConfigurationError("threads must be >= 1")
        if not self.filters:
            self.filters = DEFAULT_ROC_SUBSETS
        self.filter_specs: List[FilterSpec] = [parse_filter_spec(f) for f in self.filters]
        # Resolve everything now so errors surface before any record is read.
        self.build_filters()
        self.build_score_extractor()

    @property
    def rescale_default(self) -> bool:
        return bool(self.rescale)

    def build_filters(self) -> List[RocFilter]:
        """Fresh filter instances (one set per synchronizer or shard)."""
        return build_roc_filters(self.filter_specs, self.expressions)

    def build_score_extractor(self) -> ScoreExtractor:
        return ScoreExtractor(self.score_field, reduce=self.score_reduce)

    @property
    def needs_genotypes(self) -> bool:
        """Whether any filter (or the allele score reduction) reads genotypes."""
        if self.score_reduce == REDUCE_ALLELE:
            return True
        return any(f.requires_gt for f in self.build_filters())

    def as_dict(self) -> Dict[str, object]:
        return {
            "filters": list(self.filters),
            "expressions": dict(self.expressions),
            "rescale": self.rescale,
            "score_field": self.score_field,
            "score_reduce": self.score_reduce,
            "output_mode": self.output_mode,
            "sample": self.sample,
            "gzip": self.gzip,
            "threads": int(self.threads),
        }
