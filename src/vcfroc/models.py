from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np


class Classification(str, Enum):
    """Outcome assigned to a record by the upstream matching engine."""

    TP = "TP"
    FP = "FP"
    FN = "FN"
    NOT_ASSESSED = "NOT_ASSESSED"


@dataclass(frozen=True)
class VcfHeaderInfo:
    """The parts of a VCF header that filters and score extraction bind to.

    Attributes
    ----------
    samples:
        All sample names declared in the header.
    sample:
        Sample whose FORMAT values and genotype are carried by the records, or None
        for sample-less VCFs.
    info_fields, format_fields:
        Declared field name -> VCF ``Number`` (as a string, e.g. ``"1"``, ``"A"``, ``"R"``).
    contigs:
        Contig names in header order; defines the genomic sort order of the stream.
    """

    samples: Tuple[str, ...] = ()
    sample: Optional[str] = None
    info_fields: Mapping[str, str] = field(default_factory=dict)
    format_fields: Mapping[str, str] = field(default_factory=dict)
    contigs: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ClassifiedRecord:
    """One variant record combined with its classification outcome.

    Coordinates are 1-based as in VCF.

    Attributes
    ----------
    info:
        INFO values keyed by field name (flags map to True).
    format:
        FORMAT values of the selected sample keyed by field name.
    genotype:
        Allele indices of the selected sample's GT, or None if absent, partially
        missing, or not decoded.
    source:
        Backing pysam record, when the record came from a VCF. Not part of equality.
    """

    chrom: str
    pos: int
    ref: str
    alts: Tuple[str, ...]
    classification: Classification
    qual: Optional[float] = None
    info: Mapping[str, Any] = field(default_factory=dict)
    format: Mapping[str, Any] = field(default_factory=dict)
    genotype: Optional[Tuple[int, ...]] = None
    source: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class RocPoint:
    """Counts for a single distinct score.

    ``tp`` is ``raw_tp`` multiplied by the owning curve's scale factor.
    """

    score: float
    tp: float
    fp: int
    raw_tp: int


@dataclass(frozen=True)
class CurveRow:
    """Cumulative counts and derived metrics down to (and including) ``score``.

    ``score`` is None for the trailing row that accounts for Absent-scored records.
    """

    score: Optional[float]
    tp: float
    fp: int
    raw_tp: int
    fn: int
    precision: float
    sensitivity: float
    f_measure: float


@dataclass(frozen=True)
class RocCurve:
    """Finalized evaluation for one named filter.

    ``points`` hold per-score counts, coalesced and sorted by score descending;
    ``rows()`` walks them cumulatively.
    """

    name: str
    points: Tuple[RocPoint, ...]
    baseline_total: int
    absent_tp: int = 0
    absent_fp: int = 0
    absent_fn: int = 0
    scale: float = 1.0

    @property
    def absent_count(self) -> int:
        return self.absent_tp + self.absent_fp + self.absent_fn

    @property
    def raw_tp_total(self) -> int:
        return sum(p.raw_tp for p in self.points) + self.absent_tp

    @property
    def fp_total(self) -> int:
        return sum(p.fp for p in self.points) + self.absent_fp

    def rows(self) -> List[CurveRow]:
        """Cumulative rows from the highest score down, plus the trailing Absent row."""
        raw_tp = np.array([p.raw_tp for p in self.points] + [self.absent_tp], dtype=np.int64)
        fp = np.array([p.fp for p in self.points] + [self.absent_fp], dtype=np.int64)
        cum_tp = np.cumsum(raw_tp)
        cum_fp = np.cumsum(fp)

        calls = cum_tp + cum_fp
        precision = np.divide(
            cum_tp, calls, out=np.zeros(len(calls), dtype=np.float64), where=calls > 0
        )
        if self.baseline_total > 0:
            sensitivity = cum_tp / float(self.baseline_total)
        else:
            sensitivity = np.zeros(len(cum_tp), dtype=np.float64)
        denom = precision + sensitivity
        f_measure = np.divide(
            2.0 * precision * sensitivity,
            denom,
            out=np.zeros(len(denom), dtype=np.float64),
            where=denom > 0,
        )

        scores: List[Optional[float]] = [p.score for p in self.points]
        scores.append(None)
        out: List[CurveRow] = []
        for i, score in enumerate(scores):
            out.append(
                CurveRow(
                    score=score,
                    tp=float(cum_tp[i]) * self.scale,
                    fp=int(cum_fp[i]),
                    raw_tp=int(cum_tp[i]),
                    fn=max(0, self.baseline_total - int(cum_tp[i])),
                    precision=float(precision[i]),
                    sensitivity=float(sensitivity[i]),
                    f_measure=float(f_measure[i]),
                )
            )
        return out

    def best_row(self) -> Optional[CurveRow]:
        """Scored row with the highest F-measure (highest score wins ties)."""
        rows = self.rows()[:-1]
        if not rows:
            return None
        idx = int(np.argmax([r.f_measure for r in rows]))
        return rows[idx]

    def summary(self) -> Dict[str, Any]:
        best = self.best_row()
        total = self.rows()[-1]
        return {
            "name": self.name,
            "baseline_total": self.baseline_total,
            "scale": self.scale,
            "distinct_scores": len(self.points),
            "absent_count": self.absent_count,
            "best_threshold": None if best is None else best.score,
            "best_f_measure": None if best is None else best.f_measure,
            "precision": total.precision,
            "sensitivity": total.sensitivity,
            "f_measure": total.f_measure,
        }
