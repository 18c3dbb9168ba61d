from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import SynchronizerStateError
from .models import Classification, RocCurve, RocPoint

logger = logging.getLogger(__name__)


def coalesce_points(points: Iterable[RocPoint]) -> Tuple[RocPoint, ...]:
    """Fold points into one entry per distinct score, sorted by score descending.

    Pure function of the multiset of input points: input order does not matter.
    """
    by_score: Dict[float, List[int]] = {}
    for p in points:
        counts = by_score.setdefault(p.score, [0, 0])
        counts[0] += p.raw_tp
        counts[1] += p.fp
    return tuple(
        RocPoint(score=s, tp=float(c[0]), fp=c[1], raw_tp=c[0])
        for s, c in sorted(by_score.items(), key=lambda kv: kv[0], reverse=True)
    )


class RocAccumulator:
    """Running curve for one filter, keyed by score.

    Records with an Absent score are tallied per outcome and never enter the
    score-keyed points.
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._counts: Dict[float, List[int]] = {}
        self._absent = {Classification.TP: 0, Classification.FP: 0, Classification.FN: 0}
        self._baseline_total = 0
        self._curve: Optional[RocCurve] = None

    @property
    def finalized(self) -> bool:
        return self._curve is not None

    def _check_open(self) -> None:
        if self._curve is not None:
            raise SynchronizerStateError(f"ROC accumulator '{self.name}' is already finalized")

    def add(self, score: Optional[float], outcome: Classification) -> None:
        """Count one record. FN records only contribute when their score is Absent."""
        self._check_open()
        if outcome not in self._absent:
            raise ValueError(f"Cannot accumulate a {outcome.value} record")
        if score is None:
            self._absent[outcome] += 1
            return
        if outcome is Classification.FN:
            return
        counts = self._counts.get(score)
        if counts is None:
            counts = self._counts[score] = [0, 0]
        if outcome is Classification.TP:
            counts[0] += 1
        else:
            counts[1] += 1

    def add_baseline_total(self, n: int = 1) -> None:
        self._check_open()
        if n < 0:
            raise ValueError("Baseline total increments must be non-negative")
        self._baseline_total += n

    def finalize(self) -> RocCurve:
        """Sort and coalesce the accumulated points; repeated calls return the same curve."""
        if self._curve is None:
            points = coalesce_points(
                RocPoint(score=s, tp=float(c[0]), fp=c[1], raw_tp=c[0])
                for s, c in self._counts.items()
            )
            self._curve = RocCurve(
                name=self.name,
                points=points,
                baseline_total=self._baseline_total,
                absent_tp=self._absent[Classification.TP],
                absent_fp=self._absent[Classification.FP],
                absent_fn=self._absent[Classification.FN],
            )
            self._counts = {}
            logger.debug(
                "Finalized ROC '%s': %d distinct scores, %d absent, baseline total %d",
                self.name or "ALL",
                len(points),
                self._curve.absent_count,
                self._baseline_total,
            )
        return self._curve


def merge_curves(curves: Sequence[RocCurve], name: Optional[str] = None) -> RocCurve:
    """Combine unscaled per-shard curves of the same filter.

    Points are unioned and re-coalesced and totals summed, so the result does not
    depend on shard count or order.
    """
    if not curves:
        raise ValueError("merge_curves needs at least one curve")
    if any(c.scale != 1.0 for c in curves):
        raise ValueError("Only unscaled curves can be merged; rescale after merging")
    return RocCurve(
        name=curves[0].name if name is None else name,
        points=coalesce_points(p for c in curves for p in c.points),
        baseline_total=sum(c.baseline_total for c in curves),
        absent_tp=sum(c.absent_tp for c in curves),
        absent_fp=sum(c.absent_fp for c in curves),
        absent_fn=sum(c.absent_fn for c in curves),
    )


def scaled_curve(curve: RocCurve, factor: float) -> RocCurve:
    points = tuple(replace(p, tp=p.raw_tp * factor) for p in curve.points)
    return replace(curve, points=points, scale=factor)


def rescale_factor(curve: RocCurve, reference: RocCurve) -> float:
    """Ratio of the reference (ALL) raw TP total to the curve's own raw TP total."""
    own = curve.raw_tp_total
    if own == 0:
        return 1.0
    return reference.raw_tp_total / float(own)


def rescale_curves(
    curves: Sequence[RocCurve],
    flags: Sequence[bool],
    reference: RocCurve,
) -> List[RocCurve]:
    """Second finalize phase: scale each flagged curve onto the ALL baseline.

    ``reference`` must already be final, so every factor sees the complete ALL total.
    """
    if len(curves) != len(flags):
        raise ValueError("curves and flags must have the same length")
    out: List[RocCurve] = []
    for curve, flag in zip(curves, flags):
        if not flag:
            out.append(curve)
            continue
        factor = rescale_factor(curve, reference)
        logger.info("Rescaling ROC '%s' by %.4f", curve.name or "ALL", factor)
        out.append(scaled_curve(curve, factor))
    return out
