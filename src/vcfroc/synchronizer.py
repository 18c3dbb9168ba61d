from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from tqdm import tqdm

from .errors import EvalCancelled, SynchronizerStateError
from .filters import RocFilter, combine_filters
from .models import Classification, ClassifiedRecord, RocCurve, VcfHeaderInfo
from .roc import RocAccumulator, merge_curves, rescale_curves
from .scores import ScoreExtractor

logger = logging.getLogger(__name__)

IDLE = "idle"
STREAMING = "streaming"
DRAINING = "draining"
DONE = "done"


@dataclass
class EvalResult:
    """Curves for one evaluation, in filter order, plus stream counters."""

    curves: List[RocCurve]
    reference: RocCurve
    counts: Dict[str, int] = field(default_factory=dict)
    runtime_seconds: float = 0.0


def _new_counts() -> Dict[str, int]:
    return {
        "records_total": 0,
        "records_not_assessed": 0,
        "records_tp": 0,
        "records_fp": 0,
        "records_fn": 0,
        "records_absent_score": 0,
    }


class EvalSynchronizer:
    """Drain a classification stream into one ROC accumulator per filter.

    Construction binds the filters and score extractor to ``header`` (raising
    ConfigurationError before any record is read) and allocates accumulators.
    A synchronizer runs exactly once: ``idle -> streaming -> draining -> done``.
    """

    def __init__(
        self,
        filters: Sequence[RocFilter],
        score_extractor: ScoreExtractor,
        header: VcfHeaderInfo,
        *,
        rescale_default: bool = False,
    ) -> None:
        self.filters = list(filters)
        self.score_extractor = score_extractor
        self.rescale_default = bool(rescale_default)

        for f in self.filters:
            f.set_header(header)
        score_extractor.set_header(header)

        self.requires_gt = any(f.requires_gt for f in self.filters)
        self._accumulators: Optional[List[RocAccumulator]] = [
            RocAccumulator(f.name) for f in self.filters
        ]
        self._reference: Optional[RocAccumulator] = RocAccumulator("")
        self._cancel = threading.Event()
        self.counts = _new_counts()
        self.state = IDLE

    def cancel(self) -> None:
        """Ask a running evaluation to stop before pulling the next record."""
        self._cancel.set()

    def effective_rescale(self, f: RocFilter) -> bool:
        return self.rescale_default if f.rescale is None else bool(f.rescale)

    def _discard(self) -> None:
        self._accumulators = None
        self._reference = None
        self.state = DONE

    def _deposit(self, record: ClassifiedRecord) -> None:
        assert self._accumulators is not None and self._reference is not None
        outcome = record.classification
        gt = record.genotype if self.requires_gt else None
        score = self.score_extractor.extract(record)
        if score is None:
            self.counts["records_absent_score"] += 1

        targets = [self._reference]
        for f, acc in zip(self.filters, self._accumulators):
            if f.accept(record, gt):
                targets.append(acc)

        for acc in targets:
            acc.add(score, outcome)
            if outcome is not Classification.FP:
                acc.add_baseline_total(1)

    def run(
        self,
        stream: Iterable[ClassifiedRecord],
        *,
        rescale: bool = True,
        progress: bool = False,
    ) -> EvalResult:
        """Consume ``stream`` in order and return the finalized curves.

        With ``rescale=False`` the raw curves are returned so that shard results can
        be merged before rescaling.
        """
        if self.state != IDLE:
            raise SynchronizerStateError(f"EvalSynchronizer cannot run from state '{self.state}'")
        t0 = time.time()
        self.state = STREAMING

        it: Iterable[ClassifiedRecord] = stream
        if progress:
            it = tqdm(it, unit="record", desc="Evaluating records")

        try:
            for record in it:
                if self._cancel.is_set():
                    break
                self.counts["records_total"] += 1
                outcome = record.classification
                if outcome is Classification.NOT_ASSESSED:
                    self.counts["records_not_assessed"] += 1
                    continue
                self.counts["records_" + outcome.value.lower()] += 1
                self._deposit(record)
        except BaseException:
            logger.error("Classification stream failed; discarding unfinalized ROC data")
            self._discard()
            raise
        finally:
            if progress:
                it.close()  # type: ignore[union-attr]

        if self._cancel.is_set():
            logger.warning("Evaluation cancelled; discarding unfinalized ROC data")
            self._discard()
            raise EvalCancelled("Evaluation was cancelled before the ROC curves were finalized")

        self.state = DRAINING
        assert self._accumulators is not None and self._reference is not None
        reference = self._reference.finalize()
        curves = [acc.finalize() for acc in self._accumulators]
        if rescale:
            curves = rescale_curves(curves, [self.effective_rescale(f) for f in self.filters], reference)
        self.state = DONE

        logger.info(
            "Evaluated %d records (%d TP, %d FP, %d FN, %d not assessed) into %d curves",
            self.counts["records_total"],
            self.counts["records_tp"],
            self.counts["records_fp"],
            self.counts["records_fn"],
            self.counts["records_not_assessed"],
            len(curves),
        )
        return EvalResult(
            curves=curves,
            reference=reference,
            counts=dict(self.counts),
            runtime_seconds=float(time.time() - t0),
        )


def evaluate(
    stream: Iterable[ClassifiedRecord],
    filters: Optional[Sequence[RocFilter]] = None,
    *,
    header: Optional[VcfHeaderInfo] = None,
    score_extractor: Optional[ScoreExtractor] = None,
    rescale_default: bool = False,
    progress: bool = False,
) -> EvalResult:
    """One-shot evaluation; defaults to the unfiltered curve scored by QUAL."""
    if filters is None:
        filters = [combine_filters([])]
    sync = EvalSynchronizer(
        filters,
        score_extractor or ScoreExtractor("QUAL"),
        header or VcfHeaderInfo(),
        rescale_default=rescale_default,
    )
    return sync.run(stream, progress=progress)


def evaluate_shards(
    shards: Sequence[Callable[[], Iterable[ClassifiedRecord]]],
    filter_factory: Callable[[], Sequence[RocFilter]],
    score_factory: Callable[[], ScoreExtractor],
    header: VcfHeaderInfo,
    *,
    rescale_default: bool = False,
    threads: int = 1,
) -> EvalResult:
    """Evaluate independent shards (e.g. one per contig) and merge their curves.

    Each shard gets its own filters, extractor and accumulators. Raw shard curves
    are merged per filter and only then rescaled.
    """
    if not shards:
        raise ValueError("evaluate_shards needs at least one shard")
    t0 = time.time()

    def run_shard(open_stream: Callable[[], Iterable[ClassifiedRecord]]) -> EvalResult:
        sync = EvalSynchronizer(
            filter_factory(), score_factory(), header, rescale_default=rescale_default
        )
        return sync.run(open_stream(), rescale=False)

    with ThreadPoolExecutor(max_workers=max(1, int(threads))) as pool:
        results = list(pool.map(run_shard, shards))

    filters = filter_factory()
    merged = [
        merge_curves([r.curves[i] for r in results]) for i in range(len(filters))
    ]
    reference = merge_curves([r.reference for r in results])
    flags = [rescale_default if f.rescale is None else bool(f.rescale) for f in filters]
    curves = rescale_curves(merged, flags, reference)

    counts = _new_counts()
    for r in results:
        for k, v in r.counts.items():
            counts[k] = counts.get(k, 0) + v
    logger.info("Merged %d shards into %d curves", len(results), len(curves))
    return EvalResult(
        curves=curves,
        reference=reference,
        counts=counts,
        runtime_seconds=float(time.time() - t0),
    )
