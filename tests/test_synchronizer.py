from typing import Iterator, List, Optional

import pytest

from vcfroc.errors import ConfigurationError, EvalCancelled, SynchronizerStateError
from vcfroc.filters import KIND_GENOTYPE, RocFilter, build_roc_filters, combine_filters, make_filter
from vcfroc.models import Classification, ClassifiedRecord, VcfHeaderInfo
from vcfroc.scores import ScoreExtractor
from vcfroc.synchronizer import DONE, IDLE, EvalSynchronizer, evaluate, evaluate_shards

TP = Classification.TP
FP = Classification.FP
FN = Classification.FN
NA = Classification.NOT_ASSESSED


def rec(pos: int, cls: Classification, qual: Optional[float], ref="A", alt="G", gt=(0, 1), chrom="chr1"):
    return ClassifiedRecord(
        chrom=chrom, pos=pos, ref=ref, alts=(alt,), classification=cls, qual=qual, genotype=gt
    )


def ten_records() -> List[ClassifiedRecord]:
    classes = [TP, TP, FP, TP, FP, TP, FP, TP, TP, FN]
    scores = [90, 85, 85, 70, 60, 50, 40, 30, None, None]
    return [rec(10 * (i + 1), c, s) for i, (c, s) in enumerate(zip(classes, scores))]


def test_end_to_end_all_filter_by_qual() -> None:
    result = evaluate(ten_records(), [combine_filters([make_filter("ALL")])])
    (curve,) = result.curves
    assert curve.name == ""
    assert len(curve.points) == 7
    assert [p.score for p in curve.points] == [90, 85, 70, 60, 50, 40, 30]
    assert curve.points[1].raw_tp == 1 and curve.points[1].fp == 1
    assert curve.absent_count == 2
    assert curve.baseline_total == 7
    assert result.counts["records_tp"] == 6
    assert result.counts["records_fp"] == 3
    assert result.counts["records_fn"] == 1
    last = curve.rows()[-1]
    assert last.raw_tp == 6 and last.fp == 3 and last.fn == 1


def test_not_assessed_records_never_reach_filters() -> None:
    seen = []

    def spy(record, gt):
        seen.append(record.pos)
        return True

    f = combine_filters([RocFilter(name="spy", kind=KIND_GENOTYPE, predicate=spy)])
    records = [rec(1, TP, 5.0), rec(2, NA, 9.0), rec(3, FP, 4.0)]
    result = evaluate(records, [f])
    assert seen == [1, 3]
    assert result.counts["records_not_assessed"] == 1
    assert [p.score for p in result.curves[0].points] == [5.0, 4.0]


def test_genotype_only_passed_when_required() -> None:
    received = []

    def field_pred(record, gt):
        received.append(gt)
        return True

    f = combine_filters([RocFilter(name="f", kind="field", predicate=field_pred)])
    evaluate([rec(1, TP, 1.0, gt=(1, 1))], [f])
    assert received == [None]

    received.clear()
    evaluate([rec(1, TP, 1.0, gt=(1, 1))], [f, combine_filters([make_filter("HET")])])
    assert received == [(1, 1)]


def test_filtered_curves_and_rescale_default() -> None:
    records = [
        rec(1, TP, 9.0),
        rec(2, TP, 8.0, ref="A", alt="AT"),
        rec(3, TP, 7.0),
        rec(4, FP, 6.0, ref="A", alt="AT"),
        rec(5, FN, None),
    ]
    filters = build_roc_filters([(("ALL",), None), (("SNP",), None), (("INDEL",), False)])
    sync = EvalSynchronizer(filters, ScoreExtractor("QUAL"), VcfHeaderInfo(), rescale_default=True)
    result = sync.run(records)
    all_curve, snp, indel = result.curves

    assert all_curve.raw_tp_total == 3 and all_curve.scale == 1.0
    assert snp.raw_tp_total == 2 and snp.scale == 1.5
    assert [p.tp for p in snp.points] == [1.5, 1.5]
    assert indel.scale == 1.0
    assert indel.baseline_total == 1
    assert snp.baseline_total == 3  # the FN is a SNP


def test_rescale_to_twice_the_tp() -> None:
    records = [rec(i, TP, float(i)) for i in range(1, 51)]
    records += [rec(i, TP, float(i), ref="A", alt="AT") for i in range(51, 101)]
    filters = build_roc_filters([(("SNP",), True)])
    (snp,) = evaluate(records, filters).curves
    assert snp.raw_tp_total == 50
    assert snp.scale == 2.0
    assert all(p.tp == 2.0 * p.raw_tp for p in snp.points)


def test_run_once_only() -> None:
    sync = EvalSynchronizer([combine_filters([])], ScoreExtractor(), VcfHeaderInfo())
    assert sync.state == IDLE
    sync.run(ten_records())
    assert sync.state == DONE
    with pytest.raises(SynchronizerStateError):
        sync.run(ten_records())


def test_header_errors_surface_at_construction() -> None:
    filters = build_roc_filters([(("deep",), None)], {"deep": "INFO.DP>3"})
    with pytest.raises(ConfigurationError, match="INFO.DP"):
        EvalSynchronizer(filters, ScoreExtractor(), VcfHeaderInfo())


def test_stream_failure_discards_accumulators() -> None:
    def broken() -> Iterator[ClassifiedRecord]:
        yield rec(1, TP, 1.0)
        raise OSError("truncated file")

    sync = EvalSynchronizer([combine_filters([])], ScoreExtractor(), VcfHeaderInfo())
    with pytest.raises(OSError):
        sync.run(broken())
    assert sync.state == DONE
    with pytest.raises(SynchronizerStateError):
        sync.run([])


def test_cancel_stops_pulling_and_emits_nothing() -> None:
    sync = EvalSynchronizer([combine_filters([])], ScoreExtractor(), VcfHeaderInfo())
    pulled = []

    def stream() -> Iterator[ClassifiedRecord]:
        for r in ten_records():
            pulled.append(r.pos)
            if len(pulled) == 3:
                sync.cancel()
            yield r

    with pytest.raises(EvalCancelled):
        sync.run(stream())
    assert len(pulled) == 3
    assert sync.state == DONE


def test_sharded_evaluation_matches_single_pass() -> None:
    records = ten_records()
    chr2 = [
        rec(5, TP, 85.0, chrom="chr2"),
        rec(6, FP, 20.0, chrom="chr2", alt="GT"),
        rec(7, FN, 11.0, chrom="chr2"),
    ]
    specs = [(("ALL",), None), (("SNP",), True)]

    single = evaluate(records + chr2, build_roc_filters(specs))
    for threads in (1, 2):
        sharded = evaluate_shards(
            [lambda: iter(chr2), lambda: iter(records)],
            lambda: build_roc_filters(specs),
            ScoreExtractor,
            VcfHeaderInfo(),
            threads=threads,
        )
        assert sharded.curves == single.curves
        assert sharded.counts == single.counts
