import pytest

from vcfroc.errors import ConfigurationError
from vcfroc.models import Classification, ClassifiedRecord, VcfHeaderInfo
from vcfroc.scores import ScoreExtractor


def make_record(**kw) -> ClassifiedRecord:
    return ClassifiedRecord(
        chrom="chr1",
        pos=1,
        ref="A",
        alts=kw.pop("alts", ("G", "T")),
        classification=Classification.TP,
        **kw,
    )


HEADER = VcfHeaderInfo(
    samples=("S",),
    sample="S",
    info_fields={"AF": "A", "DP": "1"},
    format_fields={"GQ": "1", "AD": "R"},
)


def test_qual_score_and_absent() -> None:
    ex = ScoreExtractor("QUAL")
    assert ex.extract(make_record(qual=42.5)) == 42.5
    assert ex.extract(make_record(qual=None)) is None
    assert ex.extract(make_record(qual=float("nan"))) is None


def test_info_and_format_fields() -> None:
    ex = ScoreExtractor("INFO.DP")
    ex.set_header(HEADER)
    assert ex.extract(make_record(info={"DP": 12})) == 12.0
    assert ex.extract(make_record(info={})) is None
    assert ex.extract(make_record(info={"DP": "high"})) is None

    bare = ScoreExtractor("GQ")
    bare.set_header(HEADER)
    assert bare.field == "FORMAT.GQ"
    assert bare.extract(make_record(format={"GQ": 30})) == 30.0


def test_multi_value_reductions() -> None:
    rec = make_record(info={"AF": (0.2, 0.7)}, genotype=(0, 2))
    assert ScoreExtractor("INFO.AF", reduce="max").extract(rec) == 0.7
    assert ScoreExtractor("INFO.AF", reduce="min").extract(rec) == 0.2
    assert ScoreExtractor("INFO.AF", reduce="first").extract(rec) == 0.2

    allele = ScoreExtractor("INFO.AF", reduce="allele")
    allele.set_header(HEADER)
    assert allele.extract(rec) == 0.7
    assert allele.extract(make_record(info={"AF": (0.2, 0.7)}, genotype=None)) is None


def test_allele_reduction_on_number_r_field_skips_ref() -> None:
    ex = ScoreExtractor("FORMAT.AD", reduce="allele")
    ex.set_header(HEADER)
    rec = make_record(format={"AD": (10, 4, 6)}, genotype=(0, 1))
    assert ex.extract(rec) == 4.0


def test_missing_values_in_array_are_skipped() -> None:
    rec = make_record(info={"AF": (None, 0.3)})
    assert ScoreExtractor("INFO.AF", reduce="max").extract(rec) == 0.3
    assert ScoreExtractor("INFO.AF", reduce="first").extract(rec) is None


def test_configuration_errors() -> None:
    with pytest.raises(ConfigurationError):
        ScoreExtractor("QUAL", reduce="mean")
    with pytest.raises(ConfigurationError, match="INFO.XX"):
        ScoreExtractor("INFO.XX").set_header(HEADER)
    with pytest.raises(ConfigurationError, match="sample"):
        ScoreExtractor("FORMAT.GQ").set_header(VcfHeaderInfo(format_fields={"GQ": "1"}))


def test_allele_reduction_rejects_genotype_ordered_fields() -> None:
    header = VcfHeaderInfo(samples=("S",), sample="S", format_fields={"PL": "G", "XS": "."})
    with pytest.raises(ConfigurationError, match="Number=G"):
        ScoreExtractor("FORMAT.PL", reduce="allele").set_header(header)
    with pytest.raises(ConfigurationError, match="Number=."):
        ScoreExtractor("FORMAT.XS", reduce="allele").set_header(header)

    # Other reductions do not index by allele and accept any Number.
    ex = ScoreExtractor("FORMAT.PL", reduce="min")
    ex.set_header(header)
    assert ex.extract(make_record(format={"PL": (30, 0, 45)})) == 0.0
