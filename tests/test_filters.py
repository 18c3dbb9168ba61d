import pytest

from vcfroc.errors import ConfigurationError
from vcfroc.filters import (
    ALL,
    KIND_FIELD,
    KIND_GENOTYPE,
    RocFilter,
    build_roc_filters,
    combine_filters,
    expression_filter,
    make_filter,
)
from vcfroc.models import Classification, ClassifiedRecord, VcfHeaderInfo


def make_record(ref="A", alts=("G",), gt=(0, 1), **kw) -> ClassifiedRecord:
    return ClassifiedRecord(
        chrom="chr1",
        pos=kw.pop("pos", 100),
        ref=ref,
        alts=tuple(alts),
        classification=kw.pop("classification", Classification.TP),
        genotype=gt,
        **kw,
    )


def test_combined_name_elides_all_and_keeps_order() -> None:
    f = combine_filters([ALL, make_filter("SNP"), ALL, make_filter("het")])
    assert f.name == "SNP+het"
    assert [m.name for m in f.members] == ["SNP", "het"]


def test_combined_all_only_is_accept_all_with_empty_name() -> None:
    f = combine_filters([ALL, ALL])
    assert f.name == ""
    assert f.members == ()
    assert not f.requires_gt
    assert f.accept(make_record(ref="A", alts=("AT",), gt=None), None)


def test_combined_duplicate_fragments_are_kept() -> None:
    f = combine_filters([make_filter("SNP"), make_filter("snp")])
    assert f.name == "SNP+snp"


def test_combined_accept_is_and_and_requires_gt_is_or() -> None:
    yes = RocFilter(name="yes", kind=KIND_FIELD, predicate=lambda r, gt: True)
    no = RocFilter(name="no", kind=KIND_FIELD, predicate=lambda r, gt: False)
    gt_yes = RocFilter(name="gt", kind=KIND_GENOTYPE, predicate=lambda r, gt: True)
    rec = make_record()

    assert combine_filters([yes, gt_yes]).accept(rec, rec.genotype)
    assert not combine_filters([yes, no, gt_yes]).accept(rec, rec.genotype)
    assert not combine_filters([yes, no]).requires_gt
    assert combine_filters([no, gt_yes]).requires_gt


def test_combined_short_circuits_on_first_reject() -> None:
    calls = []

    def record_call(name, result):
        def pred(r, gt):
            calls.append(name)
            return result

        return pred

    f = combine_filters(
        [
            RocFilter(name="a", kind=KIND_FIELD, predicate=record_call("a", False)),
            RocFilter(name="b", kind=KIND_FIELD, predicate=record_call("b", True)),
        ]
    )
    assert not f.accept(make_record(), None)
    assert calls == ["a"]


def test_set_header_binds_every_member_once() -> None:
    bound = []
    members = [
        RocFilter(name=n, kind=KIND_FIELD, predicate=lambda r, gt: True, header_check=lambda h, n=n: bound.append(n))
        for n in ("x", "y", "z")
    ]
    combine_filters([members[0], ALL, members[1], members[2]]).set_header(VcfHeaderInfo())
    assert sorted(bound) == ["x", "y", "z"]


def test_variant_type_filters() -> None:
    snp = make_filter("SNP")
    non_snp = make_filter("NON_SNP")
    indel = make_filter("INDEL")
    mnp = make_filter("MNP")

    rec = make_record(ref="A", alts=("G",))
    assert snp.accept(rec, rec.genotype)
    assert not non_snp.accept(rec, rec.genotype)

    rec = make_record(ref="A", alts=("AT",))
    assert indel.accept(rec, rec.genotype)
    assert non_snp.accept(rec, rec.genotype)
    assert not snp.accept(rec, rec.genotype)

    rec = make_record(ref="AC", alts=("GT",))
    assert mnp.accept(rec, rec.genotype)
    assert not indel.accept(rec, rec.genotype)

    # Only the called allele counts: the genotype picks the SNP of a SNP/indel site.
    rec = make_record(ref="A", alts=("G", "AT"), gt=(0, 1))
    assert snp.accept(rec, rec.genotype)
    assert not indel.accept(rec, rec.genotype)
    # Without a genotype all ALTs count.
    assert indel.accept(rec, None)


def test_zygosity_filters_need_genotype() -> None:
    het = make_filter("HET")
    hom = make_filter("HOM")
    assert het.requires_gt and hom.requires_gt

    rec = make_record(gt=(0, 1))
    assert het.accept(rec, rec.genotype)
    assert not hom.accept(rec, rec.genotype)

    rec = make_record(gt=(1, 1))
    assert hom.accept(rec, rec.genotype)
    assert not het.accept(rec, rec.genotype)

    assert not het.accept(rec, None)
    assert not hom.accept(make_record(gt=(0, 0)), (0, 0))


def test_allele_count_filters() -> None:
    rec = make_record(alts=("G", "T"), gt=(1, 2))
    assert make_filter("MULTIALLELIC").accept(rec, None)
    assert not make_filter("BIALLELIC").accept(rec, None)
    assert not make_filter("MULTIALLELIC").requires_gt


def test_unknown_filter_fails_at_construction() -> None:
    with pytest.raises(ConfigurationError, match="NOPE"):
        build_roc_filters([(("SNP", "NOPE"), None)])


def test_duplicate_curve_names_rejected() -> None:
    with pytest.raises(ConfigurationError):
        build_roc_filters([(("ALL",), None), (("ALL", "ALL"), None)])


def test_curves_sharing_an_output_table_rejected() -> None:
    # The unfiltered curve writes weighted_roc.tsv, as would a filter named "weighted".
    with pytest.raises(ConfigurationError, match="weighted_roc"):
        build_roc_filters([(("ALL",), None), (("weighted",), None)], {"weighted": "QUAL>=10"})
    # Characters outside [A-Za-z0-9+_.-] collapse to "_" in table names.
    with pytest.raises(ConfigurationError, match="a_b_roc"):
        build_roc_filters(
            [(("a b",), None), (("a_b",), None)],
            {"a b": "QUAL>=10", "a_b": "QUAL>=20"},
        )
    # Distinct tables are fine.
    filters = build_roc_filters([(("a.b",), None), (("a_b",), None)], {"a.b": "QUAL>=1", "a_b": "QUAL>=2"})
    assert [f.name for f in filters] == ["a.b", "a_b"]


def test_build_roc_filters_carries_rescale_override() -> None:
    filters = build_roc_filters([(("ALL",), None), (("SNP", "HET"), True)])
    assert [f.name for f in filters] == ["", "SNP+HET"]
    assert filters[0].rescale is None
    assert filters[1].rescale is True
    assert filters[1].requires_gt


def test_expression_filter_compares_info_values() -> None:
    f = expression_filter("deep", "INFO.DP>=20")
    header = VcfHeaderInfo(info_fields={"DP": "1"})
    f.set_header(header)
    assert f.accept(make_record(info={"DP": 25}), None)
    assert not f.accept(make_record(info={"DP": 5}), None)
    assert not f.accept(make_record(info={}), None)


def test_expression_filter_presence_and_qual() -> None:
    db = expression_filter("db", "INFO.DB")
    assert db.accept(make_record(info={"DB": True}), None)
    assert not db.accept(make_record(info={}), None)

    q = expression_filter("q30", "QUAL>30")
    assert q.accept(make_record(qual=31.0), None)
    assert not q.accept(make_record(qual=None), None)


def test_expression_filter_header_errors() -> None:
    with pytest.raises(ConfigurationError, match="INFO.DP"):
        expression_filter("deep", "INFO.DP>=20").set_header(VcfHeaderInfo())
    with pytest.raises(ConfigurationError, match="sample"):
        expression_filter("gq", "FORMAT.GQ>10").set_header(
            VcfHeaderInfo(format_fields={"GQ": "1"}, sample=None)
        )
    with pytest.raises(ConfigurationError):
        expression_filter("bad", "DP>>3")


def test_make_filter_uses_expressions_before_builtins() -> None:
    f = make_filter("deep", {"deep": "INFO.DP>3"})
    assert f.name == "deep"
    assert f.kind == KIND_FIELD
