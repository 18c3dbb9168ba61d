"""ROC filters: predicates deciding whether a classified record counts toward a named curve.

Filters form a closed set of kinds rather than a class hierarchy:

``all``
    Pass-through. Elided when filters are combined.
``field``
    Predicate over the record alone (ALT allele count, INFO/FORMAT expressions).
``genotype``
    Predicate over the record and the selected sample's genotype.
``composite``
    Ordered members, all of which must accept.

Every curve produced by an evaluation is a composite built by :func:`combine_filters`.
"""

from __future__ import annotations

import logging
import operator
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import ConfigurationError
from .models import ClassifiedRecord, VcfHeaderInfo
from .writer import roc_file_stem

logger = logging.getLogger(__name__)

KIND_ALL = "all"
KIND_FIELD = "field"
KIND_GENOTYPE = "genotype"
KIND_COMPOSITE = "composite"

Genotype = Optional[Tuple[int, ...]]
Predicate = Callable[[ClassifiedRecord, Genotype], bool]
HeaderCheck = Callable[[VcfHeaderInfo], None]


@dataclass(eq=False)
class RocFilter:
    """A named predicate over a (record, genotype) pair.

    ``rescale`` is True to rescale TP counts to the ALL baseline, False to never
    rescale, and None to inherit the run-wide default.
    """

    name: str
    kind: str
    predicate: Optional[Predicate] = None
    members: Tuple["RocFilter", ...] = ()
    rescale: Optional[bool] = None
    header_check: Optional[HeaderCheck] = field(default=None, repr=False)

    @property
    def requires_gt(self) -> bool:
        if self.kind == KIND_COMPOSITE:
            return any(m.requires_gt for m in self.members)
        return self.kind == KIND_GENOTYPE

    def set_header(self, header: VcfHeaderInfo) -> None:
        if self.kind == KIND_COMPOSITE:
            for m in self.members:
                m.set_header(header)
        elif self.header_check is not None:
            self.header_check(header)

    def accept(self, record: ClassifiedRecord, genotype: Genotype) -> bool:
        if self.kind == KIND_ALL:
            return True
        if self.kind == KIND_COMPOSITE:
            return all(m.accept(record, genotype) for m in self.members)
        assert self.predicate is not None
        return self.predicate(record, genotype)


ALL = RocFilter(name="ALL", kind=KIND_ALL)


def combine_filters(filters: Iterable[RocFilter], rescale: Optional[bool] = None) -> RocFilter:
    """Combine filters with AND semantics.

    Pass-through filters are dropped; the name is the remaining member names joined
    with ``+`` in input order (duplicates kept). Combining only pass-through filters
    gives an accept-all filter with an empty name.
    """
    members = tuple(f for f in filters if f.kind != KIND_ALL)
    name = "+".join(f.name for f in members)
    return RocFilter(name=name, kind=KIND_COMPOSITE, members=members, rescale=rescale)


# -----------------
# variant type
# -----------------


def _allele_type(ref: str, alt: str) -> str:
    if alt.startswith("<") or alt in ("*", ".") or "[" in alt or "]" in alt:
        return "other"
    if len(ref) == len(alt):
        return "snp" if len(ref) == 1 else "mnp"
    return "indel"


def _called_alts(record: ClassifiedRecord, genotype: Genotype) -> List[str]:
    """ALT alleles called in the genotype, or all ALTs when no genotype is available."""
    if genotype is None:
        return list(record.alts)
    out: List[str] = []
    for a in sorted(set(genotype)):
        if 0 < a <= len(record.alts):
            out.append(record.alts[a - 1])
    return out


def _allele_types(record: ClassifiedRecord, genotype: Genotype) -> List[str]:
    return [_allele_type(record.ref, alt) for alt in _called_alts(record, genotype)]


def _is_snp(record: ClassifiedRecord, genotype: Genotype) -> bool:
    types = _allele_types(record, genotype)
    return bool(types) and all(t == "snp" for t in types)


def _is_non_snp(record: ClassifiedRecord, genotype: Genotype) -> bool:
    types = _allele_types(record, genotype)
    return bool(types) and not all(t == "snp" for t in types)


def _is_mnp(record: ClassifiedRecord, genotype: Genotype) -> bool:
    types = _allele_types(record, genotype)
    return "mnp" in types and "indel" not in types


def _is_indel(record: ClassifiedRecord, genotype: Genotype) -> bool:
    return "indel" in _allele_types(record, genotype)


# -----------------
# zygosity
# -----------------


def _is_het(record: ClassifiedRecord, genotype: Genotype) -> bool:
    return genotype is not None and len(set(genotype)) > 1


def _is_hom(record: ClassifiedRecord, genotype: Genotype) -> bool:
    return genotype is not None and len(set(genotype)) == 1 and genotype[0] != 0


# -----------------
# allele count
# -----------------


def _is_biallelic(record: ClassifiedRecord, genotype: Genotype) -> bool:
    return len(record.alts) == 1


def _is_multiallelic(record: ClassifiedRecord, genotype: Genotype) -> bool:
    return len(record.alts) > 1


_BUILTIN: Dict[str, Tuple[str, Predicate]] = {
    "SNP": (KIND_GENOTYPE, _is_snp),
    "NON_SNP": (KIND_GENOTYPE, _is_non_snp),
    "MNP": (KIND_GENOTYPE, _is_mnp),
    "INDEL": (KIND_GENOTYPE, _is_indel),
    "HET": (KIND_GENOTYPE, _is_het),
    "HOM": (KIND_GENOTYPE, _is_hom),
    "BIALLELIC": (KIND_FIELD, _is_biallelic),
    "MULTIALLELIC": (KIND_FIELD, _is_multiallelic),
}


def builtin_filter_names() -> List[str]:
    return ["ALL"] + sorted(_BUILTIN)


# -----------------
# expressions
# -----------------

_OPS: Dict[str, Callable[[object, object], bool]] = {
    ">=": operator.ge,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
    ">": operator.gt,
    "<": operator.lt,
}

_EXPR_RE = re.compile(
    r"^\s*(?:(?P<qual>QUAL)|(?P<section>INFO|FORMAT)\.(?P<key>[A-Za-z0-9_.]+?))"
    r"\s*(?:(?P<op>>=|<=|==|!=|>|<)\s*(?P<value>\S+))?\s*$"
)


def _coerce(value: str) -> object:
    try:
        return float(value)
    except ValueError:
        return value


def _compare(actual: object, op: str, expected: object) -> bool:
    if isinstance(actual, (list, tuple)):
        return any(_compare(a, op, expected) for a in actual)
    if actual is None:
        return False
    if isinstance(expected, float):
        try:
            actual = float(actual)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return False
    else:
        actual = str(actual)
    try:
        return _OPS[op](actual, expected)
    except TypeError:
        return False


def expression_filter(name: str, expr: str, rescale: Optional[bool] = None) -> RocFilter:
    """Build a field filter from ``QUAL<op>v``, ``INFO.KEY[<op>v]`` or ``FORMAT.KEY[<op>v]``.

    Without a comparison the filter accepts records where the field is present
    (and not False, so INFO flags work).
    """
    m = _EXPR_RE.match(expr)
    if m is None:
        raise ConfigurationError(f"Invalid ROC filter expression for '{name}': {expr}")
    op = m.group("op")
    expected = _coerce(m.group("value")) if op is not None else None

    if m.group("qual"):
        if op is None:
            raise ConfigurationError(f"QUAL expression for '{name}' needs a comparison: {expr}")

        def qual_pred(record: ClassifiedRecord, genotype: Genotype) -> bool:
            return _compare(record.qual, op, expected)

        return RocFilter(name=name, kind=KIND_FIELD, predicate=qual_pred, rescale=rescale)

    section = m.group("section")
    key = m.group("key")

    def lookup(record: ClassifiedRecord) -> object:
        values: Mapping[str, object] = record.info if section == "INFO" else record.format
        return values.get(key)

    def pred(record: ClassifiedRecord, genotype: Genotype) -> bool:
        actual = lookup(record)
        if op is None:
            return actual is not None and actual is not False
        return _compare(actual, op, expected)

    def check(header: VcfHeaderInfo) -> None:
        declared = header.info_fields if section == "INFO" else header.format_fields
        if key not in declared:
            raise ConfigurationError(
                f"ROC filter '{name}' references {section}.{key}, which is not declared in the VCF header"
            )
        if section == "FORMAT" and header.sample is None:
            raise ConfigurationError(
                f"ROC filter '{name}' references FORMAT.{key} but no sample could be resolved"
            )

    return RocFilter(
        name=name, kind=KIND_FIELD, predicate=pred, rescale=rescale, header_check=check
    )


def make_filter(identifier: str, expressions: Optional[Mapping[str, str]] = None) -> RocFilter:
    """Resolve one leaf identifier; the display name is the identifier as written."""
    ident = identifier.strip()
    if not ident:
        raise ConfigurationError("Empty ROC filter identifier")
    if ident.upper() == "ALL":
        return ALL
    if expressions:
        for expr_name, expr in expressions.items():
            if expr_name == ident:
                return expression_filter(ident, expr)
    builtin = _BUILTIN.get(ident.upper())
    if builtin is None:
        known = builtin_filter_names() + sorted(expressions or {})
        raise ConfigurationError(f"Unknown ROC filter '{ident}'. Known filters: {', '.join(known)}")
    kind, predicate = builtin
    return RocFilter(name=ident, kind=kind, predicate=predicate)


def build_roc_filters(
    specs: Sequence[Tuple[Sequence[str], Optional[bool]]],
    expressions: Optional[Mapping[str, str]] = None,
) -> List[RocFilter]:
    """Build one combined filter per (identifiers, rescale) spec.

    All identifiers are resolved here so that configuration errors surface before
    any record is read.
    """
    out: List[RocFilter] = []
    seen: Dict[str, str] = {}
    for identifiers, rescale in specs:
        combined = combine_filters([make_filter(i, expressions) for i in identifiers], rescale)
        stem = roc_file_stem(combined.name)
        if stem in seen:
            raise ConfigurationError(
                f"ROC filter '{'+'.join(identifiers)}' would write the same table ({stem}) as "
                f"the earlier curve '{seen[stem] or 'ALL'}'"
            )
        seen[stem] = combined.name
        out.append(combined)
    logger.debug("Built %d ROC filters: %s", len(out), [f.name or "ALL" for f in out])
    return out
