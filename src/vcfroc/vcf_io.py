"""pysam-backed classification streams and classified-record writers.

Classified VCFs follow the vcfeval annotation convention:

* ``INFO/CALL`` on call records: ``TP``, ``FP``, ``IGN`` or ``OUT``.
* ``INFO/BASE`` on baseline records: ``TP``, ``FN``, ``IGN`` or ``OUT``.

CALL=TP/FP becomes TP/FP and BASE=FN becomes FN. A record carrying both a CALL
status and BASE=FN yields two records (call first). Baseline TP records are
NOT_ASSESSED: they are counted through their matching call. Anything else is
NOT_ASSESSED as well.
"""

from __future__ import annotations

import heapq
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import pysam

from .errors import ClassificationStreamError, ConfigurationError
from .models import Classification, ClassifiedRecord, VcfHeaderInfo

logger = logging.getLogger(__name__)

OUTPUT_SPLIT = "split"
OUTPUT_COMBINED = "combined"
OUTPUT_ANNOTATE = "annotate"
OUTPUT_ROC_ONLY = "roc-only"

OUTPUT_MODES = (OUTPUT_SPLIT, OUTPUT_ANNOTATE, OUTPUT_COMBINED, OUTPUT_ROC_ONLY)

_CALL_STATUS = {"TP": Classification.TP, "FP": Classification.FP}


def resolve_sample(header: pysam.VariantHeader, sample: Optional[str]) -> Optional[str]:
    """Pick the sample to read; None when the VCF has no samples and none was requested."""
    samples = list(header.samples)
    if sample is None:
        if not samples:
            return None
        if len(samples) > 1:
            logger.info("No --sample provided; using first VCF sample: %s", samples[0])
        return samples[0]
    if sample not in samples:
        raise ConfigurationError(f"Sample '{sample}' not found in VCF samples: {samples}")
    return sample


def header_info(header: pysam.VariantHeader, sample: Optional[str]) -> VcfHeaderInfo:
    return VcfHeaderInfo(
        samples=tuple(header.samples),
        sample=sample,
        info_fields={k: str(v.number) for k, v in header.info.items()},
        format_fields={k: str(v.number) for k, v in header.formats.items()},
        contigs=tuple(header.contigs),
    )


def merge_header_info(first: VcfHeaderInfo, second: VcfHeaderInfo) -> VcfHeaderInfo:
    """Header view for a merged baseline + calls stream; the calls sample wins."""
    contigs = list(first.contigs)
    contigs.extend(c for c in second.contigs if c not in first.contigs)
    info = dict(second.info_fields)
    info.update(first.info_fields)
    formats = dict(second.format_fields)
    formats.update(first.format_fields)
    return VcfHeaderInfo(
        samples=tuple(dict.fromkeys(first.samples + second.samples)),
        sample=first.sample if first.sample is not None else second.sample,
        info_fields=info,
        format_fields=formats,
        contigs=tuple(contigs),
    )


def _genotype(values: Dict[str, Any]) -> Optional[Tuple[int, ...]]:
    gt = values.get("GT")
    if not gt or any(a is None for a in gt):
        return None
    return tuple(int(a) for a in gt)


def _call_and_base(rec: pysam.VariantRecord) -> Tuple[Optional[str], Optional[str]]:
    call = rec.info["CALL"] if "CALL" in rec.info else None
    base = rec.info["BASE"] if "BASE" in rec.info else None
    return call, base


def to_classified(
    rec: pysam.VariantRecord,
    sample: Optional[str],
    classification: Classification,
    *,
    decode_gt: bool = True,
) -> ClassifiedRecord:
    fmt: Dict[str, Any] = {}
    if sample is not None:
        s = rec.samples[sample]
        fmt = {k: s[k] for k in s.keys()}
    return ClassifiedRecord(
        chrom=str(rec.contig),
        pos=int(rec.pos),
        ref=str(rec.ref),
        alts=tuple(rec.alts or ()),
        classification=classification,
        qual=None if rec.qual is None else float(rec.qual),
        info=dict(rec.info),
        format=fmt,
        genotype=_genotype(fmt) if decode_gt else None,
        source=rec,
    )


def classify_record(
    rec: pysam.VariantRecord,
    sample: Optional[str],
    *,
    decode_gt: bool = True,
) -> List[ClassifiedRecord]:
    call, base = _call_and_base(rec)
    out: List[ClassifiedRecord] = []
    if call in _CALL_STATUS:
        out.append(to_classified(rec, sample, _CALL_STATUS[call], decode_gt=decode_gt))
    if base == "FN":
        out.append(to_classified(rec, sample, Classification.FN, decode_gt=decode_gt))
    if not out:
        out.append(to_classified(rec, sample, Classification.NOT_ASSESSED, decode_gt=False))
    return out


def check_order(records: Iterable[ClassifiedRecord]) -> Iterator[ClassifiedRecord]:
    """Pass records through, failing if a contig is revisited or positions go backwards."""
    finished: set = set()
    last_chrom: Optional[str] = None
    last_pos = 0
    for r in records:
        if r.chrom != last_chrom:
            if r.chrom in finished:
                raise ClassificationStreamError(
                    f"Records for contig {r.chrom} are not contiguous (seen again at {r.chrom}:{r.pos})"
                )
            if last_chrom is not None:
                finished.add(last_chrom)
            last_chrom = r.chrom
        elif r.pos < last_pos:
            raise ClassificationStreamError(f"Classified records out of order at {r.chrom}:{r.pos}")
        last_pos = r.pos
        yield r


class ClassifiedVcfReader:
    """Iterate classified records of one annotated VCF.

    Parameters
    ----------
    vcf_path:
        Annotated VCF (optionally bgzip+tabix indexed).
    sample:
        Sample whose FORMAT values and genotype are read. If None, uses the first sample.
    decode_gt:
        Decode GT into allele indices. Turned off when no filter needs genotypes.
    """

    def __init__(self, vcf_path: str | Path, *, sample: Optional[str] = None, decode_gt: bool = True) -> None:
        self.path = str(vcf_path)
        self.decode_gt = decode_gt
        self._vcf = pysam.VariantFile(self.path)
        try:
            self.sample = resolve_sample(self._vcf.header, sample)
        except ConfigurationError:
            self._vcf.close()
            raise
        self.header = header_info(self._vcf.header, self.sample)
        self.variant_header = self._vcf.header

    def close(self) -> None:
        self._vcf.close()

    def __enter__(self) -> "ClassifiedVcfReader":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _iter_raw(self, contig: Optional[str]) -> Iterable[pysam.VariantRecord]:
        if contig is not None:
            try:
                return self._vcf.fetch(contig)
            except ValueError:
                # Contig declared in the header but absent from the index.
                return iter(())
        # fetch() needs an index for bgzipped VCFs; fall back to sequential iteration.
        try:
            return self._vcf.fetch()
        except (ValueError, OSError):
            return self._vcf

    def records(self, contig: Optional[str] = None) -> Iterator[ClassifiedRecord]:
        """Classified records in file order, optionally restricted to one contig (needs an index)."""
        try:
            for rec in self._iter_raw(contig):
                yield from classify_record(rec, self.sample, decode_gt=self.decode_gt)
        except (OSError, ValueError) as e:
            raise ClassificationStreamError(f"Failed reading {self.path}: {e}") from e

    def indexed_contigs(self) -> List[str]:
        """Header contigs followed by contigs only the tabix/CSI index knows about.

        Without an index this is the header list alone.
        """
        contigs = list(self.header.contigs)
        if self._vcf.index is not None:
            known = set(contigs)
            contigs.extend(c for c in self._vcf.index.keys() if c not in known)
        return contigs

    def __iter__(self) -> Iterator[ClassifiedRecord]:
        return check_order(self.records())


def merge_streams(
    streams: Iterable[Iterable[ClassifiedRecord]], contigs: Sequence[str]
) -> Iterator[ClassifiedRecord]:
    """Merge independently paced classified streams into one genomically ordered stream.

    Each input must already be ordered by contig then position. Contigs follow the
    order of ``contigs``; contigs missing from it (e.g. VCFs without ``##contig``
    lines) rank after those, in order of first appearance. Ties keep the order of
    ``streams``.
    """
    rank = {c: i for i, c in enumerate(contigs)}

    def key(r: ClassifiedRecord) -> Tuple[int, int]:
        if r.chrom not in rank:
            rank[r.chrom] = len(rank)
        return (rank[r.chrom], r.pos)

    return check_order(heapq.merge(*streams, key=key))


def _split_sample(sample: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """``NAME`` applies to both files; ``BASELINE,CALLS`` names them separately."""
    if sample is None or "," not in sample:
        return sample, sample
    base, call = [s.strip() or None for s in sample.split(",", 1)]
    return base, call


def open_readers(
    calls_vcf: str | Path,
    *,
    baseline_vcf: Optional[str | Path] = None,
    sample: Optional[str] = None,
    decode_gt: bool = True,
) -> List[ClassifiedVcfReader]:
    """Open the calls reader, followed by the baseline reader when one is given."""
    base_sample, call_sample = _split_sample(sample)
    readers = [ClassifiedVcfReader(calls_vcf, sample=call_sample, decode_gt=decode_gt)]
    if baseline_vcf is not None:
        try:
            readers.append(ClassifiedVcfReader(baseline_vcf, sample=base_sample, decode_gt=decode_gt))
        except Exception:
            readers[0].close()
            raise
    return readers


def readers_header(readers: Sequence[ClassifiedVcfReader]) -> VcfHeaderInfo:
    header = readers[0].header
    for r in readers[1:]:
        header = merge_header_info(header, r.header)
    return header


def readers_contigs(readers: Sequence[ClassifiedVcfReader]) -> List[str]:
    """Every contig any reader can fetch, in merged header order: the shard list."""
    contigs: List[str] = []
    for r in readers:
        for c in r.indexed_contigs():
            if c not in contigs:
                contigs.append(c)
    return contigs


def readers_stream(
    readers: Sequence[ClassifiedVcfReader], contig: Optional[str] = None
) -> Iterator[ClassifiedRecord]:
    """One ordered stream over all readers (calls before baseline on ties)."""
    if len(readers) == 1:
        return check_order(readers[0].records(contig))
    header = readers_header(readers)
    return merge_streams([r.records(contig) for r in readers], header.contigs)


def contig_shard(
    calls_vcf: str | Path,
    contig: str,
    *,
    baseline_vcf: Optional[str | Path] = None,
    sample: Optional[str] = None,
    decode_gt: bool = True,
) -> Iterator[ClassifiedRecord]:
    """Records of one contig, read through readers owned by this generator."""
    readers = open_readers(calls_vcf, baseline_vcf=baseline_vcf, sample=sample, decode_gt=decode_gt)
    try:
        yield from readers_stream(readers, contig)
    finally:
        for r in readers:
            r.close()


class ClassifiedVcfWriter:
    """Write classified records back out as VCF according to the output mode.

    ``split`` writes tp/fp/fn files, ``annotate`` writes calls (TP/FP) and baseline
    (FN) files, ``combined`` a single output file and ``roc-only`` nothing.

    Files are opened lazily. Their header is the first record's header merged with
    every other input header, so records from a separate baseline VCF can be
    translated into it.
    """

    def __init__(
        self,
        outdir: str | Path,
        mode: str,
        *,
        headers: Sequence[pysam.VariantHeader] = (),
        gzip: bool = False,
    ) -> None:
        if mode not in OUTPUT_MODES:
            raise ConfigurationError(
                f"Unknown output mode '{mode}'. Choose one of: {', '.join(OUTPUT_MODES)}"
            )
        self.outdir = Path(outdir)
        self.mode = mode
        self.headers = list(headers)
        self.suffix = ".vcf.gz" if gzip else ".vcf"
        self._files: Dict[str, pysam.VariantFile] = {}
        self._origin: Dict[str, pysam.VariantHeader] = {}
        self.paths: List[Path] = []

    def _target(self, record: ClassifiedRecord) -> Optional[str]:
        if self.mode == OUTPUT_ROC_ONLY or record.source is None:
            return None
        if self.mode == OUTPUT_COMBINED:
            return "output"
        if record.classification is Classification.NOT_ASSESSED:
            return None
        if self.mode == OUTPUT_ANNOTATE:
            return "baseline" if record.classification is Classification.FN else "calls"
        return record.classification.value.lower()

    def _open(self, name: str, rec: pysam.VariantRecord) -> pysam.VariantFile:
        fh = self._files.get(name)
        if fh is None:
            header = rec.header.copy()
            for h in self.headers:
                if h is not rec.header:
                    header.merge(h)
            path = self.outdir / f"{name}{self.suffix}"
            fh = pysam.VariantFile(str(path), "wz" if self.suffix.endswith(".gz") else "w", header=header)
            self._files[name] = fh
            self._origin[name] = rec.header
            self.paths.append(path)
            logger.debug("Writing %s records to %s", name, path)
        return fh

    def write(self, record: ClassifiedRecord) -> None:
        name = self._target(record)
        if name is None:
            return
        rec = record.source
        fh = self._open(name, rec)
        if rec.header is not self._origin[name]:
            rec = rec.copy()
            try:
                rec.translate(fh.header)
            except ValueError as e:
                raise ClassificationStreamError(
                    f"Cannot write {record.chrom}:{record.pos} into {name}{self.suffix}: {e}"
                ) from e
        fh.write(rec)

    def tee(self, stream: Iterable[ClassifiedRecord]) -> Iterator[ClassifiedRecord]:
        """Yield ``stream`` unchanged while writing every record."""
        last = None
        for r in stream:
            # A call record with BASE=FN is classified twice; combined output holds it once.
            duplicate = r.source is not None and r.source is last
            last = r.source
            if not (duplicate and self.mode == OUTPUT_COMBINED):
                self.write(r)
            yield r

    def close(self) -> None:
        for fh in self._files.values():
            fh.close()
        self._files = {}

    def abort(self) -> None:
        """Close and remove everything written so far."""
        self.close()
        for p in self.paths:
            if p.exists():
                p.unlink()
        self.paths = []
