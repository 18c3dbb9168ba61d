from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pysam

from .utils import ensure_outdir, write_json

# (contig, pos1, ref, alt, gt, qual, annotation key, annotation value, GQ)
ToyRecord = Tuple[str, int, str, str, Tuple[int, int], Optional[float], str, str, int]

TOY_RECORDS: List[ToyRecord] = [
    ("chr1", 10, "A", "G", (0, 1), 90.0, "CALL", "TP", 60),
    ("chr1", 20, "C", "T", (1, 1), 85.0, "CALL", "TP", 55),
    ("chr1", 30, "G", "GA", (0, 1), 85.0, "CALL", "FP", 20),
    ("chr1", 40, "T", "C", (0, 1), 70.0, "CALL", "TP", 45),
    ("chr1", 45, "A", "T", (0, 1), 50.0, "CALL", "IGN", 10),
    ("chr1", 50, "AC", "GT", (0, 1), 60.0, "CALL", "FP", 15),
    ("chr1", 60, "G", "A", (0, 1), 50.0, "CALL", "TP", 40),
    ("chr2", 15, "C", "CTT", (1, 1), 40.0, "CALL", "FP", 12),
    ("chr2", 25, "T", "A", (0, 1), 30.0, "CALL", "TP", 30),
    ("chr2", 35, "G", "C", (0, 1), None, "CALL", "TP", 25),
    ("chr2", 45, "A", "AT", (0, 1), None, "BASE", "FN", 0),
]

TOY_CONTIG_LENGTH = 100


def toy_header(sample: str = "SAMPLE") -> pysam.VariantHeader:
    header = pysam.VariantHeader()
    header.add_meta("fileformat", "VCFv4.2")
    header.add_sample(sample)
    for contig in ("chr1", "chr2"):
        header.contigs.add(contig, length=TOY_CONTIG_LENGTH)
    header.info.add("CALL", number=1, type="String", description="Call classification")
    header.info.add("BASE", number=1, type="String", description="Baseline classification")
    header.formats.add("GT", number=1, type="String", description="Genotype")
    header.formats.add("GQ", number=1, type="Integer", description="Genotype quality")
    return header


def write_toy_vcf(path: str | Path, records: List[ToyRecord], *, sample: str = "SAMPLE") -> Path:
    """Write annotated records to an uncompressed VCF."""
    path = Path(path)
    with pysam.VariantFile(str(path), "w", header=toy_header(sample)) as vcf:
        for contig, pos1, ref, alt, gt, qual, key, value, gq in records:
            rec = vcf.new_record(
                contig=contig,
                start=pos1 - 1,
                stop=pos1 - 1 + len(ref),
                alleles=(ref, alt),
                qual=qual,
                filter="PASS",
            )
            rec.info[key] = value
            rec.samples[0]["GT"] = gt
            rec.samples[0]["GQ"] = gq
            vcf.write(rec)
    return path


def make_toy_data(*, outdir: str | Path) -> Dict[str, str]:
    """Create a tiny annotated VCF suitable for quick demos/tests.

    The calls carry 6 TP, 3 FP and 1 FN classifications (two without QUAL) plus
    one IGN record, spread over chr1 and chr2.

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)

    vcf_path = write_toy_vcf(outdir_p / "calls.annotated.vcf", TOY_RECORDS)
    vcf_gz = outdir_p / "calls.annotated.vcf.gz"
    pysam.tabix_compress(str(vcf_path), str(vcf_gz), force=True)
    pysam.tabix_index(str(vcf_gz), preset="vcf", force=True)

    summary = {
        "calls_vcf": str(vcf_gz),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
