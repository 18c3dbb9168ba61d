from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def has_vcf_index(vcf_path: str | Path) -> bool:
    vcf = Path(vcf_path)
    return any(vcf.with_name(vcf.name + ext).exists() for ext in (".tbi", ".csi"))


def check_vcf_index(vcf_path: str | Path, *, required: bool = False) -> None:
    """Check that a bgzipped VCF has a tabix index; raise with fix instructions when required."""
    vcf = Path(vcf_path)
    if vcf.suffixes[-2:] == [".vcf", ".gz"]:
        if has_vcf_index(vcf):
            return
        msg = (
            "VCF is not bgzip/tabix indexed. Run: tabix -p vcf "
            + str(vcf)
        )
        if required:
            raise ConfigurationError(msg + " (an index is needed to evaluate contigs in parallel)")
        logger.info("%s; reading sequentially.", msg)
    elif vcf.suffix == ".vcf":
        if required:
            raise ConfigurationError(
                "Parallel evaluation needs a bgzip+tabix indexed VCF. Run: bgzip "
                + str(vcf)
                + "; tabix -p vcf "
                + str(vcf)
                + ".gz"
            )
        logger.info(
            "VCF is uncompressed (.vcf). This is supported but slower; "
            "consider bgzip+tabix for large files."
        )


def check_contig_overlap(calls_contigs: Iterable[str], baseline_contigs: Iterable[str]) -> None:
    """Fail when the calls and baseline VCFs share no contig (e.g. chr1 vs 1)."""
    calls = set(calls_contigs)
    base = set(baseline_contigs)
    if calls and base and not calls.intersection(base):
        raise ConfigurationError(
            "Contig mismatch between calls and baseline VCF (e.g., chr1 vs 1). "
            "Both VCFs must use the same contig naming."
        )
