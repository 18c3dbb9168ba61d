"""vcfroc: score-ordered ROC tables from classified variant calls.

Public API is intentionally small; most users should use the CLI:

    vcfroc eval --vcf calls.annotated.vcf.gz --outdir ... --score-field QUAL

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
