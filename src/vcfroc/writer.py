from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from . import __version__
from .models import CurveRow, RocCurve
from .utils import open_textmaybe_gzip, write_json

logger = logging.getLogger(__name__)

WEIGHTED_ROC = "weighted_roc"

ROC_COLUMNS = [
    "score",
    "true_positives",
    "false_positives",
    "true_positives_raw",
    "false_negatives",
    "precision",
    "sensitivity",
    "f_measure",
]

_UNSAFE = re.compile(r"[^A-Za-z0-9+_.-]+")


def roc_file_stem(name: str) -> str:
    """File stem for a curve: the unfiltered (empty-named) curve is ``weighted_roc``."""
    if not name:
        return WEIGHTED_ROC
    return _UNSAFE.sub("_", name).lower() + "_roc"


def roc_file_name(name: str, *, gzip: bool = False) -> str:
    return roc_file_stem(name) + (".tsv.gz" if gzip else ".tsv")


def _fmt_score(score: Optional[float]) -> str:
    if score is None:
        return "None"
    return f"{score:.3f}"


def _fmt_row(row: CurveRow) -> str:
    return "\t".join(
        [
            _fmt_score(row.score),
            f"{row.tp:.3f}",
            str(row.fp),
            str(row.raw_tp),
            str(row.fn),
            f"{row.precision:.4f}",
            f"{row.sensitivity:.4f}",
            f"{row.f_measure:.4f}",
        ]
    )


def write_roc_table(
    curve: RocCurve,
    outdir: str | Path,
    *,
    score_field: str,
    gzip: bool = False,
) -> Path:
    """Write one curve as a score-descending TSV with a trailing ``None`` (Absent) row."""
    path = Path(outdir) / roc_file_name(curve.name, gzip=gzip)
    with open_textmaybe_gzip(path, "wt") as fh:
        fh.write(f"#Version vcfroc {__version__}\n")
        fh.write(f"#score field: {score_field}\n")
        fh.write(f"#filter: {curve.name or 'ALL'}\n")
        fh.write(f"#total baseline variants: {curve.baseline_total}\n")
        if curve.scale != 1.0:
            fh.write(f"#true positives rescaled by: {curve.scale:.6f}\n")
        fh.write(f"#records without score: {curve.absent_count}\n")
        fh.write("#" + "\t".join(ROC_COLUMNS) + "\n")
        for row in curve.rows():
            fh.write(_fmt_row(row) + "\n")
    logger.info("ROC table written: %s", path)
    return path


def write_roc_tables(
    curves: Sequence[RocCurve],
    outdir: str | Path,
    *,
    score_field: str,
    gzip: bool = False,
) -> List[Path]:
    return [write_roc_table(c, outdir, score_field=score_field, gzip=gzip) for c in curves]


def write_summary_txt(curve: RocCurve, path: str | Path) -> Path:
    """Best F-measure threshold and the all-records (``None``) row of one curve."""
    header = [
        "Threshold",
        "True-pos",
        "False-pos",
        "False-neg",
        "Precision",
        "Sensitivity",
        "F-measure",
    ]
    lines = [header]
    rows: List[CurveRow] = []
    best = curve.best_row()
    if best is not None:
        rows.append(best)
    rows.append(curve.rows()[-1])
    for r in rows:
        lines.append(
            [
                _fmt_score(r.score),
                f"{r.tp:.3f}",
                str(r.fp),
                str(r.fn),
                f"{r.precision:.4f}",
                f"{r.sensitivity:.4f}",
                f"{r.f_measure:.4f}",
            ]
        )
    widths = [max(len(line[i]) for line in lines) for i in range(len(header))]
    text = "\n".join(
        " ".join(cell.rjust(w) for cell, w in zip(line, widths)) for line in lines
    )
    path = Path(path)
    path.write_text(text + "\n", encoding="utf-8")
    return path


def write_summary_json(
    path: str | Path,
    *,
    curves: Sequence[RocCurve],
    config: Dict[str, Any],
    counts: Dict[str, int],
    inputs: Dict[str, Any],
    runtime_seconds: float,
) -> Dict[str, Any]:
    summary = {
        "version": __version__,
        "inputs": inputs,
        "config": config,
        "counts": counts,
        "curves": {roc_file_stem(c.name): c.summary() for c in curves},
        "runtime_seconds": float(runtime_seconds),
    }
    write_json(path, summary)
    return summary
