from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import matplotlib.pyplot as plt

from .models import RocCurve

logger = logging.getLogger(__name__)


def _label(curve: RocCurve) -> str:
    label = curve.name or "ALL"
    if curve.scale != 1.0:
        label += f" (x{curve.scale:.2f})"
    return label


def plot_roc_curves(
    *,
    curves: Sequence[RocCurve],
    out_png: str | Path,
    title: str = "ROC (cumulative by decreasing score)",
) -> None:
    """True positives against false positives, one line per curve.

    Rescaled curves are drawn with their rescaled TP counts.
    """
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    plt.figure()
    for curve in curves:
        rows = curve.rows()
        xs = [0] + [r.fp for r in rows]
        ys = [0.0] + [r.tp for r in rows]
        plt.step(xs, ys, where="post", label=_label(curve))
    plt.xlabel("False positives")
    plt.ylabel("True positives")
    plt.title(title)
    if curves:
        plt.legend(loc="lower right")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_precision_sensitivity(
    *,
    curves: Sequence[RocCurve],
    out_png: str | Path,
    title: str = "Precision / sensitivity",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    plt.figure()
    for curve in curves:
        rows = curve.rows()
        plt.plot(
            [r.sensitivity for r in rows],
            [r.precision for r in rows],
            marker=".",
            label=curve.name or "ALL",
        )
    plt.xlabel("Sensitivity")
    plt.ylabel("Precision")
    plt.xlim(0.0, 1.0)
    plt.ylim(0.0, 1.02)
    plt.title(title)
    if curves:
        plt.legend(loc="lower left")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
