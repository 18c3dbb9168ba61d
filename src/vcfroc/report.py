from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict, List

from jinja2 import Template

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>vcfroc Report</title>
  <style>
    body { font-family: "Helvetica Neue", Arial, sans-serif; margin: 2em auto; max-width: 1100px; color: #222; }
    code { background: #f4f4f4; padding: 1px 3px; border-radius: 3px; }
    h2 { border-bottom: 1px solid #e5e5e5; padding-bottom: 4px; }
    table { border-collapse: collapse; margin: 0.5em 0; }
    th, td { border: 1px solid #d9d9d9; padding: 4px 10px; }
    th { background: #fafafa; text-align: left; }
    td.num { text-align: right; font-variant-numeric: tabular-nums; }
    .grid { display: grid; grid-template-columns: repeat(2, minmax(0, 1fr)); gap: 1.5em; }
    .card { border: 1px solid #e5e5e5; border-radius: 6px; padding: 0 1em 1em; }
    .small { color: #777; font-size: 0.85em; }
    img { width: 100%; }
  </style>
</head>
<body>

<h1>vcfroc Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>Calls VCF</th><td><code>{{ inputs.calls_vcf }}</code></td></tr>
      <tr><th>Baseline VCF</th><td><code>{{ inputs.baseline_vcf or "-" }}</code></td></tr>
      <tr><th>Sample</th><td><code>{{ inputs.sample or "-" }}</code></td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Settings</h3>
    <table>
      <tr><th>Score field</th><td><code>{{ config.score_field }}</code> ({{ config.score_reduce }})</td></tr>
      <tr><th>Rescale default</th><td>{{ config.rescale }}</td></tr>
      <tr><th>Output mode</th><td>{{ config.output_mode }}</td></tr>
    </table>
  </div>
</div>

<h2>Records</h2>
<table>
  <tr><th>Total records</th><td class="num">{{ counts.records_total }}</td></tr>
  <tr><th>True positives</th><td class="num">{{ counts.records_tp }}</td></tr>
  <tr><th>False positives</th><td class="num">{{ counts.records_fp }}</td></tr>
  <tr><th>False negatives</th><td class="num">{{ counts.records_fn }}</td></tr>
  <tr><th>Not assessed</th><td class="num">{{ counts.records_not_assessed }}</td></tr>
  <tr><th>Without score</th><td class="num">{{ counts.records_absent_score }}</td></tr>
</table>

<h2>Curves</h2>
<table>
  <tr>
    <th>Curve</th><th>Table</th><th>Baseline total</th><th>Distinct scores</th><th>Without score</th>
    <th>Best threshold</th><th>Best F-measure</th><th>Precision</th><th>Sensitivity</th>
  </tr>
  {% for c in curves %}
  <tr>
    <td>{{ c.name or "ALL" }}{% if c.scale != 1.0 %} (x{{ "%.3f"|format(c.scale) }}){% endif %}</td>
    <td><code>{{ c.table }}</code></td>
    <td class="num">{{ c.baseline_total }}</td>
    <td class="num">{{ c.distinct_scores }}</td>
    <td class="num">{{ c.absent_count }}</td>
    <td>{{ c.best_threshold if c.best_threshold is not none else "-" }}</td>
    <td class="num">{{ "%.4f"|format(c.best_f_measure) if c.best_f_measure is not none else "-" }}</td>
    <td class="num">{{ "%.4f"|format(c.precision) }}</td>
    <td class="num">{{ "%.4f"|format(c.sensitivity) }}</td>
  </tr>
  {% endfor %}
</table>

<h2>Plots</h2>
<div class="grid">
  <div class="card">
    <h3>ROC</h3>
    <img src="{{ plots.roc }}" alt="roc curves">
  </div>
  <div class="card">
    <h3>Precision / sensitivity</h3>
    <img src="{{ plots.precision_sensitivity }}" alt="precision sensitivity">
  </div>
</div>

<h2>Interpretation notes</h2>
<ul>
  <li>Rows are cumulative from the highest score down; the <code>None</code> row adds records without a score.</li>
  <li>Rescaled curves multiply true positives so their total matches the unfiltered curve; precision and sensitivity use raw counts.</li>
</ul>

<hr>
<p class="small">vcfroc {{ version }}</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    inputs: Dict[str, Any],
    config: Dict[str, Any],
    counts: Dict[str, int],
    curves: List[Dict[str, Any]],
    plots: Dict[str, str],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        inputs=inputs,
        config=config,
        counts=counts,
        curves=curves,
        plots=plots,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    return out_path
