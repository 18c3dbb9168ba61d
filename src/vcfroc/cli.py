from __future__ import annotations

import argparse
import functools
import json
import logging
import sys
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from . import __version__
from .config import DEFAULT_ROC_SUBSETS, EvalConfig, parse_expressions, split_subsets
from .errors import ConfigurationError
from .filters import builtin_filter_names
from .models import ClassifiedRecord
from .plotting import plot_precision_sensitivity, plot_roc_curves
from .report import render_report
from .scores import REDUCTIONS
from .synchronizer import EvalResult, EvalSynchronizer, evaluate_shards
from .toy_data import make_toy_data
from .utils import ensure_outdir
from .validation import check_contig_overlap, check_vcf_index
from .vcf_io import (
    OUTPUT_MODES,
    OUTPUT_ROC_ONLY,
    OUTPUT_SPLIT,
    ClassifiedVcfReader,
    ClassifiedVcfWriter,
    contig_shard,
    open_readers,
    readers_contigs,
    readers_header,
    readers_stream,
)
from .writer import roc_file_name, write_roc_tables, write_summary_json, write_summary_txt


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    msg = f"{err.__class__.__name__}: {err}"
    sys.stderr.write(msg + "\n")
    if log_path is not None and log_path.exists():
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="vcfroc",
        description=(
            "vcfroc: score-ordered ROC tables (cumulative TP/FP by decreasing score) "
            "from variant calls classified against a baseline."
        ),
    )
    p.add_argument("--version", action="version", version=f"vcfroc {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny annotated VCF for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # eval
    # -----------------
    e = sub.add_parser(
        "eval",
        help="Build ROC tables from a classified (CALL/BASE annotated) VCF.",
    )
    e.add_argument(
        "--vcf",
        required=True,
        type=_path_exists,
        help="Calls VCF annotated with INFO/CALL (may also carry INFO/BASE).",
    )
    e.add_argument(
        "--baseline",
        default=None,
        type=_path_exists,
        help="Optional separate baseline VCF annotated with INFO/BASE.",
    )
    e.add_argument("--outdir", required=True, help="Output directory.")
    e.add_argument(
        "--sample",
        default=None,
        help="Sample name, or BASELINE,CALLS when they differ (default: first sample).",
    )
    e.add_argument(
        "--score-field",
        "--vcf-score-field",
        dest="score_field",
        default="QUAL",
        help="Score field: QUAL, INFO.<KEY> or FORMAT.<KEY> (bare KEY means FORMAT).",
    )
    e.add_argument(
        "--score-reduce",
        choices=list(REDUCTIONS),
        default="max",
        help="How multi-value score fields are reduced to one score.",
    )
    e.add_argument(
        "--roc-subset",
        action="append",
        default=None,
        help=(
            "ROC curve to produce (repeatable, comma separated). Combine filters with '+', "
            "override rescaling with ':rescale' or ':no-rescale'. "
            f"Default: {','.join(DEFAULT_ROC_SUBSETS)}. "
            f"Builtin filters: {', '.join(builtin_filter_names())}."
        ),
    )
    e.add_argument(
        "--roc-expr",
        action="append",
        default=None,
        metavar="NAME=EXPR",
        help="Define a named filter, e.g. 'deep=INFO.DP>=20' or 'gq30=FORMAT.GQ>=30'.",
    )
    rescale = e.add_mutually_exclusive_group()
    rescale.add_argument(
        "--rescale",
        dest="rescale",
        action="store_true",
        default=None,
        help="Rescale filtered curves' TP counts to the unfiltered total by default.",
    )
    rescale.add_argument(
        "--no-rescale",
        dest="rescale",
        action="store_false",
        help="Never rescale unless a subset asks for it.",
    )
    e.set_defaults(rescale=None)
    e.add_argument(
        "--output-mode",
        choices=list(OUTPUT_MODES),
        default=OUTPUT_SPLIT,
        help="Which classified VCF files to write; ROC tables are always written.",
    )
    e.add_argument("--gzip", action="store_true", help="Gzip ROC tables and output VCFs.")
    e.add_argument(
        "--threads",
        type=int,
        default=1,
        help="Evaluate contigs in parallel (needs an indexed VCF and --output-mode roc-only).",
    )
    e.add_argument("--no-report", action="store_true", help="Skip plots and report.html.")
    e.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    e.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


def cmd_quickstart() -> int:
    lines = [
        "vcfroc quickstart",
        "",
        "1) Try it on toy data:",
        "   vcfroc make-toy-data --outdir toy",
        "   vcfroc eval --vcf toy/calls.annotated.vcf.gz --outdir toy_eval --output-mode roc-only",
        "",
        "2) SNP and indel curves rescaled onto the full baseline:",
        "   vcfroc eval --vcf calls.annotated.vcf.gz --outdir eval \\",
        "     --roc-subset ALL,SNP,INDEL --rescale --score-field FORMAT.GQ",
        "",
        "3) Separate calls and baseline files, combined filters, parallel contigs:",
        "   vcfroc eval --vcf calls.vcf.gz --baseline baseline.vcf.gz --sample TRUTH,QUERY \\",
        "     --outdir eval --roc-subset SNP+HET --roc-expr deep=INFO.DP>=20 --roc-subset deep \\",
        "     --output-mode roc-only --threads 8",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def _config_from_args(args: argparse.Namespace) -> EvalConfig:
    return EvalConfig(
        filters=split_subsets(args.roc_subset or []),
        expressions=parse_expressions(args.roc_expr or []),
        rescale=args.rescale,
        score_field=args.score_field,
        score_reduce=args.score_reduce,
        output_mode=args.output_mode,
        sample=args.sample,
        gzip=bool(args.gzip),
        threads=int(args.threads),
    )


def _run_sharded(
    args: argparse.Namespace, config: EvalConfig, readers: List[ClassifiedVcfReader]
) -> EvalResult:
    header = readers_header(readers)
    contigs = readers_contigs(readers)
    shards: List[Callable[[], Iterable[ClassifiedRecord]]] = [
        functools.partial(
            contig_shard,
            args.vcf,
            contig,
            baseline_vcf=args.baseline,
            sample=config.sample,
            decode_gt=config.needs_genotypes,
        )
        for contig in contigs
    ]
    if not shards:
        # Indexed but empty: one empty shard still yields (empty) curves.
        shards.append(functools.partial(iter, ()))
    logging.getLogger("vcfroc").info(
        "Evaluating %d contigs with %d threads", len(shards), config.threads
    )
    return evaluate_shards(
        shards,
        config.build_filters,
        config.build_score_extractor,
        header,
        rescale_default=config.rescale_default,
        threads=config.threads,
    )


def cmd_eval(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "eval.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("vcfroc")
    logger.info("vcfroc %s", __version__)

    readers: List[ClassifiedVcfReader] = []
    try:
        config = _config_from_args(args)
        sharded = config.threads > 1
        if sharded and config.output_mode != OUTPUT_ROC_ONLY:
            raise ConfigurationError("--threads > 1 requires --output-mode roc-only")

        check_vcf_index(args.vcf, required=sharded)
        if args.baseline is not None:
            check_vcf_index(args.baseline, required=sharded)

        readers = open_readers(
            args.vcf,
            baseline_vcf=args.baseline,
            sample=config.sample,
            decode_gt=config.needs_genotypes,
        )
        if len(readers) > 1:
            check_contig_overlap(readers[0].indexed_contigs(), readers[1].indexed_contigs())
        header = readers_header(readers)

        # Binds every filter and the score field to the header before any record is read.
        sync = EvalSynchronizer(
            config.build_filters(),
            config.build_score_extractor(),
            header,
            rescale_default=config.rescale_default,
        )
        curve_names = [f.name for f in sync.filters]

        if args.dry_run:
            print("Dry-run: inputs and configuration look OK.")
            print(f"Sample: {header.sample or '-'}")
            print(f"Score field: {config.score_field} ({config.score_reduce})")
            print(f"Genotypes decoded: {config.needs_genotypes}")
            print("Planned outputs:")
            for name in curve_names:
                print(f"  {name or 'ALL'} -> {outdir / roc_file_name(name, gzip=config.gzip)}")
            print(f"  summary.txt -> {outdir / 'summary.txt'}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            if config.output_mode != OUTPUT_ROC_ONLY:
                print(f"  classified VCFs ({config.output_mode}) -> {outdir}")
            return 0

        outdir = ensure_outdir(outdir)

        if sharded:
            result = _run_sharded(args, config, readers)
        else:
            vcf_writer = ClassifiedVcfWriter(
                outdir,
                config.output_mode,
                headers=[r.variant_header for r in readers],
                gzip=config.gzip,
            )
            try:
                result = sync.run(
                    vcf_writer.tee(readers_stream(readers)),
                    progress=sys.stderr.isatty(),
                )
            except BaseException:
                vcf_writer.abort()
                raise
            vcf_writer.close()
            for p in vcf_writer.paths:
                logger.info("Classified VCF written: %s", p)

        write_roc_tables(result.curves, outdir, score_field=config.score_field, gzip=config.gzip)
        write_summary_txt(result.reference, outdir / "summary.txt")

        inputs = {
            "calls_vcf": str(args.vcf),
            "baseline_vcf": None if args.baseline is None else str(args.baseline),
            "sample": header.sample,
        }
        summary = write_summary_json(
            outdir / "summary.json",
            curves=result.curves,
            config=config.as_dict(),
            counts=result.counts,
            inputs=inputs,
            runtime_seconds=result.runtime_seconds,
        )

        if not args.no_report:
            plots_dir = outdir / "plots"
            roc_png = plots_dir / "roc.png"
            ps_png = plots_dir / "precision_sensitivity.png"
            plot_roc_curves(curves=result.curves, out_png=roc_png)
            plot_precision_sensitivity(curves=result.curves, out_png=ps_png)

            curve_rows = []
            for c in result.curves:
                row = dict(c.summary())
                row["table"] = roc_file_name(c.name, gzip=config.gzip)
                curve_rows.append(row)

            report_path = render_report(
                outdir=outdir,
                version=__version__,
                inputs=inputs,
                config=summary["config"],
                counts=result.counts,
                curves=curve_rows,
                plots={
                    "roc": str(Path("plots") / roc_png.name),
                    "precision_sensitivity": str(Path("plots") / ps_png.name),
                },
            )
            logger.info("Report written: %s", report_path)

        print(str(outdir))
        return 0
    except KeyboardInterrupt:
        sys.stderr.write("Interrupted; no ROC output written.\n")
        return 130
    except Exception as e:
        return _handle_error(e, log_path=log_path)
    finally:
        for r in readers:
            r.close()


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "eval":
        return cmd_eval(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
