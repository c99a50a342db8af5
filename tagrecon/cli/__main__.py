from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from tagrecon.config.loader import ConfigError, load_config
from tagrecon.excel.reader import list_sheets
from tagrecon.excel.writer import read_result, write_result
from tagrecon.logging.init import log_summary, setup_logging
from tagrecon.models.config_models import ReconcileConfig
from tagrecon.services.commit_engine import CommitEngine, CommitError, FileDocumentIO
from tagrecon.services.matcher import ValidationError
from tagrecon.services.orchestrator import ProcessingError, apply_review, load_side, run_comparison
from tagrecon.services.summary import render_summary_line

"""CLI entrypoint.

Subcommands:
- inspect: print sheet names, headers and the first rows of both documents
- compare [--apply-review]: match both documents and write the result workbook
- commit --result PATH: write the reviewed result back into both documents

Exit codes: 0 success, 2 partial (rows that could not be committed), 1 fatal.
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

CONFIG_ENV = "TAGRECON_CONFIG"
DEFAULT_CONFIG = Path("config/tagrecon.yml")
DEFAULT_RESULT = Path("output/result.xlsx")
INSPECT_SAMPLE_ROWS = 3


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv (may set TAGRECON_CONFIG)."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="tagrecon", description="Reconcile two tag lists and commit reviewed corrections")
    p.add_argument("--config", type=Path, default=None, help=f"Config YAML (default: ${CONFIG_ENV} or {DEFAULT_CONFIG})")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("inspect", help="Print sheet headers & first rows then exit")

    cmp = sub.add_parser("compare", help="Match both documents and write the result workbook")
    cmp.add_argument("--apply-review", action="store_true", help="Merge rows by reviewer identity edits")
    cmp.add_argument("--output", type=Path, default=None, help="Result workbook path")

    com = sub.add_parser("commit", help="Write reviewed values back into both documents")
    com.add_argument("--result", type=Path, required=True, help="Reviewed result workbook")
    com.add_argument("--logs-dir", type=Path, default=Path("logs"), help="Directory for the exceptions log")
    return p.parse_args(argv)


def _config_path(args: argparse.Namespace) -> Path:
    if args.config is not None:
        return args.config
    env = os.getenv(CONFIG_ENV)
    return Path(env) if env else DEFAULT_CONFIG


def _inspect(cfg: ReconcileConfig) -> int:
    for label, selection in (("reference", cfg.reference), ("comparison", cfg.comparison)):
        if selection is None:
            print(f"{label}: not configured")
            continue
        print(f"FILE ({label}): {selection.path}")
        print(f"  sheets={list_sheets(Path(selection.path))}")
        data = load_side(selection, label)
        print(f"  SHEET: {data.sheet_name} cols={data.columns}")
        safe_rows = []
        for r in data.rows[:INSPECT_SAMPLE_ROWS]:
            safe_rows.append({k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in r.items()})
        print("    sample_rows=", safe_rows)
    return EXIT_SUCCESS_ALL


def _compare(cfg: ReconcileConfig, args: argparse.Namespace, logger) -> int:
    ref = load_side(cfg.reference, "reference")
    comp = load_side(cfg.comparison, "comparison")
    outcome = run_comparison(cfg, ref, comp)
    if args.apply_review:
        outcome = apply_review(outcome, cfg)
        logger.info(f"review applied: merged={outcome.merged_count} rekeyed={outcome.rekeyed_count}")
    output = args.output or (Path(cfg.result_path) if cfg.result_path else DEFAULT_RESULT)
    write_result(output, outcome.rows, outcome.summary, outcome.annotations, cfg.primary_key_column)
    logger.info(f"result written: {output}")
    summary_line = render_summary_line(outcome.summary, outcome.elapsed_seconds)
    # log_summary adds the "SUMMARY " prefix
    log_summary(summary_line[len("SUMMARY "):])
    return EXIT_SUCCESS_ALL


def _commit(cfg: ReconcileConfig, args: argparse.Namespace, logger) -> int:
    if cfg.reference is None or cfg.comparison is None:
        logger.error("commit: both reference and comparison documents must be configured")
        return EXIT_FATAL
    if not args.result.exists():
        logger.error(f"commit: result workbook not found: {args.result}")
        return EXIT_FATAL
    reviewed = read_result(args.result)
    engine = CommitEngine(FileDocumentIO(), cfg, logs_dir=args.logs_dir)
    try:
        result = engine.commit(reviewed.rows, cfg.reference.path, cfg.comparison.path)
    except CommitError as e:
        logger.error(f"commit: {e}")
        if e.result is not None:
            log_summary(e.result.describe())
        return EXIT_FATAL
    log_summary(result.describe())
    if result.exceptions_path:
        logger.info(f"exceptions log: {result.exceptions_path}")
    if result.unresolved or result.ref.dropped_columns or result.comp.dropped_columns:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    # None reads the process arguments; an explicit [] must not fall back to sys.argv
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    if args.debug:
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)
    config_path = _config_path(args)
    try:
        cfg = load_config(config_path)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    try:
        if args.command == "inspect":
            return _inspect(cfg)
        if args.command == "compare":
            return _compare(cfg, args, logger)
        return _commit(cfg, args, logger)
    except ValidationError as e:
        logger.error(f"validation: {e}")
        return EXIT_FATAL
    except ProcessingError as e:
        logger.error(f"processing: {e}")
        return EXIT_FATAL
    except CommitError as e:
        logger.error(f"commit: {e}")
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
