from __future__ import annotations

import logging
import time
import zipfile
from dataclasses import dataclass, field
from pathlib import Path

from ..excel.reader import SheetData, SheetHeaderError, SheetNotFoundError, read_sheet
from ..models.config_models import DocumentSelection, ReconcileConfig
from ..models.processing_result import ComparisonSummary
from ..models.unified_row import AnnotationMap, UnifiedRow
from .matcher import ValidationError, map_cell_annotations, match_datasets
from .review_merge import apply_review_compensation
from .summary import summarize

logger = logging.getLogger(__name__)

"""Service orchestration: load both sides, compare, apply review.

Each step returns a complete new ``ComparisonOutcome``; earlier outcomes are
never mutated, so a caller can keep the previous generation for undo.
"""

__all__ = [
    "ProcessingError",
    "ComparisonOutcome",
    "load_side",
    "run_comparison",
    "apply_review",
]


class ProcessingError(Exception):
    """Base exception for processing errors (unreadable input documents)."""
    pass


@dataclass(frozen=True)
class ComparisonOutcome:
    rows: list[UnifiedRow]
    summary: ComparisonSummary
    annotations: AnnotationMap = field(default_factory=dict)
    elapsed_seconds: float = 0.0
    merged_count: int = 0
    rekeyed_count: int = 0


def load_side(selection: DocumentSelection | None, label: str = "document") -> SheetData:
    """Read the sheet a document selection points at.

    Raises:
        ValidationError: no selection, or the sheet/header row does not exist
        ProcessingError: the file is missing or cannot be parsed
    """
    if selection is None:
        raise ValidationError(f"no {label} document configured")
    path = Path(selection.path)
    if not path.exists():
        raise ProcessingError(f"{label} file not found: {path}")
    if not path.is_file():
        raise ProcessingError(f"{label} path is not a file: {path}")
    try:
        data = read_sheet(path, selection.sheet, selection.header_row)
    except (SheetNotFoundError, SheetHeaderError) as e:
        raise ValidationError(f"{label}: {e}") from e
    except (OSError, ValueError, KeyError, zipfile.BadZipFile) as e:
        raise ProcessingError(f"cannot read {label} file {path}: {e}") from e
    logger.info(
        f"loaded {label} {path.name} sheet={data.sheet_name!r} rows={len(data.rows)} "
        f"columns={len(data.columns)} annotations={len(data.annotations)}"
    )
    return data


def _summarize(rows: list[UnifiedRow], config: ReconcileConfig) -> ComparisonSummary:
    return summarize(
        rows,
        config.mappings,
        config.column_exclusion,
        config.primary_key_column,
        config.secondary_key_column,
        numeric_tolerance=config.numeric_tolerance,
    )


def run_comparison(
    config: ReconcileConfig,
    ref_sheet: SheetData,
    comp_sheet: SheetData,
) -> ComparisonOutcome:
    """Match both sheets and summarize the new row generation."""
    start = time.perf_counter()
    rows = match_datasets(ref_sheet.rows, comp_sheet.rows, config)
    annotations = map_cell_annotations(rows, ref_sheet, comp_sheet, config.mappings)
    summary = _summarize(rows, config)
    elapsed = time.perf_counter() - start
    return ComparisonOutcome(rows, summary, annotations, elapsed)


def apply_review(outcome: ComparisonOutcome, config: ReconcileConfig) -> ComparisonOutcome:
    """Apply review compensation and recompute the summary from scratch."""
    start = time.perf_counter()
    merged = apply_review_compensation(
        outcome.rows,
        config.primary_key_column,
        outcome.annotations,
        config.merge_policy,
        config.numeric_tolerance,
    )
    summary = _summarize(merged.rows, config)
    elapsed = time.perf_counter() - start
    return ComparisonOutcome(
        merged.rows,
        summary,
        merged.annotations,
        elapsed,
        merged.merged_count,
        merged.rekeyed_count,
    )
