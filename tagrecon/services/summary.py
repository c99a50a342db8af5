from __future__ import annotations

from collections.abc import Iterable, Sequence

from ..models.config_models import ColumnExclusion, MappingEntry
from ..models.processing_result import (
    STATUS_EXCLUDED,
    STATUS_MISMATCH,
    ColumnSummary,
    ComparisonSummary,
)
from ..models.unified_row import ExistsStatus, UnifiedRow
from .mapping import comparable_mappings
from .values import ValueMatcher

"""Summary aggregation and SUMMARY line rendering.

The summary is recomputed from scratch for every row generation (initial
comparison and each review-compensation pass); nothing is updated in place.
"""

__all__ = [
    "IGNORE_WORDS",
    "summarize",
    "is_mismatch_row",
    "render_summary_line",
]

# Columns whose name contains one of these never make a row a "mismatch"
IGNORE_WORDS = ("remark", "비고", "comment", "description", "index", "rev", "note")


def _ignored(column: str) -> bool:
    lowered = column.lower()
    return any(word in lowered for word in IGNORE_WORDS)


def is_mismatch_row(
    row: UnifiedRow,
    key_columns: Iterable[str],
    selected_columns: Iterable[str] | None = None,
) -> bool:
    """Both-sided row with a diff on a counted non-key column."""
    if not row.exists.both_sided:
        return False
    keys = set(key_columns)
    selected = set(selected_columns) if selected_columns else None
    for base, facets in row.columns.items():
        if not facets.diff or base in keys or _ignored(base):
            continue
        if selected is not None and base not in selected:
            continue
        return True
    return False


def _column_summary(
    mapping: MappingEntry,
    both_rows: Sequence[UnifiedRow],
    only_ref: Sequence[UnifiedRow],
    only_comp: Sequence[UnifiedRow],
    is_key: bool,
    comparable: bool,
    matcher: ValueMatcher,
) -> ColumnSummary:
    base = mapping.ref_column

    def ref_of(row: UnifiedRow) -> str:
        f = row.columns.get(base)
        return f.effective_ref if f else ""

    def comp_of(row: UnifiedRow) -> str:
        f = row.columns.get(base)
        return f.effective_comp if f else ""

    if is_key:
        same, mismatch = len(both_rows), 0
    else:
        same = sum(1 for r in both_rows if matcher(ref_of(r), comp_of(r)))
        mismatch = len(both_rows) - same
    only_ref_count = sum(1 for r in only_ref if ref_of(r))
    only_comp_count = sum(1 for r in only_comp if comp_of(r))
    if not comparable:
        status = STATUS_EXCLUDED
    elif mismatch > 0:
        status = STATUS_MISMATCH
    else:
        status = ""
    return ColumnSummary(
        column_name=base,
        ref_count=sum(1 for r in both_rows if ref_of(r)) + only_ref_count,
        comp_count=sum(1 for r in both_rows if comp_of(r)) + only_comp_count,
        same_count=same,
        mismatch_count=mismatch,
        only_ref_count=only_ref_count,
        only_comp_count=only_comp_count,
        status=status,
    )


def summarize(
    rows: Sequence[UnifiedRow],
    mappings: Sequence[MappingEntry],
    column_exclusion: ColumnExclusion | None,
    identity_column: str,
    secondary_column: str | None = None,
    selected_columns: Iterable[str] | None = None,
    numeric_tolerance: float = 0.0,
) -> ComparisonSummary:
    """Compute global and per-column statistics for one row generation."""
    matcher = ValueMatcher(numeric_tolerance)
    both_rows = [r for r in rows if r.exists.both_sided]
    only_ref = [r for r in rows if r.exists is ExistsStatus.ONLY_REF]
    only_comp = [r for r in rows if r.exists is ExistsStatus.ONLY_COMP]

    key_columns = {identity_column}
    if secondary_column:
        key_columns.add(secondary_column)
    key_columns.update(m.ref_column for m in mappings if m.is_key)

    selected = list(selected_columns) if selected_columns else None
    mismatches = sum(1 for r in both_rows if is_mismatch_row(r, key_columns, selected))

    comparable = {m.ref_column for m in comparable_mappings(mappings, column_exclusion)}
    columns = [
        _column_summary(
            m,
            both_rows,
            only_ref,
            only_comp,
            is_key=m.is_key or m.ref_column in key_columns,
            comparable=m.ref_column in comparable,
            matcher=matcher,
        )
        for m in mappings
        if m.is_target
    ]
    return ComparisonSummary(
        total=len(rows),
        both=len(both_rows),
        perfect_match=len(both_rows) - mismatches,
        only_ref=len(only_ref),
        only_comp=len(only_comp),
        mismatches=mismatches,
        columns=columns,
    )


def _fmt_number(value: float) -> str:
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        # avoid scientific notation for tiny values
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.2f}".rstrip("0").rstrip(".")


def render_summary_line(summary: ComparisonSummary, elapsed_seconds: float = 0.0) -> str:
    """Render the SUMMARY line of a comparison run.

    >>> s = ComparisonSummary(total=4, both=2, perfect_match=1, only_ref=1, only_comp=1, mismatches=1)
    >>> render_summary_line(s, 1.5)
    'SUMMARY rows=4 both=2 perfect=1 mismatches=1 only_ref=1 only_comp=1 integrity=25 elapsed_sec=1.5'
    """
    return (
        f"SUMMARY rows={summary.total} "
        f"both={summary.both} "
        f"perfect={summary.perfect_match} "
        f"mismatches={summary.mismatches} "
        f"only_ref={summary.only_ref} "
        f"only_comp={summary.only_comp} "
        f"integrity={_fmt_number(summary.integrity_score)} "
        f"elapsed_sec={_fmt_number(elapsed_seconds)}"
    )
