from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pandas as pd

from ..models.processing_result import ComparisonSummary
from ..models.unified_row import (
    COMP_REVIEW_SUFFIX,
    COMP_SUFFIX,
    DIFF_SUFFIX,
    REF_REVIEW_SUFFIX,
    REF_SUFFIX,
    AnnotationMap,
    UnifiedRow,
)
from ..services.keys import is_add_marker

"""Result workbook: the flattened comparison outcome reviewers work in.

Sheets:
- "Result": one line per unified row in the flat suffixed schema; reviewers
  fill the ``_refReview`` / ``_compReview`` columns
- "Summary": global figures followed by the per-column table
- "Annotations": integrated key, column id, text
- "Change History": one line per reviewed cell (original and new value, with
  the cell annotation as memo) plus one line per general row remark;
  additions are left to the commit engine's "Added Items" sheet

``read_result`` loads the reviewed workbook back for a commit run.
"""

__all__ = [
    "RESULT_SHEET",
    "SUMMARY_SHEET",
    "ANNOTATIONS_SHEET",
    "CHANGE_HISTORY_SHEET",
    "CHANGE_HISTORY_COLUMNS",
    "ResultWorkbook",
    "result_columns",
    "change_history",
    "write_result",
    "read_result",
]

RESULT_SHEET = "Result"
SUMMARY_SHEET = "Summary"
ANNOTATIONS_SHEET = "Annotations"
CHANGE_HISTORY_SHEET = "Change History"
CHANGE_HISTORY_COLUMNS = ["integratedKey", "identity", "column", "original", "new", "memo"]
GENERAL_REMARKS = "General Remarks"

FIXED_COLUMNS = [
    "integratedKey",
    "exists",
    "standardIdentity",
    "standardSecondary",
    "secondaryMatch",
    "remarks",
]
_FACET_SUFFIXES = (REF_SUFFIX, REF_REVIEW_SUFFIX, COMP_SUFFIX, COMP_REVIEW_SUFFIX, DIFF_SUFFIX)


@dataclass
class ResultWorkbook:
    rows: list[UnifiedRow]
    bases: list[str]
    annotations: AnnotationMap = field(default_factory=dict)


def _bases(rows: Sequence[UnifiedRow]) -> list[str]:
    bases: list[str] = []
    for row in rows:
        for base in row.columns:
            if base not in bases:
                bases.append(base)
    return bases


def result_columns(bases: Sequence[str]) -> list[str]:
    return FIXED_COLUMNS + [base + suffix for base in bases for suffix in _FACET_SUFFIXES]


def _summary_frames(summary: ComparisonSummary) -> tuple[pd.DataFrame, pd.DataFrame]:
    overview = pd.DataFrame(
        [
            ("total", summary.total),
            ("both", summary.both),
            ("perfect_match", summary.perfect_match),
            ("mismatches", summary.mismatches),
            ("only_ref", summary.only_ref),
            ("only_comp", summary.only_comp),
            ("diffs", summary.diffs),
            ("integrity_score", round(summary.integrity_score, 2)),
        ],
        columns=["metric", "value"],
    )
    columns = pd.DataFrame(
        [
            {
                "column": c.column_name,
                "ref_count": c.ref_count,
                "comp_count": c.comp_count,
                "same_count": c.same_count,
                "mismatch_count": c.mismatch_count,
                "only_ref_count": c.only_ref_count,
                "only_comp_count": c.only_comp_count,
                "diff_count": c.diff_count,
                "status": c.status,
            }
            for c in summary.columns
        ],
        columns=[
            "column", "ref_count", "comp_count", "same_count", "mismatch_count",
            "only_ref_count", "only_comp_count", "diff_count", "status",
        ],
    )
    return overview, columns


def change_history(
    rows: Sequence[UnifiedRow],
    annotations: AnnotationMap | None = None,
    identity_column: str | None = None,
) -> list[dict[str, str]]:
    """List every pending review edit of ``rows``, in row then column order."""
    notes = annotations or {}
    entries: list[dict[str, str]] = []
    for row in rows:
        identity = row.columns.get(identity_column) if identity_column else None
        for base, f in row.columns.items():
            for side, value_suffix, review_suffix in (
                ("ref", REF_SUFFIX, REF_REVIEW_SUFFIX),
                ("comp", COMP_SUFFIX, COMP_REVIEW_SUFFIX),
            ):
                new = f.review(side).strip()
                if not new or is_add_marker(new):
                    continue
                entries.append(
                    {
                        "integratedKey": row.integrated_key,
                        "identity": (identity.value(side) if identity else "") or row.standard_identity,
                        "column": base + review_suffix,
                        "original": f.value(side),
                        "new": new,
                        "memo": notes.get((row.integrated_key, base + value_suffix), ""),
                    }
                )
        if row.remarks.strip():
            entries.append(
                {
                    "integratedKey": row.integrated_key,
                    "identity": row.standard_identity,
                    "column": GENERAL_REMARKS,
                    "original": "",
                    "new": row.remarks.strip(),
                    "memo": "",
                }
            )
    return entries


def write_result(
    path: Path,
    rows: Sequence[UnifiedRow],
    summary: ComparisonSummary,
    annotations: AnnotationMap | None = None,
    identity_column: str | None = None,
) -> Path:
    """Write the result workbook and return its path.

    ``identity_column`` fills the identity column of the change history with
    the side's own identity value; without it the standard identity is used.
    """
    bases = _bases(rows)
    columns = result_columns(bases)
    records = []
    for row in rows:
        flat = row.to_flat()
        records.append({c: flat.get(c, "") for c in columns})
    result_df = pd.DataFrame(records, columns=columns)
    overview, per_column = _summary_frames(summary)
    notes = pd.DataFrame(
        [(key, column, text) for (key, column), text in (annotations or {}).items()],
        columns=["integratedKey", "column", "text"],
    )
    history = pd.DataFrame(
        change_history(rows, annotations, identity_column),
        columns=CHANGE_HISTORY_COLUMNS,
    )

    path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        result_df.to_excel(writer, sheet_name=RESULT_SHEET, index=False)
        overview.to_excel(writer, sheet_name=SUMMARY_SHEET, index=False)
        per_column.to_excel(writer, sheet_name=SUMMARY_SHEET, index=False, startrow=len(overview) + 2)
        notes.to_excel(writer, sheet_name=ANNOTATIONS_SHEET, index=False)
        history.to_excel(writer, sheet_name=CHANGE_HISTORY_SHEET, index=False)
    return path


def _bases_from_header(header: Sequence[str]) -> list[str]:
    bases: list[str] = []
    for name in header:
        if name in FIXED_COLUMNS or not name.endswith(REF_SUFFIX):
            continue
        base = name[: -len(REF_SUFFIX)]
        if base not in bases:
            bases.append(base)
    return bases


def _cell(value: Any) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value).strip()


def read_result(path: Path) -> ResultWorkbook:
    """Load a (reviewed) result workbook written by ``write_result``."""
    with pd.ExcelFile(path) as xls:
        result_df = xls.parse(RESULT_SHEET, dtype=object)
        notes_df = (
            xls.parse(ANNOTATIONS_SHEET, dtype=object)
            if ANNOTATIONS_SHEET in xls.sheet_names
            else pd.DataFrame(columns=["integratedKey", "column", "text"])
        )
    header = [str(c) for c in result_df.columns]
    bases = _bases_from_header(header)
    rows = [
        UnifiedRow.from_flat(record, bases)
        for record in result_df.to_dict(orient="records")
    ]
    annotations: AnnotationMap = {}
    for record in notes_df.to_dict(orient="records"):
        key, column, text = (_cell(record.get(k)) for k in ("integratedKey", "column", "text"))
        if key and column and text:
            annotations[(key, column)] = text
    return ResultWorkbook(rows=rows, bases=bases, annotations=annotations)
