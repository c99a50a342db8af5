from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from ..models.unified_row import AnnotationMap, ColumnFacets, ExistsStatus, UnifiedRow
from .keys import SyntheticIdSource, is_row_marker, merge_prefix, normalize_key

"""Reviewer edits on a row generation: pending identity changes, checklist rows, deletion."""

__all__ = [
    "ReviewChange",
    "MANUAL_ENTRY",
    "review_changes",
    "insert_manual_row",
    "delete_row",
]

MANUAL_ENTRY = "Manual Entry"
_ADD_MARKER = "add"


@dataclass(frozen=True)
class ReviewChange:
    """A pending identity edit: applying review compensation moves ``old_key`` to ``new_key``."""
    row_index: int
    side: str  # "ref" | "comp", whichever review facet supplied the new key
    old_key: str
    new_key: str


def review_changes(rows: Sequence[UnifiedRow], identity_column: str) -> list[ReviewChange]:
    changes: list[ReviewChange] = []
    for idx, row in enumerate(rows):
        facets = row.columns.get(identity_column)
        if facets is None:
            continue
        for side, value in (("ref", facets.ref_review), ("comp", facets.comp_review)):
            value = normalize_key(value)
            if value and not is_row_marker(value):
                changes.append(ReviewChange(idx, side, row.integrated_key, merge_prefix(value)))
                break
    return changes


def insert_manual_row(
    rows: Sequence[UnifiedRow],
    identity_column: str,
    id_source: SyntheticIdSource,
    identity: str = "",
    remarks: str = "",
    before_key: str | None = None,
) -> list[UnifiedRow]:
    """Return a new generation with a reviewer checklist row inserted.

    The row gets a synthetic key from ``id_source`` and both identity review
    facets carry the add marker, so a later commit appends it to the
    "Added Items" sheet of each document. It is inserted before the row keyed
    ``before_key`` when given (and present), else at the top.
    """
    identity = normalize_key(identity) or MANUAL_ENTRY
    row = UnifiedRow(
        integrated_key=id_source.next_id(),
        exists=ExistsStatus.BOTH,
        standard_identity=identity,
        remarks=remarks,
    )
    row.columns[identity_column] = ColumnFacets(
        base=identity_column,
        ref_value=identity,
        ref_review=_ADD_MARKER,
        comp_value=identity,
        comp_review=_ADD_MARKER,
    )
    result = list(rows)
    position = 0
    if before_key is not None:
        position = next((i for i, r in enumerate(result) if r.integrated_key == before_key), 0)
    result.insert(position, row)
    return result


def delete_row(
    rows: Sequence[UnifiedRow],
    key: str,
    annotations: AnnotationMap | None = None,
) -> tuple[list[UnifiedRow], AnnotationMap]:
    """Drop every row keyed ``key`` together with its annotations."""
    kept = [r for r in rows if r.integrated_key != key]
    kept_annotations = {k: v for k, v in (annotations or {}).items() if k[0] != key}
    return kept, kept_annotations
