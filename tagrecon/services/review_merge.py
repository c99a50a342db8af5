from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ..models.config_models import MergePolicy
from ..models.unified_row import AnnotationMap, ExistsStatus, UnifiedRow
from .keys import is_row_marker, merge_prefix, normalize_key
from .values import ValueMatcher

"""Review compensation: re-key rows to reviewer-entered identities and merge duplicates.

A reviewer resolves identity disagreements by typing the correct identity in
the identity column's review facet. Rows whose review identities (or current
keys) share a prefix collapse into one ``BothMerged`` row; remark-like text
from every member is concatenated so no reviewer note is lost.
"""

__all__ = [
    "MergeOutcome",
    "REMARK_WORDS",
    "REMARK_SEPARATOR",
    "is_remark_column",
    "target_key",
    "apply_review_compensation",
]

logger = logging.getLogger(__name__)

REMARK_WORDS = ("remark", "comment", "note", "비고", "검토")
REMARK_SEPARATOR = " / "
ANNOTATION_SEPARATOR = "\n"

_FACET_FIELDS = ("ref_value", "ref_review", "comp_value", "comp_review")
_REVIEW_FIELDS = ("ref_review", "comp_review")


@dataclass(frozen=True)
class MergeOutcome:
    rows: list[UnifiedRow]
    annotations: AnnotationMap
    merged_count: int  # rows absorbed into a representative
    rekeyed_count: int  # rows whose integrated key changed


def is_remark_column(name: str) -> bool:
    lowered = name.lower()
    return any(word in lowered for word in REMARK_WORDS)


def target_key(row: UnifiedRow, identity_column: str) -> str:
    """Key a row should carry after review (prefix before the merge separator)."""
    facets = row.columns.get(identity_column)
    review = ""
    if facets is not None:
        for candidate in (facets.ref_review, facets.comp_review):
            candidate = normalize_key(candidate)
            if candidate and not is_row_marker(candidate):
                review = candidate
                break
    return merge_prefix(review or row.integrated_key)


def _has_identity_review(row: UnifiedRow, identity_column: str) -> bool:
    facets = row.columns.get(identity_column)
    if facets is None:
        return False
    return any(
        normalize_key(v) and not is_row_marker(v) for v in (facets.ref_review, facets.comp_review)
    )


def _concat(dest: str, src: str) -> str:
    if not src or src == dest or src in dest:
        return dest
    if not dest:
        return src
    return f"{dest}{REMARK_SEPARATOR}{src}"


def _absorb(rep: UnifiedRow, member: UnifiedRow, identity_column: str, policy: MergePolicy) -> None:
    rep.remarks = _concat(rep.remarks, member.remarks)
    if rep.ref_index is None:
        rep.ref_index = member.ref_index
    if rep.comp_index is None:
        rep.comp_index = member.comp_index
    for base, src in member.columns.items():
        dest = rep.facet(base)
        remark_like = is_remark_column(base)
        for name in _FACET_FIELDS:
            src_val = getattr(src, name)
            if not src_val:
                continue
            dest_val = getattr(dest, name)
            if base == identity_column and name in _REVIEW_FIELDS:
                # one key, never concatenated
                if not dest_val and not is_row_marker(src_val):
                    setattr(dest, name, merge_prefix(normalize_key(src_val)))
            elif remark_like or name in _REVIEW_FIELDS:
                setattr(dest, name, _concat(dest_val, src_val))
            elif policy is MergePolicy.FIRST_NON_BLANK and not dest_val:
                setattr(dest, name, src_val)
            elif policy is MergePolicy.LAST_NON_BLANK:
                setattr(dest, name, src_val)


def _recompute_diffs(row: UnifiedRow, matcher: ValueMatcher) -> None:
    for f in row.columns.values():
        f.diff = row.exists.both_sided and not matcher(f.effective_ref, f.effective_comp)


def _group(rows: Iterable[UnifiedRow], identity_column: str) -> dict[str, list[UnifiedRow]]:
    groups: dict[str, list[UnifiedRow]] = {}
    for row in rows:
        groups.setdefault(target_key(row, identity_column), []).append(row)
    return groups


def _migrate_annotations(
    annotations: AnnotationMap,
    groups: dict[str, list[UnifiedRow]],
) -> AnnotationMap:
    """Copy annotations of every group member onto its group key.

    A key shared by members of several groups is copied to each of them.
    """
    owners: dict[str, list[str]] = {}
    for key, members in groups.items():
        for member in members:
            targets = owners.setdefault(member.integrated_key, [])
            if key not in targets:
                targets.append(key)

    collected: dict[tuple[str, str], list[str]] = {}
    for (row_key, column_id), text in annotations.items():
        for new_key in owners.get(row_key, [row_key]):  # orphans keep their key
            texts = collected.setdefault((new_key, column_id), [])
            for part in text.split(ANNOTATION_SEPARATOR):
                if part and part not in texts:
                    texts.append(part)
    return {k: ANNOTATION_SEPARATOR.join(v) for k, v in collected.items() if v}


def apply_review_compensation(
    rows: Sequence[UnifiedRow],
    identity_column: str,
    annotations: AnnotationMap | None = None,
    policy: MergePolicy = MergePolicy.FIRST_NON_BLANK,
    numeric_tolerance: float = 0.0,
) -> MergeOutcome:
    """Produce the next generation of rows from reviewer identity edits.

    The input rows and annotation map are left untouched. Running the merge
    again on its own output changes nothing.
    """
    matcher = ValueMatcher(numeric_tolerance)
    groups = _group(rows, identity_column)

    result: list[UnifiedRow] = []
    merged = rekeyed = 0
    for key, members in groups.items():
        if len(members) == 1:
            row = members[0].clone()
            if row.integrated_key != key:
                rekeyed += 1
            if row.integrated_key != key or _has_identity_review(row, identity_column):
                row.integrated_key = key
            result.append(row)
            continue

        rep_source = next((r for r in members if r.exists.both_sided), members[0])
        rep = rep_source.clone()
        if rep.integrated_key != key:
            rekeyed += 1
        rep.integrated_key = key
        rep.exists = ExistsStatus.BOTH_MERGED
        for member in members:
            if member is rep_source:
                continue
            _absorb(rep, member, identity_column, policy)
            merged += 1
        _recompute_diffs(rep, matcher)
        logger.debug(f"merged {len(members)} rows into {key!r}")
        result.append(rep)

    next_annotations = _migrate_annotations(annotations or {}, groups)
    if merged or rekeyed:
        logger.info(f"review compensation: merged={merged} rekeyed={rekeyed} rows={len(result)}")
    return MergeOutcome(result, next_annotations, merged, rekeyed)

