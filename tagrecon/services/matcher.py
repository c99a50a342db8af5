from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol

from ..models.config_models import MappingEntry, ReconcileConfig
from ..models.unified_row import (
    COMP_SUFFIX,
    REF_SUFFIX,
    AnnotationMap,
    ColumnFacets,
    ExistsStatus,
    UnifiedRow,
)
from .exclusion import filter_rows, fuzzy_get
from .keys import integrated_key, merge_prefix, normalize_key
from .mapping import comparable_mappings
from .values import ValueMatcher

"""Dataset matcher: the four-principle matching algorithm.

Principles run in a fixed order and each one only consumes rows that no
earlier principle matched:

1. identity match (effective identity, prefix before the merge separator)
2. secondary-key fallback (only when a secondary key is configured)
3. reference-only rows
4. comparison-only rows

Output order follows the principles, then the original row order, so two
runs over unchanged inputs yield the same sequence.
"""

__all__ = [
    "ValidationError",
    "REVIEW_SUFFIX",
    "value_with_fallback",
    "validate_config",
    "match_datasets",
    "map_cell_annotations",
]

logger = logging.getLogger(__name__)

# Suffix of the reviewer column carried by resumed/partially reviewed extracts
# ("TAG" -> "TAGReview"; fuzzy lookup also accepts "TAG Review", "TAG_review").
REVIEW_SUFFIX = "Review"

Row = Mapping[str, Any]


class ValidationError(Exception):
    """Raised when a run cannot start (no identity column, empty mapping, missing sheet)."""


class AnnotatedSheet(Protocol):
    columns: list[str]
    annotations: dict[tuple[int, int], str]


def value_with_fallback(row: Row | None, column: str) -> str:
    """Normalized value of ``column``, or of its review column when blank."""
    main = normalize_key(fuzzy_get(row, column))
    if main:
        return main
    return normalize_key(fuzzy_get(row, column + REVIEW_SUFFIX))


def validate_config(config: ReconcileConfig) -> None:
    if not config.primary_key_column or not config.primary_key_column.strip():
        raise ValidationError("no identity column selected")
    if not config.mappings:
        raise ValidationError("column mapping is empty")
    if sum(1 for m in config.mappings if m.is_primary_key) > 1:
        raise ValidationError("more than one mapping is flagged as primary key")
    if sum(1 for m in config.mappings if m.is_secondary_key) > 1:
        raise ValidationError("more than one mapping is flagged as secondary key")


class _RowBuilder:
    """Builds UnifiedRows for one run (identity/secondary columns resolved once)."""

    def __init__(self, config: ReconcileConfig, mappings: list[MappingEntry]) -> None:
        self.matcher = ValueMatcher(config.numeric_tolerance)
        self.pk_ref = config.primary_key_column
        self.pk_comp = config.comp_primary_column
        sm = config.secondary_mapping
        self.sk_ref = config.secondary_key_column or (sm.ref_column if sm else None)
        self.sk_comp = (sm.comp_column if sm else None) or self.sk_ref
        self.value_mappings = [m for m in mappings if not m.is_key]

    def _facets(
        self,
        base: str,
        ref: Row | None,
        comp: Row | None,
        ref_col: str,
        comp_col: str,
        both: bool,
    ) -> ColumnFacets:
        f = ColumnFacets(base=base)
        if ref is not None:
            f.ref_value = normalize_key(fuzzy_get(ref, ref_col))
            f.ref_review = normalize_key(fuzzy_get(ref, ref_col + REVIEW_SUFFIX))
        if comp is not None:
            f.comp_value = normalize_key(fuzzy_get(comp, comp_col))
            f.comp_review = normalize_key(fuzzy_get(comp, comp_col + REVIEW_SUFFIX))
        if both and not self.matcher(f.effective_ref, f.effective_comp):
            f.diff = True
        return f

    def build(
        self,
        ref: Row | None,
        comp: Row | None,
        status: ExistsStatus,
        ref_index: int | None,
        comp_index: int | None,
    ) -> UnifiedRow:
        both = status is ExistsStatus.BOTH
        pk = self._facets(self.pk_ref, ref, comp, self.pk_ref, self.pk_comp, both)
        # identities fall back value -> review (diffs prefer the review value)
        ref_id = pk.ref_value or pk.ref_review
        comp_id = pk.comp_value or pk.comp_review
        row = UnifiedRow(
            integrated_key=integrated_key(ref_id, comp_id),
            exists=status,
            standard_identity=ref_id or comp_id,
            ref_index=ref_index,
            comp_index=comp_index,
        )
        row.columns[self.pk_ref] = pk
        if self.sk_ref:
            sk = self._facets(self.sk_ref, ref, comp, self.sk_ref, self.sk_comp or self.sk_ref, both)
            row.columns[self.sk_ref] = sk
            row.standard_secondary = sk.ref_value or sk.ref_review
        for m in self.value_mappings:
            if m.ref_column in row.columns:
                continue
            row.columns[m.ref_column] = self._facets(
                m.ref_column, ref, comp, m.ref_column, m.comp_column or m.ref_column, both
            )
        return row


def _queue_by_key(
    candidates: Sequence[tuple[int, int, Row]],
    key_of: Callable[[Row], str],
) -> dict[str, deque[tuple[int, int, Row]]]:
    """Group candidate rows by key, preserving original order within a key."""
    queues: dict[str, deque[tuple[int, int, Row]]] = {}
    for entry in candidates:
        key = key_of(entry[2])
        if key:
            queues.setdefault(key, deque()).append(entry)
    return queues


def match_datasets(
    ref_rows: Sequence[Row],
    comp_rows: Sequence[Row],
    config: ReconcileConfig,
    legacy_mode: bool | None = None,
) -> list[UnifiedRow]:
    """Run the matching algorithm and return a complete UnifiedRow generation.

    Parameters
    ----------
    ref_rows / comp_rows: parsed rows (column name -> scalar) of each side
    config: identity columns, mappings and exclusion rules
    legacy_mode: only keep identities starting with the legacy prefix
        (defaults to ``config.legacy_prefix_filter``)
    """
    validate_config(config)
    if legacy_mode is None:
        legacy_mode = config.legacy_prefix_filter

    mappings = comparable_mappings(config.mappings, config.column_exclusion)
    builder = _RowBuilder(config, mappings)

    pk_ref, pk_comp = builder.pk_ref, builder.pk_comp
    ref_kept = filter_rows(ref_rows, pk_ref, legacy_mode, config.identity_exclusion, value_with_fallback)
    comp_kept = filter_rows(comp_rows, pk_comp, legacy_mode, config.identity_exclusion, value_with_fallback)
    logger.debug(
        f"exclusion: ref {len(ref_kept)}/{len(ref_rows)} comp {len(comp_kept)}/{len(comp_rows)} rows kept"
    )

    # (position in filtered list, original index, row)
    refs = [(pos, idx, row) for pos, (idx, row) in enumerate(ref_kept)]
    comps = [(pos, idx, row) for pos, (idx, row) in enumerate(comp_kept)]
    ref_matched: set[int] = set()
    comp_matched: set[int] = set()
    results: list[UnifiedRow] = []

    # Principle 1: identity match
    comp_by_identity = _queue_by_key(comps, lambda r: merge_prefix(value_with_fallback(r, pk_comp)))
    for pos, idx, ref in refs:
        ref_pk = value_with_fallback(ref, pk_ref)
        if not ref_pk:
            continue
        queue = comp_by_identity.get(merge_prefix(ref_pk))
        if not queue:
            continue
        c_pos, c_idx, comp = queue.popleft()
        ref_matched.add(pos)
        comp_matched.add(c_pos)
        results.append(builder.build(ref, comp, ExistsStatus.BOTH, idx, c_idx))
    identity_matches = len(results)

    # Principle 2: secondary-key fallback
    if builder.sk_ref:
        sk_ref, sk_comp = builder.sk_ref, builder.sk_comp or builder.sk_ref
        remaining = [c for c in comps if c[0] not in comp_matched]
        comp_by_secondary = _queue_by_key(remaining, lambda r: value_with_fallback(r, sk_comp))
        for pos, idx, ref in refs:
            if pos in ref_matched:
                continue
            ref_sk = value_with_fallback(ref, sk_ref)
            if not ref_sk:
                continue
            queue = comp_by_secondary.get(ref_sk)
            if not queue:
                continue
            c_pos, c_idx, comp = queue.popleft()
            ref_matched.add(pos)
            comp_matched.add(c_pos)
            row = builder.build(ref, comp, ExistsStatus.BOTH, idx, c_idx)
            row.secondary_match = True
            results.append(row)
    secondary_matches = len(results) - identity_matches

    # Principle 3: reference-only
    for pos, idx, ref in refs:
        if pos not in ref_matched:
            results.append(builder.build(ref, None, ExistsStatus.ONLY_REF, idx, None))

    # Principle 4: comparison-only
    for pos, idx, comp in comps:
        if pos not in comp_matched:
            results.append(builder.build(None, comp, ExistsStatus.ONLY_COMP, None, idx))

    logger.info(
        f"matched rows={len(results)} identity={identity_matches} secondary={secondary_matches} "
        f"only_ref={len(refs) - len(ref_matched)} only_comp={len(comps) - len(comp_matched)}"
    )
    return results


def map_cell_annotations(
    rows: Sequence[UnifiedRow],
    ref_sheet: AnnotatedSheet | None,
    comp_sheet: AnnotatedSheet | None,
    mappings: Sequence[MappingEntry] = (),
) -> AnnotationMap:
    """Re-key parser cell annotations ``(row_index, column_index)`` onto unified rows.

    Column ids follow the flat schema: ``<base>_ref`` / ``<base>_comp``, where a
    comparison column is translated to its mapped reference name.
    """
    comp_to_base = {m.comp_column: m.ref_column for m in mappings if m.comp_column}
    result: AnnotationMap = {}
    for row in rows:
        for sheet, index, suffix, rename in (
            (ref_sheet, row.ref_index, REF_SUFFIX, {}),
            (comp_sheet, row.comp_index, COMP_SUFFIX, comp_to_base),
        ):
            if sheet is None or index is None or not sheet.annotations:
                continue
            for col_idx, col_name in enumerate(sheet.columns):
                text = sheet.annotations.get((index, col_idx))
                if text:
                    base = rename.get(col_name, col_name)
                    result[(row.integrated_key, base + suffix)] = text
    return result
