from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any

from ..models.config_models import IdentityExclusion
from .keys import LEGACY_PREFIX, normalize_header, normalize_key
from .mapping import any_pattern_matches

"""Identity-level row exclusion applied before matching."""

__all__ = [
    "fuzzy_get",
    "is_excluded",
    "filter_rows",
]


def fuzzy_get(row: Mapping[str, Any] | None, column: str) -> Any:
    """Column lookup tolerant to header punctuation, spacing and case.

    Exact key first; otherwise the first key whose letters-and-digits form
    equals that of ``column`` ("TAG NO" finds "Tag_No").
    """
    if not row:
        return None
    if column in row:
        return row[column]
    target = normalize_header(column)
    if not target:
        return None
    for key in row:
        if normalize_header(key) == target:
            return row[key]
    return None


def is_excluded(
    raw_value: Any,
    legacy_mode: bool,
    identity_exclusion: IdentityExclusion | None,
) -> bool:
    value = normalize_key(raw_value)
    if identity_exclusion is not None and identity_exclusion.exclude_empty:
        if raw_value is None or str(raw_value).strip() == "":
            return True
    if not value:
        return True
    if legacy_mode and not value.startswith(LEGACY_PREFIX):
        return True
    if identity_exclusion is None:
        return False
    if identity_exclusion.exclude_leading_alpha and value[0].isascii() and value[0].isalpha():
        return True
    return any_pattern_matches(identity_exclusion.custom_patterns, value)


def filter_rows(
    rows: Sequence[Mapping[str, Any]],
    identity_column: str,
    legacy_mode: bool = False,
    identity_exclusion: IdentityExclusion | None = None,
    getter: Callable[[Mapping[str, Any], str], Any] = fuzzy_get,
) -> list[tuple[int, Mapping[str, Any]]]:
    """Return ``(original_index, row)`` for every row that survives exclusion.

    ``getter`` reads the identity value; the matcher passes a getter that
    falls back to the review column so resumed rows are not dropped.
    """
    return [
        (idx, row)
        for idx, row in enumerate(rows)
        if not is_excluded(getter(row, identity_column), legacy_mode, identity_exclusion)
    ]
