from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence

from ..models.config_models import ColumnExclusion, MappingEntry

"""Mapping resolution: which mapped columns take part in a comparison."""

__all__ = [
    "pattern_matches",
    "is_placeholder_column",
    "effective_mappings",
    "comparable_mappings",
]

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"^(unnamed.*|column\s*\d+|col\s*\d+)$", re.IGNORECASE)


def pattern_matches(pattern: str, value: str) -> bool:
    """Match one exclusion pattern against ``value``.

    ``/.../`` is a case-insensitive regex search; anything else is a literal,
    case-insensitive substring. An invalid regex falls back to the literal rule.
    """
    trimmed = pattern.strip()
    if not trimmed:
        return False
    if len(trimmed) > 1 and trimmed.startswith("/") and trimmed.endswith("/"):
        try:
            return re.search(trimmed[1:-1], value, re.IGNORECASE) is not None
        except re.error:
            logger.debug(f"invalid regex pattern {trimmed!r}, using literal match")
    return trimmed.upper() in value.upper()


def any_pattern_matches(patterns: Iterable[str], value: str) -> bool:
    return any(pattern_matches(p, value) for p in patterns)


def is_placeholder_column(name: str) -> bool:
    """Auto-generated header names ("Unnamed: 3", "Column 7", "Col 2")."""
    return _PLACEHOLDER.match(name.strip()) is not None


def effective_mappings(
    mappings: Sequence[MappingEntry], column_exclusion: ColumnExclusion | None
) -> list[MappingEntry]:
    """Drop excluded columns; identity/secondary entries are always retained."""
    if column_exclusion is None:
        return list(mappings)
    kept: list[MappingEntry] = []
    for m in mappings:
        if m.is_key:
            kept.append(m)
            continue
        if column_exclusion.exclude_unnamed_placeholders and is_placeholder_column(m.ref_column):
            continue
        if any_pattern_matches(column_exclusion.patterns, m.ref_column):
            continue
        kept.append(m)
    return kept


def comparable_mappings(
    mappings: Sequence[MappingEntry], column_exclusion: ColumnExclusion | None
) -> list[MappingEntry]:
    """Target or key entries that survive column exclusion."""
    return effective_mappings([m for m in mappings if m.is_target or m.is_key], column_exclusion)
