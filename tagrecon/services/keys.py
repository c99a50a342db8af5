from __future__ import annotations

import re
import unicodedata
from typing import Any

from ..excel.cells import CellValue, scalar_text

"""Key normalization and integrated-key resolution.

``normalize_key`` is the single place where raw cell values (scalars or
tagged ``CellValue``s) become comparable strings; everything downstream only
handles text.
"""

__all__ = [
    "MERGE_SEPARATOR",
    "UNKNOWN_KEY",
    "LEGACY_PREFIX",
    "DELETE_MARKERS",
    "ADD_MARKERS",
    "is_delete_marker",
    "is_add_marker",
    "is_row_marker",
    "normalize_key",
    "merge_prefix",
    "integrated_key",
    "normalize_header",
    "aggressive_normalize",
    "SyntheticIdSource",
]

MERGE_SEPARATOR = "::"
UNKNOWN_KEY = "UNKNOWN"
LEGACY_PREFIX = "0-"

# Reviewer row markers written into an identity review facet
DELETE_MARKERS = frozenset({"delete", "삭제"})
ADD_MARKERS = frozenset({"add", "추가"})

_CONTROL_CHARS = re.compile(r"[\r\n\t]")
_WHITESPACE_RUN = re.compile(r"\s+")


def normalize_key(value: Any) -> str:
    """Canonicalize a raw cell value into a comparable string.

    ``None`` becomes ``""``; control characters become spaces, whitespace
    runs collapse to one space and the result is trimmed.

    >>> normalize_key("  0-001\\n A ")
    '0-001 A'
    >>> normalize_key(None)
    ''
    >>> normalize_key(100.0)
    '100'
    """
    if value is None:
        return ""
    if isinstance(value, CellValue):
        text = value.text
    elif isinstance(value, str):
        text = value
    else:
        text = scalar_text(value)
    text = _CONTROL_CHARS.sub(" ", text)
    return _WHITESPACE_RUN.sub(" ", text).strip()


def merge_prefix(key: str) -> str:
    """Part of a key before the merge separator."""
    return key.split(MERGE_SEPARATOR, 1)[0]


def integrated_key(ref_identity: Any, comp_identity: Any) -> str:
    """Canonical identity of a unified row, reference side first."""
    return normalize_key(ref_identity) or normalize_key(comp_identity) or UNKNOWN_KEY


def normalize_header(name: Any) -> str:
    """Lower-cased letters and digits only (any script), for fuzzy column lookup.

    "TAG NO", "Tag_No" and "tag-no" all normalize to "tagno".
    """
    text = normalize_key(name).lower()
    return "".join(ch for ch in text if ch.isalnum())


def aggressive_normalize(value: Any) -> str:
    """Width-, case-, diacritic- and punctuation-insensitive form of a value.

    Used by the commit engine when matching keys against foreign documents.
    """
    text = unicodedata.normalize("NFKC", normalize_key(value))
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    # recompose so Hangul and other composed scripts compare in NFC form
    recomposed = unicodedata.normalize("NFC", stripped).casefold()
    return "".join(ch for ch in recomposed if ch.isalnum())


class SyntheticIdSource:
    """Monotonic source of synthetic identities for manually inserted rows.

    One instance belongs to one run/session; tests create their own and
    ``reset()`` it for deterministic keys.
    """

    def __init__(self, prefix: str = "CHECK", start: int = 0) -> None:
        self.prefix = prefix
        self._start = start
        self._counter = start

    def next_id(self) -> str:
        self._counter += 1
        return f"{self.prefix}-{self._counter:05d}"

    def reset(self) -> None:
        self._counter = self._start

    def owns(self, key: str) -> bool:
        """Whether ``key`` looks like an id produced by this source."""
        return key.startswith(f"{self.prefix}-")


def is_delete_marker(value: Any) -> bool:
    return normalize_key(value).lower() in DELETE_MARKERS


def is_add_marker(value: Any) -> bool:
    return normalize_key(value).lower() in ADD_MARKERS


def is_row_marker(value: Any) -> bool:
    """Review value that marks a row for deletion/addition rather than renaming it."""
    return is_delete_marker(value) or is_add_marker(value)
