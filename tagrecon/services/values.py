from __future__ import annotations

import re
from typing import Any

from .keys import normalize_key

"""Semantic value equality.

Two values match when their normalized, lower-cased text is equal, or when
both parse as numbers (after removing comma thousands-separators) and the
numbers are equal. Only plain ASCII decimal notation counts as a number:
underscores and full-width or other non-ASCII digits do not. Numeric
equality is exact unless a tolerance is configured.
"""

__all__ = [
    "NUMBER_PATTERN",
    "is_match",
    "parse_number",
    "ValueMatcher",
]

NUMBER_PATTERN = re.compile(r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")


def parse_number(text: str) -> float | None:
    """Parse ``text`` as a float after stripping commas; ``None`` if it is not numeric."""
    cleaned = text.replace(",", "").strip()
    if not NUMBER_PATTERN.fullmatch(cleaned):
        return None
    return float(cleaned)


def is_match(a: Any, b: Any, tolerance: float = 0.0) -> bool:
    """Decide semantic equality of two raw values.

    >>> is_match("1", "1.0"), is_match(" Foo ", "foo"), is_match("1,000", "1000")
    (True, True, True)
    >>> is_match("A", "B")
    False
    """
    s1 = normalize_key(a)
    s2 = normalize_key(b)
    if s1.lower() == s2.lower():
        return True
    if not s1 or not s2:
        return False
    n1 = parse_number(s1)
    n2 = parse_number(s2)
    if n1 is None or n2 is None:
        return False
    if tolerance > 0:
        return abs(n1 - n2) <= tolerance
    return n1 == n2


class ValueMatcher:
    """``is_match`` bound to a configured numeric tolerance."""

    def __init__(self, tolerance: float = 0.0) -> None:
        if tolerance < 0:
            raise ValueError(f"numeric tolerance must be >= 0, got {tolerance}")
        self.tolerance = tolerance

    def __call__(self, a: Any, b: Any) -> bool:
        return is_match(a, b, self.tolerance)
