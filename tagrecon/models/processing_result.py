from __future__ import annotations

from dataclasses import dataclass, field

"""Summary result models for a comparison run.

``ColumnSummary`` carries the per-column counts, ``ComparisonSummary`` the
global figures plus the column breakdown. Both are recomputed from scratch
for every UnifiedRow generation.
"""

__all__ = [
    "ColumnSummary",
    "ComparisonSummary",
    "STATUS_EXCLUDED",
    "STATUS_MISMATCH",
]

STATUS_EXCLUDED = "excluded by rule"
STATUS_MISMATCH = "mismatch"


@dataclass(frozen=True)
class ColumnSummary:
    """Per-column statistics (one per target mapping)."""
    column_name: str
    ref_count: int  # rows carrying a reference value (both-sided + reference-only)
    comp_count: int  # rows carrying a comparison value (both-sided + comparison-only)
    same_count: int  # both-sided rows whose values match
    mismatch_count: int  # both-sided rows whose values differ
    only_ref_count: int  # reference-only rows with a value
    only_comp_count: int  # comparison-only rows with a value
    status: str = ""  # "", "mismatch" or "excluded by rule"

    @property
    def diff_count(self) -> int:
        return self.mismatch_count + self.only_ref_count + self.only_comp_count


@dataclass(frozen=True)
class ComparisonSummary:
    """Global statistics of one UnifiedRow generation."""
    total: int
    both: int
    perfect_match: int
    only_ref: int
    only_comp: int
    mismatches: int
    columns: list[ColumnSummary] = field(default_factory=list)

    @property
    def diffs(self) -> int:
        return self.only_ref + self.only_comp

    @property
    def integrity_score(self) -> float:
        """Share of perfectly matching rows over all rows, in percent."""
        if self.total == 0:
            return 0.0
        return self.perfect_match / self.total * 100
