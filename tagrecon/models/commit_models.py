from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

"""Commit run models: resolution outcomes and per-side statistics.

``CommitTarget`` and the resolution outcomes are transient; they exist for
the duration of one commit run and are rebuilt every time.
"""

__all__ = [
    "CommitTarget",
    "Resolved",
    "Unresolved",
    "SideStats",
    "CommitResult",
]


@dataclass(frozen=True)
class CommitTarget:
    """Location of a unified row inside one external document."""
    document: str  # "ref" or "comp"
    sheet: str
    row_number: int  # 1-based worksheet row
    header_row: int  # 1-based header row of that sheet


@dataclass(frozen=True)
class Resolved:
    target: CommitTarget
    strategy: str  # name of the resolver that found it


@dataclass(frozen=True)
class Unresolved:
    key: str
    tried: tuple[str, ...] = ()


@dataclass
class SideStats:
    """Counters for one document side."""
    updated: int = 0
    identical: int = 0
    unresolved: int = 0
    deleted: int = 0
    added: int = 0
    no_review: int = 0  # review cells that were blank
    dropped_columns: int = 0
    strategies: dict[str, int] = field(default_factory=dict)  # resolver name -> hits

    def record_strategy(self, name: str) -> None:
        self.strategies[name] = self.strategies.get(name, 0) + 1

    def as_dict(self) -> dict[str, Any]:
        return {
            "updated": self.updated,
            "identical": self.identical,
            "unresolved": self.unresolved,
            "deleted": self.deleted,
            "added": self.added,
            "no_review": self.no_review,
            "dropped_columns": self.dropped_columns,
        }


@dataclass
class CommitResult:
    """Outcome of a commit run over both documents."""
    ref: SideStats = field(default_factory=SideStats)
    comp: SideStats = field(default_factory=SideStats)
    written: dict[str, bool] = field(default_factory=lambda: {"ref": False, "comp": False})
    errors: dict[str, str] = field(default_factory=dict)  # side -> why it was not written
    exceptions_path: str | None = None

    def side(self, name: str) -> SideStats:
        return self.ref if name == "ref" else self.comp

    def _total(self, attr: str) -> int:
        return getattr(self.ref, attr) + getattr(self.comp, attr)

    @property
    def updated(self) -> int:
        return self._total("updated")

    @property
    def identical(self) -> int:
        return self._total("identical")

    @property
    def unresolved(self) -> int:
        return self._total("unresolved")

    @property
    def deleted(self) -> int:
        return self._total("deleted")

    @property
    def added(self) -> int:
        return self._total("added")

    def describe(self) -> str:
        """Human-readable outcome, including why nothing changed if so."""
        head = (
            f"updated={self.updated} identical={self.identical} "
            f"unresolved={self.unresolved} deleted={self.deleted} added={self.added}"
        )
        if self.updated or self.deleted or self.added:
            return head
        reasons = []
        if self.identical:
            reasons.append(f"{self.identical} reviewed cell(s) already hold the reviewed value")
        if self.unresolved:
            reasons.append(f"{self.unresolved} row(s) could not be located (see Needs Confirmation sheet)")
        no_review = self._total("no_review")
        if no_review:
            reasons.append(f"{no_review} review cell(s) were blank")
        if self._total("dropped_columns"):
            reasons.append(f"{self._total('dropped_columns')} column edit(s) had no matching header")
        if not reasons:
            reasons.append("no reviewed values were found")
        return f"nothing changed: {'; '.join(reasons)} ({head})"
