from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

"""Config dataclasses for the reconciliation engine.

These are the typed domain models produced by ``tagrecon.config.loader``.
``ReconcileConfig.to_dict`` / ``from_dict`` give the flat object that callers
persist or export alongside a project.
"""

__all__ = [
    "MappingEntry",
    "IdentityExclusion",
    "ColumnExclusion",
    "DocumentSelection",
    "MergePolicy",
    "ReconcileConfig",
]


@dataclass(frozen=True)
class MappingEntry:
    """Correspondence between one reference column and one comparison column.

    ``is_target`` controls whether the column is part of the comparison output;
    ``is_primary_key`` / ``is_secondary_key`` give the column an identity role.
    """
    ref_column: str
    comp_column: str
    is_target: bool = True
    is_primary_key: bool = False
    is_secondary_key: bool = False

    @property
    def is_key(self) -> bool:
        return self.is_primary_key or self.is_secondary_key

    @staticmethod
    def from_dict(data: dict[str, Any]) -> MappingEntry:
        ref = str(data["ref_column"])
        return MappingEntry(
            ref_column=ref,
            comp_column=str(data.get("comp_column") or ref),
            is_target=bool(data.get("is_target", True)),
            is_primary_key=bool(data.get("is_primary_key", False)),
            is_secondary_key=bool(data.get("is_secondary_key", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "ref_column": self.ref_column,
            "comp_column": self.comp_column,
            "is_target": self.is_target,
            "is_primary_key": self.is_primary_key,
            "is_secondary_key": self.is_secondary_key,
        }


@dataclass(frozen=True)
class IdentityExclusion:
    """Row-level exclusion rules evaluated against the identity column."""
    exclude_empty: bool = True
    exclude_leading_alpha: bool = False
    custom_patterns: tuple[str, ...] = ()  # literal substring or "/regex/"


@dataclass(frozen=True)
class ColumnExclusion:
    """Column-level exclusion rules evaluated against reference column names."""
    exclude_unnamed_placeholders: bool = True
    patterns: tuple[str, ...] = ()


@dataclass(frozen=True)
class DocumentSelection:
    """Which workbook, sheet and header row one side is read from.

    ``sheet`` is a sheet name or a 0-based sheet index; ``header_row`` is the
    0-based row index of the header line.
    """
    path: str
    sheet: str | int = 0
    header_row: int = 0


class MergePolicy(Enum):
    """How non-remark facets are combined when duplicate identities merge."""
    FIRST_NON_BLANK = "first_non_blank"  # representative keeps its value, blanks filled in group order
    LAST_NON_BLANK = "last_non_blank"  # later non-blank member values overwrite
    REPRESENTATIVE_ONLY = "representative_only"  # members never contribute


@dataclass(frozen=True)
class ReconcileConfig:
    """Root configuration of a reconciliation run."""
    primary_key_column: str
    mappings: tuple[MappingEntry, ...]
    secondary_key_column: str | None = None
    identity_exclusion: IdentityExclusion = field(default_factory=IdentityExclusion)
    column_exclusion: ColumnExclusion = field(default_factory=ColumnExclusion)
    reference: DocumentSelection | None = None
    comparison: DocumentSelection | None = None
    legacy_prefix_filter: bool = False
    merge_policy: MergePolicy = MergePolicy.FIRST_NON_BLANK
    numeric_tolerance: float = 0.0
    result_path: str | None = None

    @property
    def primary_mapping(self) -> MappingEntry | None:
        return next((m for m in self.mappings if m.is_primary_key), None)

    @property
    def secondary_mapping(self) -> MappingEntry | None:
        return next((m for m in self.mappings if m.is_secondary_key), None)

    @property
    def comp_primary_column(self) -> str:
        """Comparison-side identity column (falls back to the reference name)."""
        pm = self.primary_mapping
        return pm.comp_column if pm and pm.comp_column else self.primary_key_column

    def to_dict(self) -> dict[str, Any]:
        """Flat, JSON/YAML friendly representation (inverse of ``from_dict``)."""
        data: dict[str, Any] = {
            "primary_key_column": self.primary_key_column,
            "secondary_key_column": self.secondary_key_column,
            "mappings": [m.to_dict() for m in self.mappings],
            "identity_exclusion": {
                "exclude_empty": self.identity_exclusion.exclude_empty,
                "exclude_leading_alpha": self.identity_exclusion.exclude_leading_alpha,
                "custom_patterns": list(self.identity_exclusion.custom_patterns),
            },
            "column_exclusion": {
                "exclude_unnamed_placeholders": self.column_exclusion.exclude_unnamed_placeholders,
                "patterns": list(self.column_exclusion.patterns),
            },
            "legacy_prefix_filter": self.legacy_prefix_filter,
            "merge_policy": self.merge_policy.value,
            "numeric_tolerance": self.numeric_tolerance,
        }
        for side, sel in (("reference", self.reference), ("comparison", self.comparison)):
            if sel is not None:
                data[side] = {"path": sel.path, "sheet": sel.sheet, "header_row": sel.header_row}
        if self.result_path:
            data["output"] = {"result_path": self.result_path}
        return data

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ReconcileConfig:
        ie = data.get("identity_exclusion") or {}
        ce = data.get("column_exclusion") or {}

        def _selection(raw: dict[str, Any] | None) -> DocumentSelection | None:
            if not raw:
                return None
            return DocumentSelection(
                path=str(raw["path"]),
                sheet=raw.get("sheet", 0),
                header_row=int(raw.get("header_row", 0)),
            )

        return ReconcileConfig(
            primary_key_column=str(data["primary_key_column"]),
            secondary_key_column=data.get("secondary_key_column") or None,
            mappings=tuple(MappingEntry.from_dict(m) for m in data.get("mappings", [])),
            identity_exclusion=IdentityExclusion(
                exclude_empty=bool(ie.get("exclude_empty", True)),
                exclude_leading_alpha=bool(ie.get("exclude_leading_alpha", False)),
                custom_patterns=tuple(str(p) for p in ie.get("custom_patterns", [])),
            ),
            column_exclusion=ColumnExclusion(
                exclude_unnamed_placeholders=bool(ce.get("exclude_unnamed_placeholders", True)),
                patterns=tuple(str(p) for p in ce.get("patterns", [])),
            ),
            reference=_selection(data.get("reference")),
            comparison=_selection(data.get("comparison")),
            legacy_prefix_filter=bool(data.get("legacy_prefix_filter", False)),
            merge_policy=MergePolicy(data.get("merge_policy", MergePolicy.FIRST_NON_BLANK.value)),
            numeric_tolerance=float(data.get("numeric_tolerance", 0.0)),
            result_path=(data.get("output") or {}).get("result_path"),
        )
