from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..excel.cells import scalar_text

"""UnifiedRow model: one reconciled row produced by the dataset matcher.

Internally every logical column is a ``ColumnFacets`` record. The suffixed
flat form (``C_ref``, ``C_refReview``, ``C_comp``, ``C_compReview``, ``C_diff``)
exists only at the serialization boundary (``to_flat`` / ``from_flat``), which
is what the result workbook and other external consumers read.
"""

__all__ = [
    "ExistsStatus",
    "ColumnFacets",
    "UnifiedRow",
    "AnnotationMap",
    "REF_SUFFIX",
    "REF_REVIEW_SUFFIX",
    "COMP_SUFFIX",
    "COMP_REVIEW_SUFFIX",
    "DIFF_SUFFIX",
]

REF_SUFFIX = "_ref"
REF_REVIEW_SUFFIX = "_refReview"
COMP_SUFFIX = "_comp"
COMP_REVIEW_SUFFIX = "_compReview"
DIFF_SUFFIX = "_diff"

# (integrated_key, column_id) -> free text
AnnotationMap = dict[tuple[str, str], str]

_FIXED_FLAT_KEYS = (
    "integratedKey",
    "exists",
    "standardIdentity",
    "standardSecondary",
    "secondaryMatch",
    "remarks",
)


class ExistsStatus(Enum):
    """Match outcome of a unified row.

    - BOTH: matched on both sides
    - ONLY_REF: present only in the reference dataset
    - ONLY_COMP: present only in the comparison dataset
    - BOTH_MERGED: produced by collapsing reviewer-identified duplicates
    """
    BOTH = "Both"
    ONLY_REF = "OnlyRef"
    ONLY_COMP = "OnlyComp"
    BOTH_MERGED = "BothMerged"

    @property
    def both_sided(self) -> bool:
        return self in (ExistsStatus.BOTH, ExistsStatus.BOTH_MERGED)


@dataclass
class ColumnFacets:
    """The four facets of one logical column plus its diff flag."""
    base: str
    ref_value: str = ""
    ref_review: str = ""
    comp_value: str = ""
    comp_review: str = ""
    diff: bool = False

    @property
    def effective_ref(self) -> str:
        return self.ref_review or self.ref_value

    @property
    def effective_comp(self) -> str:
        return self.comp_review or self.comp_value

    def value(self, side: str) -> str:
        return self.ref_value if side == "ref" else self.comp_value

    def review(self, side: str) -> str:
        return self.ref_review if side == "ref" else self.comp_review


@dataclass
class UnifiedRow:
    """A reconciled row (one per matching outcome)."""
    integrated_key: str
    exists: ExistsStatus
    standard_identity: str = ""
    standard_secondary: str = ""
    columns: dict[str, ColumnFacets] = field(default_factory=dict)
    secondary_match: bool = False
    remarks: str = ""  # general reviewer remark for the whole row
    ref_index: int | None = None  # position in the reference input rows
    comp_index: int | None = None  # position in the comparison input rows

    def facet(self, base: str) -> ColumnFacets:
        """Return the facets for ``base``, creating an empty record if absent."""
        if base not in self.columns:
            self.columns[base] = ColumnFacets(base=base)
        return self.columns[base]

    def clone(self) -> UnifiedRow:
        return copy.deepcopy(self)

    def to_flat(self) -> dict[str, Any]:
        """Flatten to the suffixed schema used by external consumers."""
        flat: dict[str, Any] = {
            "integratedKey": self.integrated_key,
            "exists": self.exists.value,
            "standardIdentity": self.standard_identity,
            "standardSecondary": self.standard_secondary,
            "secondaryMatch": self.secondary_match,
            "remarks": self.remarks,
        }
        for base, f in self.columns.items():
            flat[base + REF_SUFFIX] = f.ref_value
            flat[base + REF_REVIEW_SUFFIX] = f.ref_review
            flat[base + COMP_SUFFIX] = f.comp_value
            flat[base + COMP_REVIEW_SUFFIX] = f.comp_review
            if f.diff:
                flat[base + DIFF_SUFFIX] = True
        return flat

    @staticmethod
    def from_flat(flat: dict[str, Any], bases: list[str] | None = None) -> UnifiedRow:
        """Rebuild a row from its flat form.

        ``bases`` fixes the logical columns (and their order); when omitted they
        are derived from the ``_ref`` keys present in ``flat``.
        """
        def _text(v: Any) -> str:
            if v is None or v != v:  # NaN and NaT from pandas
                return ""
            return scalar_text(v).strip()

        if bases is None:
            bases = [
                k[: -len(REF_SUFFIX)]
                for k in flat
                if k.endswith(REF_SUFFIX) and k not in _FIXED_FLAT_KEYS
            ]
        row = UnifiedRow(
            integrated_key=_text(flat.get("integratedKey")),
            exists=ExistsStatus(_text(flat.get("exists")) or ExistsStatus.BOTH.value),
            standard_identity=_text(flat.get("standardIdentity")),
            standard_secondary=_text(flat.get("standardSecondary")),
            secondary_match=_text(flat.get("secondaryMatch")).lower() in ("true", "1"),
            remarks=_text(flat.get("remarks")),
        )
        for base in bases:
            row.columns[base] = ColumnFacets(
                base=base,
                ref_value=_text(flat.get(base + REF_SUFFIX)),
                ref_review=_text(flat.get(base + REF_REVIEW_SUFFIX)),
                comp_value=_text(flat.get(base + COMP_SUFFIX)),
                comp_review=_text(flat.get(base + COMP_REVIEW_SUFFIX)),
                diff=_text(flat.get(base + DIFF_SUFFIX)).lower() in ("true", "1"),
            )
        return row
