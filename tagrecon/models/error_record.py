from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime

"""ExceptionRecord model for the commit exceptions report.

One record describes a unified row (or part of one) that the commit engine
could not write back to a document side. It deliberately carries only the
identity, status, general remark and the columns whose reviewed value differs
from the original, never the full row, so the "Needs Confirmation" sheet stays
legible.
"""

__all__ = [
    "ExceptionRecord",
    "REASON_ROW_NOT_FOUND",
    "REASON_COLUMN_NOT_FOUND",
]

REASON_ROW_NOT_FOUND = "Row not found in document"
REASON_COLUMN_NOT_FOUND = "Column not found in sheet"


@dataclass(frozen=True)
class ExceptionRecord:
    """Unresolved write-back item for one document side.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        side: "ref" or "comp"
        reason: why the item could not be applied
        integrated_key: identity of the unified row
        status: ExistsStatus value of the row
        remarks: general reviewer remark of the row
        changed: column name -> reviewed value, only for columns that differ
    """
    timestamp: str
    side: str
    reason: str
    integrated_key: str
    status: str
    remarks: str = ""
    changed: dict[str, str] = field(default_factory=dict)

    @staticmethod
    def create(
        side: str,
        reason: str,
        integrated_key: str,
        status: str,
        remarks: str = "",
        changed: dict[str, str] | None = None,
    ) -> ExceptionRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ExceptionRecord(
            timestamp=ts,
            side=side,
            reason=reason,
            integrated_key=integrated_key,
            status=status,
            remarks=remarks,
            changed=dict(changed or {}),
        )

    def to_sheet_row(self) -> dict[str, str]:
        """Row for the "Needs Confirmation" sheet (header -> value)."""
        row = {
            "Reason": self.reason,
            "Integrated Key": self.integrated_key,
            "Status": self.status,
            "Remarks": self.remarks,
        }
        row.update(self.changed)
        return row

    def to_json_line(self) -> str:
        return json.dumps(
            {
                "timestamp": self.timestamp,
                "side": self.side,
                "reason": self.reason,
                "integrated_key": self.integrated_key,
                "status": self.status,
                "remarks": self.remarks,
                "changed": self.changed,
            },
            ensure_ascii=False,
        )
