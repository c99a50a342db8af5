from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from ..models.error_record import ExceptionRecord

"""Exceptions report buffering for commit runs.

- one buffer per commit run, records tagged with their document side
- ``flush_to_sheet`` rebuilds the "Needs Confirmation" sheet of a workbook
- ``flush_json_lines`` appends JSON Lines to ``logs/exceptions-YYYYMMDD-HHMMSS.log`` (UTC)
"""

__all__ = [
    "ExceptionRecord",
    "ExceptionLogBuffer",
    "EXCEPTIONS_SHEET",
    "FIXED_HEADERS",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"

EXCEPTIONS_SHEET = "Needs Confirmation"
FIXED_HEADERS = ("Reason", "Integrated Key", "Status", "Remarks")

_HEADER_FONT = Font(bold=True, color="FFFFFFFF")
_HEADER_FILL = PatternFill(fill_type="solid", fgColor="FF4472C4")
_HEADER_ALIGN = Alignment(vertical="center", horizontal="center")
_MIN_WIDTH = 10
_MAX_WIDTH = 60


class ExceptionLogBuffer:
    """In-memory buffer of exception records.

    - file path for JSON Lines is decided on first flush
    - no thread safety needed (one commit at a time)
    """
    def __init__(self, logs_dir: Path | None = None) -> None:
        self._records: list[ExceptionRecord] = []
        self._logs_dir = logs_dir if logs_dir is not None else LOGS_DIR
        self._file_path: Path | None = None

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"exceptions-{stamp}.log"
        return self._file_path

    def append(self, record: ExceptionRecord) -> None:
        self._records.append(record)

    def records(self, side: str | None = None) -> list[ExceptionRecord]:
        if side is None:
            return list(self._records)
        return [r for r in self._records if r.side == side]

    def __len__(self) -> int:
        return len(self._records)

    def flush_to_sheet(self, workbook: Any, side: str, column_order: Sequence[str] = ()) -> int:
        """Rebuild the exceptions sheet of ``workbook`` from this side's records.

        Columns are the fixed headers followed by the changed columns in
        ``column_order`` (unknown columns last, first-seen order). Columns that
        are empty in every record are dropped. Returns the number of rows written.
        """
        if EXCEPTIONS_SHEET in workbook.sheetnames:
            del workbook[EXCEPTIONS_SHEET]
        rows = [r.to_sheet_row() for r in self.records(side)]
        if not rows:
            return 0

        dynamic: list[str] = []
        for row in rows:
            for key in row:
                if key not in FIXED_HEADERS and key not in dynamic:
                    dynamic.append(key)
        order = {name: i for i, name in enumerate(column_order)}
        dynamic.sort(key=lambda k: order.get(k, len(order)))
        headers = [
            h for h in (*FIXED_HEADERS, *dynamic)
            if any(str(row.get(h, "") or "").strip() for row in rows)
        ]

        ws = workbook.create_sheet(EXCEPTIONS_SHEET)
        ws.append(headers)
        for cell in ws[1]:
            cell.font = _HEADER_FONT
            cell.fill = _HEADER_FILL
            cell.alignment = _HEADER_ALIGN
        for row in rows:
            ws.append([row.get(h, "") for h in headers])
        ws.auto_filter.ref = f"A1:{get_column_letter(len(headers))}1"
        for idx, header in enumerate(headers, start=1):
            longest = max([len(header)] + [len(str(row.get(header, ""))) for row in rows])
            ws.column_dimensions[get_column_letter(idx)].width = min(max(longest + 2, _MIN_WIDTH), _MAX_WIDTH)
        return len(rows)

    def flush_json_lines(self) -> Path | None:
        """Append all records as JSON Lines; ``None`` when there is nothing to write."""
        if not self._records:
            return None
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
