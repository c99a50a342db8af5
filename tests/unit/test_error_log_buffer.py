from __future__ import annotations

import json
from pathlib import Path

from openpyxl import Workbook

from tagrecon.logging.error_log import EXCEPTIONS_SHEET, ExceptionLogBuffer
from tagrecon.models.error_record import REASON_ROW_NOT_FOUND, ExceptionRecord


def _record(side="ref", key="0-001", remarks="", **changed):
    return ExceptionRecord.create(side, REASON_ROW_NOT_FOUND, key, "Both", remarks, changed)


def test_exception_record_json_line():
    data = json.loads(_record(DESC="Pump").to_json_line())
    assert data["side"] == "ref"
    assert data["integrated_key"] == "0-001"
    assert data["changed"] == {"DESC": "Pump"}
    assert "timestamp" in data and data["timestamp"].endswith("Z")
    assert set(data) == {"timestamp", "side", "reason", "integrated_key", "status", "remarks", "changed"}


def test_exception_record_sheet_row():
    row = _record(remarks="check", SIZE="5").to_sheet_row()
    assert row == {
        "Reason": REASON_ROW_NOT_FOUND,
        "Integrated Key": "0-001",
        "Status": "Both",
        "Remarks": "check",
        "SIZE": "5",
    }


def test_records_by_side():
    buf = ExceptionLogBuffer()
    buf.append(_record("ref"))
    buf.append(_record("comp"))
    buf.append(_record("ref", "0-002"))
    assert len(buf) == 3
    assert [r.integrated_key for r in buf.records("ref")] == ["0-001", "0-002"]
    assert len(buf.records("comp")) == 1


def test_flush_to_sheet_orders_and_drops_empty_columns():
    wb = Workbook()
    buf = ExceptionLogBuffer()
    buf.append(_record(SIZE="5", EXTRA="e"))
    buf.append(_record(key="0-002", DESC="Pump", SIZE=""))
    written = buf.flush_to_sheet(wb, "ref", ["TAG", "DESC", "SIZE"])
    assert written == 2
    ws = wb[EXCEPTIONS_SHEET]
    assert [c.value for c in ws[1]] == ["Reason", "Integrated Key", "Status", "DESC", "SIZE", "EXTRA"]
    assert ws["B3"].value == "0-002"
    assert ws["A1"].font.bold is True
    assert ws.auto_filter.ref == "A1:F1"
    assert 10 <= ws.column_dimensions["A"].width <= 60


def test_flush_to_sheet_replaces_previous_sheet():
    wb = Workbook()
    stale = wb.create_sheet(EXCEPTIONS_SHEET)
    stale["A1"] = "old"
    buf = ExceptionLogBuffer()
    buf.append(_record())
    buf.flush_to_sheet(wb, "ref")
    assert wb[EXCEPTIONS_SHEET]["A1"].value == "Reason"
    assert wb.sheetnames.count(EXCEPTIONS_SHEET) == 1


def test_flush_to_sheet_without_records_removes_sheet():
    wb = Workbook()
    wb.create_sheet(EXCEPTIONS_SHEET)
    buf = ExceptionLogBuffer()
    buf.append(_record("comp"))
    assert buf.flush_to_sheet(wb, "ref") == 0
    assert EXCEPTIONS_SHEET not in wb.sheetnames


def test_flush_json_lines(temp_workdir: Path):
    buf = ExceptionLogBuffer()
    buf.append(_record("ref"))
    buf.append(_record("comp", "0-002"))
    path = buf.flush_json_lines()
    assert path is not None and path.exists()
    assert path.parent.name == "logs"
    assert path.name.startswith("exceptions-") and path.suffix == ".log"
    lines = path.read_text(encoding="utf-8").strip().splitlines()
    assert [json.loads(line)["side"] for line in lines] == ["ref", "comp"]
    assert len(buf) == 0


def test_flush_json_lines_empty(temp_workdir: Path):
    buf = ExceptionLogBuffer(temp_workdir / "custom")
    assert buf.flush_json_lines() is None
    assert not (temp_workdir / "custom").exists()
