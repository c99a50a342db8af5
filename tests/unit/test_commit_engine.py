from __future__ import annotations

import asyncio
import dataclasses
import errno
import json
import zipfile
from pathlib import Path
from unittest.mock import patch

import pytest
from openpyxl import Workbook, load_workbook

from tagrecon.logging.error_log import EXCEPTIONS_SHEET
from tagrecon.models.config_models import MappingEntry
from tagrecon.models.error_record import REASON_COLUMN_NOT_FOUND, REASON_ROW_NOT_FOUND
from tagrecon.models.unified_row import ColumnFacets, ExistsStatus, UnifiedRow
from tagrecon.services.commit_engine import (
    ADDED_ITEMS_SHEET,
    CommitEngine,
    CommitError,
    DocumentFormatError,
    DocumentLockError,
    DocumentWriteError,
    FileDocumentIO,
)
from tagrecon.services.keys import SyntheticIdSource
from tagrecon.services.review_edits import insert_manual_row


def make_row(key, exists=ExistsStatus.BOTH, remarks="", **columns):
    """``columns`` maps a base name to (ref, ref_review, comp, comp_review)."""
    row = UnifiedRow(integrated_key=key, exists=exists, standard_identity=key, remarks=remarks)
    on_ref = exists is not ExistsStatus.ONLY_COMP
    on_comp = exists is not ExistsStatus.ONLY_REF
    row.columns["TAG"] = ColumnFacets("TAG", key if on_ref else "", "", key if on_comp else "", "")
    for base, (ref, ref_review, comp, comp_review) in columns.items():
        row.columns[base] = ColumnFacets(base, ref, ref_review, comp, comp_review)
    return row


@pytest.fixture()
def documents(ref_workbook: Path, comp_workbook: Path) -> tuple[Path, Path]:
    return ref_workbook, comp_workbook


@pytest.fixture()
def engine(file_config) -> CommitEngine:
    return CommitEngine(FileDocumentIO(), file_config)


def _sheet(path: Path, name: str = "Sheet1"):
    return load_workbook(path)[name]


def test_review_value_is_written_and_highlighted(engine, documents):
    ref, comp = documents
    rows = [make_row("0-002", DESC=("Valve B", "", "Valve X", "Valve B"))]
    result = engine.commit(rows, ref, comp)

    assert result.comp.updated == 1
    assert result.ref.updated == 0
    assert result.written == {"ref": True, "comp": True}
    cell = _sheet(comp)["B3"]
    assert cell.value == "Valve B"
    assert cell.font.bold is True
    assert cell.font.color.rgb == "FF0000FF"
    assert cell.fill.fgColor.rgb == "FFFFFF00"


def test_identical_review_clears_highlight(engine, documents):
    ref, comp = documents
    rows = [make_row("0-002", DESC=("Valve B", "", "Valve X", "Valve B"))]
    engine.commit(rows, ref, comp)
    again = engine.commit(rows, ref, comp)

    assert again.comp.updated == 0
    assert again.comp.identical == 1
    cell = _sheet(comp)["B3"]
    assert cell.value == "Valve B"
    assert not cell.font.bold
    assert "already hold the reviewed value" in again.describe()


def test_rows_without_reviews_are_counted(engine, documents):
    ref, comp = documents
    rows = [make_row("0-001"), make_row("0-003", ExistsStatus.ONLY_REF), make_row("0-004", ExistsStatus.ONLY_COMP)]
    result = engine.commit(rows, ref, comp)
    assert result.ref.no_review == 2
    assert result.comp.no_review == 2
    assert result.describe().startswith("nothing changed:")
    assert "review cell(s) were blank" in result.describe()


def test_delete_marker_strikes_row(engine, documents):
    ref, comp = documents
    row = make_row("0-003", ExistsStatus.ONLY_REF)
    row.columns["TAG"].ref_review = "삭제"
    result = engine.commit([row], ref, comp)

    assert result.ref.deleted == 1
    assert result.comp.deleted == 0
    ws = _sheet(ref)
    assert ws["A4"].font.strike is True
    assert ws["B4"].font.strike is True
    assert not ws["A3"].font.strike


def test_manual_rows_go_to_added_items(engine, documents):
    ref, comp = documents
    rows = insert_manual_row([], "TAG", SyntheticIdSource(), identity="0-900")
    result = engine.commit(rows, ref, comp)

    assert result.added == 2
    for path, header in ((ref, "DESC"), (comp, "DESCRIPTION")):
        ws = _sheet(path, ADDED_ITEMS_SHEET)
        assert [c.value for c in ws[1]] == ["TAG", header, "SIZE", "REMARK"]
        assert ws["A2"].value == "0-900"


def test_review_on_empty_side_is_an_addition(engine, documents):
    ref, comp = documents
    row = make_row("0-004", ExistsStatus.ONLY_COMP, DESC=("", "Motor D", "Motor D", ""))
    row.columns["TAG"].ref_review = "0-004"
    result = engine.commit([row], ref, comp)
    assert result.ref.added == 1
    ws = _sheet(ref, ADDED_ITEMS_SHEET)
    assert ws["A2"].value == "0-004"
    assert ws["B2"].value == "Motor D"


def test_unresolved_rows_go_to_needs_confirmation(engine, documents):
    ref, comp = documents
    rows = [make_row("0-404", DESC=("", "x", "", ""))]
    result = engine.commit(rows, ref, comp)

    assert result.ref.unresolved == 1
    assert result.comp.no_review == 1
    ws = _sheet(ref, EXCEPTIONS_SHEET)
    assert [c.value for c in ws[1]] == ["Reason", "Integrated Key", "Status", "DESC"]
    assert [c.value for c in ws[2]] == [REASON_ROW_NOT_FOUND, "0-404", "Both", "x"]
    assert ws.auto_filter.ref == "A1:D1"
    assert EXCEPTIONS_SHEET not in load_workbook(comp).sheetnames


def test_unknown_column_is_reported(file_config, documents):
    ref, comp = documents
    cfg = dataclasses.replace(file_config, mappings=file_config.mappings + (MappingEntry("WEIGHT", "WEIGHT"),))
    rows = [make_row("0-001", WEIGHT=("", "5", "", ""), DESC=("Pump A", "Pump AA", "", ""))]
    result = CommitEngine(FileDocumentIO(), cfg).commit(rows, ref, comp)

    assert result.ref.updated == 1
    assert result.ref.dropped_columns == 1
    ws = _sheet(ref, EXCEPTIONS_SHEET)
    headers = [c.value for c in ws[1]]
    assert headers == ["Reason", "Integrated Key", "Status", "WEIGHT"]
    assert ws["A2"].value == REASON_COLUMN_NOT_FOUND
    assert ws["D2"].value == "5"


def test_exceptions_log_written_when_logs_dir_set(file_config, documents, tmp_path):
    ref, comp = documents
    logs = tmp_path / "logs"
    engine = CommitEngine(FileDocumentIO(), file_config, logs_dir=logs)
    result = engine.commit([make_row("0-404", DESC=("", "x", "", ""))], ref, comp)

    assert result.exceptions_path is not None
    lines = Path(result.exceptions_path).read_text(encoding="utf-8").splitlines()
    record = json.loads(lines[0])
    assert record["side"] == "ref"
    assert record["reason"] == REASON_ROW_NOT_FOUND
    assert record["changed"] == {"DESC": "x"}


def test_no_exceptions_log_by_default(engine, documents):
    ref, comp = documents
    result = engine.commit([make_row("0-404", DESC=("", "x", "", ""))], ref, comp)
    assert result.exceptions_path is None


def test_open_lock_file_aborts_before_writing(engine, documents):
    ref, comp = documents
    (comp.parent / f"~${comp.name}").write_text("", encoding="utf-8")
    before = ref.read_bytes()
    with pytest.raises(DocumentLockError) as e:
        engine.commit([make_row("0-002", DESC=("", "new", "", ""))], ref, comp)
    assert "Close it" in str(e.value)
    assert ref.read_bytes() == before


def test_unreadable_workbook_is_a_format_error(engine, documents):
    ref, comp = documents
    comp.write_bytes(b"this is not a zip archive")
    before = ref.read_bytes()
    with pytest.raises(DocumentFormatError) as e:
        engine.commit([], ref, comp)
    assert "Save As" in str(e.value)
    assert ref.read_bytes() == before


def test_unsupported_file_type(engine, documents, tmp_path):
    ref, _ = documents
    csv = tmp_path / "comp.csv"
    csv.write_text("TAG\n0-001\n", encoding="utf-8")
    with pytest.raises(DocumentFormatError):
        engine.commit([], ref, csv)


def test_missing_document(engine, documents, tmp_path):
    ref, _ = documents
    with pytest.raises(CommitError, match="file not found"):
        engine.commit([], ref, tmp_path / "absent.xlsx")


def test_missing_identity_column(engine, documents, make_workbook, tmp_path):
    ref, _ = documents
    comp = make_workbook(tmp_path / "other.xlsx", ["Name", "Size"], [["pump", 1]])
    with pytest.raises(CommitError, match="identity column"):
        engine.commit([], ref, comp)


class _LockedComparisonIO(FileDocumentIO):
    def write_bytes(self, path: str, data: bytes) -> None:
        if "comp" in Path(path).name:
            raise DocumentLockError(path)
        super().write_bytes(path, data)


def test_lock_on_write_still_saves_other_side(file_config, documents):
    ref, comp = documents
    engine = CommitEngine(_LockedComparisonIO(), file_config)
    rows = [make_row("0-002", DESC=("Valve B", "Valve BB", "Valve X", "Valve B"))]
    with pytest.raises(DocumentLockError) as e:
        engine.commit(rows, ref, comp)
    result = e.value.result
    assert result.written == {"ref": True, "comp": False}
    assert _sheet(ref)["B3"].value == "Valve BB"
    assert _sheet(comp)["B3"].value == "Valve X"


def test_acommit(engine, documents):
    ref, comp = documents
    rows = [make_row("0-002", DESC=("Valve B", "", "Valve X", "Valve B"))]
    result = asyncio.run(engine.acommit(rows, ref, comp))
    assert result.comp.updated == 1


def test_resolvable_rows_commit_alongside_unresolvable_ones(engine, documents):
    ref, comp = documents
    rows = [
        make_row("0-404", DESC=("", "ghost", "", "")),
        make_row("0-002", DESC=("Valve B", "", "Valve X", "Valve B")),
    ]
    result = engine.commit(rows, ref, comp)

    assert result.ref.unresolved == 1
    assert result.comp.updated == 1
    assert result.written == {"ref": True, "comp": True}
    assert _sheet(comp)["B3"].value == "Valve B"
    ws = _sheet(ref, EXCEPTIONS_SHEET)
    assert [c.value for c in ws["B"]] == ["Integrated Key", "0-404"]
    assert EXCEPTIONS_SHEET not in load_workbook(comp).sheetnames


XLSX_MAIN = b"application/vnd.openxmlformats-officedocument.spreadsheetml.sheet.main+xml"
XLSM_MAIN = b"application/vnd.ms-excel.sheet.macroEnabled.main+xml"
VBA_PART = "xl/vbaProject.bin"


def _macro_copy(src: Path, dest: Path) -> Path:
    """Re-package an .xlsx as a macro-enabled workbook carrying a VBA project part."""
    with zipfile.ZipFile(src) as zin, zipfile.ZipFile(dest, "w", zipfile.ZIP_DEFLATED) as zout:
        for item in zin.infolist():
            data = zin.read(item.filename)
            if item.filename == "[Content_Types].xml":
                data = data.replace(XLSX_MAIN, XLSM_MAIN)
                if b'Extension="bin"' not in data:
                    data = data.replace(
                        b"<Default ",
                        b'<Default Extension="bin" ContentType="application/vnd.ms-office.vbaProject"/><Default ',
                        1,
                    )
            zout.writestr(item, data)
        zout.writestr(VBA_PART, b"macro payload")
    return dest


def test_macro_enabled_documents_keep_their_vba_project(engine, documents):
    ref, comp = (_macro_copy(p, p.with_suffix(".xlsm")) for p in documents)
    rows = [make_row("0-002", DESC=("Valve B", "", "Valve X", "Valve B"))]
    result = engine.commit(rows, ref, comp)

    assert result.comp.updated == 1
    for path in (ref, comp):
        with zipfile.ZipFile(path) as archive:
            assert VBA_PART in archive.namelist()
            assert archive.read(VBA_PART) == b"macro payload"
            assert XLSM_MAIN in archive.read("[Content_Types].xml")
    assert load_workbook(comp, keep_vba=True)["Sheet1"]["B3"].value == "Valve B"


def test_save_failure_is_reported_per_side(engine, documents):
    ref, comp = documents
    before = ref.read_bytes()
    original_save = Workbook.save
    saved = []

    def failing_first_save(self, filename):
        saved.append(self)
        if len(saved) == 1:
            raise OSError(errno.ENOSPC, "No space left on device")
        return original_save(self, filename)

    rows = [make_row("0-002", DESC=("Valve B", "Valve BB", "Valve X", "Valve B"))]
    with patch.object(Workbook, "save", failing_first_save):
        with pytest.raises(DocumentWriteError) as e:
            engine.commit(rows, ref, comp)

    assert isinstance(e.value, CommitError)
    result = e.value.result
    assert result.written == {"ref": False, "comp": True}
    assert "No space left" in result.errors["ref"]
    assert "comp" not in result.errors
    assert ref.read_bytes() == before
    assert _sheet(comp)["B3"].value == "Valve B"


class _FailingReferenceIO(FileDocumentIO):
    def write_bytes(self, path: str, data: bytes) -> None:
        if "ref" in Path(path).name:
            raise DocumentWriteError(path, "read-only file system")
        super().write_bytes(path, data)


def test_lock_takes_precedence_over_write_failure(file_config, documents):
    class _Both(_FailingReferenceIO, _LockedComparisonIO):
        pass

    ref, comp = documents
    with pytest.raises(DocumentLockError) as e:
        CommitEngine(_Both(), file_config).commit([], ref, comp)
    assert e.value.result.written == {"ref": False, "comp": False}
    assert set(e.value.result.errors) == {"ref", "comp"}
