from __future__ import annotations

import asyncio
import errno
import logging
import os
from collections.abc import Sequence
from copy import copy
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Any, Protocol

from openpyxl import load_workbook
from openpyxl.styles import Font, PatternFill

from ..excel.cells import cell_text
from ..logging.error_log import ExceptionLogBuffer
from ..models.commit_models import CommitResult, Resolved, SideStats
from ..models.config_models import DocumentSelection, MappingEntry, ReconcileConfig
from ..models.error_record import REASON_COLUMN_NOT_FOUND, REASON_ROW_NOT_FOUND, ExceptionRecord
from ..models.unified_row import ColumnFacets, ExistsStatus, UnifiedRow
from .keys import is_add_marker, is_delete_marker, normalize_key
from .mapping import comparable_mappings
from .progress import ProgressTracker
from .resolution import HeaderMap, LookupQuery, ResolutionChain, SheetIndex, build_index, default_chain

"""Commit engine: write reviewed values back into the two source workbooks.

One commit run loads both documents, indexes them, walks every unified row
once per side and finally serializes each side independently:

- identity review "delete"/"삭제": the located row is struck through
- identity review "add"/"추가" (or a review value on an empty side): the row
  is appended to the "Added Items" sheet
- any other review value: the mapped cell is overwritten and highlighted when
  it differs from the document, or its highlight is cleared when it does not
- rows or columns that cannot be located go to the "Needs Confirmation" sheet
"""

__all__ = [
    "CommitError",
    "DocumentFormatError",
    "DocumentLockError",
    "DocumentWriteError",
    "DocumentIO",
    "FileDocumentIO",
    "CommitEngine",
    "ADDED_ITEMS_SHEET",
]

logger = logging.getLogger(__name__)

ADDED_ITEMS_SHEET = "Added Items"
EXCEL_SUFFIXES = (".xlsx", ".xlsm")
MACRO_SUFFIXES = (".xlsm",)

CHANGED_FONT_COLOR = "FF0000FF"
CHANGED_FILL_COLOR = "FFFFFF00"
PLAIN_FONT_COLOR = "FF000000"

FORMAT_REMEDIATION = (
    "The workbook could not be read. Open it in Excel and save it under a new name "
    "(File > Save As, .xlsx), or copy the data and paste values only into a new "
    "workbook (formulas are dropped), then run the commit again."
)
LOCK_REMEDIATION = "The file is open in another program (e.g. Excel). Close it and run the commit again."

SIDES = ("ref", "comp")
_SIDE_LABELS = {"ref": "reference", "comp": "comparison"}


class CommitError(Exception):
    """Base exception for commit failures.

    ``result`` is set when the failure happened after rows were applied, so the
    caller can still report what each side did.
    """

    result: CommitResult | None = None


class DocumentFormatError(CommitError):
    """A document cannot be parsed as a workbook (fatal, nothing is written)."""

    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"{path}: {FORMAT_REMEDIATION} (detail: {detail})")


class DocumentLockError(CommitError):
    """A document is locked by another process (fatal, no retry)."""

    def __init__(self, path: str, result: CommitResult | None = None) -> None:
        self.path = path
        self.result = result
        super().__init__(f"{path}: {LOCK_REMEDIATION}")


class DocumentWriteError(CommitError):
    """A document could not be serialized or written (the file on disk is left as it was)."""

    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"{path}: write failed: {detail}")


class DocumentIO(Protocol):
    def read_bytes(self, path: str) -> bytes:
        ...

    def write_bytes(self, path: str, data: bytes) -> None:
        ...

    def check_writable(self, path: str) -> None:
        ...


_LOCK_ERRNOS = {errno.EBUSY, errno.EACCES, errno.EPERM, errno.ETXTBSY}


class FileDocumentIO:
    """Local filesystem implementation of ``DocumentIO``."""

    def read_bytes(self, path: str) -> bytes:
        p = Path(path)
        if p.is_dir():
            raise CommitError(f"{path}: path is a directory, not a workbook")
        try:
            return p.read_bytes()
        except FileNotFoundError as e:
            raise CommitError(f"{path}: file not found") from e

    def write_bytes(self, path: str, data: bytes) -> None:
        try:
            Path(path).write_bytes(data)
        except OSError as e:
            if e.errno in _LOCK_ERRNOS:
                raise DocumentLockError(path) from e
            raise DocumentWriteError(path, str(e)) from e

    def check_writable(self, path: str) -> None:
        p = Path(path)
        if not p.is_file():
            raise CommitError(f"{path}: file not found")
        if p.suffix.lower() not in EXCEL_SUFFIXES:
            raise DocumentFormatError(path, f"unsupported file type {p.suffix!r}")
        # Excel keeps "~$<name>" next to a workbook it has open
        if (p.parent / f"~${p.name}").exists():
            raise DocumentLockError(path)
        if not os.access(p, os.W_OK):
            raise DocumentLockError(path)


@dataclass
class _Side:
    name: str
    path: str
    workbook: Any
    index: SheetIndex
    stats: SideStats
    columns: list[tuple[str, str]]  # (base column, column name in this document)
    header_maps: dict[str, HeaderMap]


def _side_selection(config: ReconcileConfig, side: str) -> DocumentSelection | None:
    return config.reference if side == "ref" else config.comparison


def _preferred_sheet(workbook: Any, selection: DocumentSelection | None) -> str | None:
    if selection is None:
        return None
    if isinstance(selection.sheet, str):
        return selection.sheet
    if 0 <= selection.sheet < len(workbook.worksheets):
        return workbook.worksheets[selection.sheet].title
    return None


def _mark_changed(cell: Any) -> None:
    old = cell.font
    cell.font = Font(
        name=old.name,
        size=old.size,
        italic=old.italic,
        underline=old.underline,
        strike=old.strike,
        bold=True,
        color=CHANGED_FONT_COLOR,
    )
    cell.fill = PatternFill(fill_type="solid", fgColor=CHANGED_FILL_COLOR)


def _clear_mark(cell: Any) -> None:
    old = cell.font
    cell.font = Font(
        name=old.name,
        size=old.size,
        italic=old.italic,
        underline=old.underline,
        strike=old.strike,
        bold=False,
        color=PLAIN_FONT_COLOR,
    )
    cell.fill = PatternFill(fill_type=None)


def _strike_row(ws: Any, row_number: int) -> None:
    for cell in ws[row_number]:
        font = copy(cell.font)
        font.strike = True
        cell.font = font


class CommitEngine:
    """Writes one reviewed row generation back into the reference and comparison documents.

    Example:
        engine = CommitEngine(FileDocumentIO(), config)
        result = engine.commit(rows, "ref.xlsx", "comp.xlsx")
    """

    def __init__(
        self,
        document_io: DocumentIO | None,
        config: ReconcileConfig,
        *,
        chain: ResolutionChain | None = None,
        logs_dir: Path | None = None,
    ) -> None:
        self.io = document_io if document_io is not None else FileDocumentIO()
        self.config = config
        self.chain = chain if chain is not None else default_chain()
        self.logs_dir = logs_dir  # JSON Lines report is only written when set

    # ------------------------------------------------------------------ load
    def _load(self, path: str) -> Any:
        data = self.io.read_bytes(path)
        # without keep_vba the saved file would lose xl/vbaProject.bin
        keep_vba = Path(path).suffix.lower() in MACRO_SUFFIXES
        try:
            return load_workbook(BytesIO(data), keep_vba=keep_vba)
        except Exception as e:  # any parser failure means the document is unusable
            raise DocumentFormatError(path, f"{type(e).__name__}: {e}") from e

    def _side_columns(self, side: str, mappings: Sequence[MappingEntry]) -> list[tuple[str, str]]:
        columns = []
        for m in mappings:
            name = m.ref_column if side == "ref" else (m.comp_column or m.ref_column)
            columns.append((m.ref_column, name))
        if not any(base == self.config.primary_key_column for base, _ in columns):
            identity = self.config.primary_key_column if side == "ref" else self.config.comp_primary_column
            columns.insert(0, (self.config.primary_key_column, identity))
        return columns

    def _open_side(self, side: str, path: str, workbook: Any, stats: SideStats, columns: list[tuple[str, str]]) -> _Side:
        selection = _side_selection(self.config, side)
        header_row = (selection.header_row if selection else 0) + 1
        headers = [self.config.primary_key_column]
        if side == "comp" and self.config.comp_primary_column not in headers:
            headers.insert(0, self.config.comp_primary_column)
        index = build_index(workbook, side, headers, header_row, _preferred_sheet(workbook, selection))
        if not index.header_rows:
            raise CommitError(
                f"{path}: identity column {headers[0]!r} not found in any sheet "
                f"(check the header row and sheet selection)"
            )
        return _Side(side, path, workbook, index, stats, columns, {})

    # ------------------------------------------------------------------ rows
    def _exception(
        self,
        buffer: ExceptionLogBuffer,
        side: _Side,
        row: UnifiedRow,
        reason: str,
        only: set[str] | None = None,
    ) -> None:
        changed: dict[str, str] = {}
        for base, name in side.columns:
            f = row.columns.get(base)
            if f is None or (only is not None and name not in only):
                continue
            review = f.review(side.name).strip()
            if review and review != f.value(side.name).strip():
                changed[name] = review
        buffer.append(
            ExceptionRecord.create(
                side=side.name,
                reason=reason,
                integrated_key=row.integrated_key,
                status=row.exists.value,
                remarks=row.remarks,
                changed=changed,
            )
        )

    def _append_added(self, side: _Side, row: UnifiedRow) -> None:
        wb = side.workbook
        if ADDED_ITEMS_SHEET in wb.sheetnames:
            ws = wb[ADDED_ITEMS_SHEET]
        else:
            ws = wb.create_sheet(ADDED_ITEMS_SHEET)
            ws.append([name for _, name in side.columns])
        values = []
        for base, _ in side.columns:
            f = row.columns.get(base) or ColumnFacets(base=base)
            if base == self.config.primary_key_column and is_add_marker(f.review(side.name)):
                values.append(f.value(side.name) or row.standard_identity)
            else:
                values.append(f.review(side.name) or f.value(side.name))
        ws.append(values)
        side.stats.added += 1

    def _header_map(self, side: _Side, sheet: str, header_row: int) -> HeaderMap:
        if sheet not in side.header_maps:
            side.header_maps[sheet] = HeaderMap(side.workbook[sheet], header_row)
        return side.header_maps[sheet]

    def _process_row(self, side: _Side, row: UnifiedRow, buffer: ExceptionLogBuffer) -> None:
        identity = row.columns.get(self.config.primary_key_column) or ColumnFacets(base="")
        value = normalize_key(identity.value(side.name))
        review = normalize_key(identity.review(side.name))

        if is_add_marker(review) or (not value and review and not is_delete_marker(review)):
            self._append_added(side, row)
            return
        on_side = row.exists.both_sided or row.exists is (
            ExistsStatus.ONLY_REF if side.name == "ref" else ExistsStatus.ONLY_COMP
        )
        if not on_side or not value:
            return

        if is_delete_marker(review):
            outcome = self.chain.resolve(LookupQuery(row.integrated_key, value), side.index)
            if isinstance(outcome, Resolved):
                _strike_row(side.workbook[outcome.target.sheet], outcome.target.row_number)
                side.stats.deleted += 1
                side.stats.record_strategy(outcome.strategy)
            else:
                side.stats.unresolved += 1
                self._exception(buffer, side, row, REASON_ROW_NOT_FOUND)
            return

        edits = []
        for base, name in side.columns:
            f = row.columns.get(base)
            text = f.review(side.name).strip() if f is not None else ""
            if text:
                edits.append((name, text))
        if not edits:
            side.stats.no_review += 1
            return

        outcome = self.chain.resolve(LookupQuery(row.integrated_key, value), side.index)
        if not isinstance(outcome, Resolved):
            logger.warning(f"[{side.name}] row {row.integrated_key!r} not found (tried {', '.join(outcome.tried)})")
            side.stats.unresolved += 1
            self._exception(buffer, side, row, REASON_ROW_NOT_FOUND)
            return
        side.stats.record_strategy(outcome.strategy)
        target = outcome.target
        ws = side.workbook[target.sheet]
        headers = self._header_map(side, target.sheet, target.header_row)

        dropped: set[str] = set()
        for name, text in edits:
            column = headers.find(name)
            if column is None:
                dropped.add(name)
                continue
            cell = ws.cell(row=target.row_number, column=column)
            if cell_text(cell) != text:
                cell.value = text
                _mark_changed(cell)
                side.stats.updated += 1
            else:
                _clear_mark(cell)
                side.stats.identical += 1
        if dropped:
            logger.warning(f"[{side.name}] {row.integrated_key!r}: no header for {sorted(dropped)}")
            side.stats.dropped_columns += len(dropped)
            self._exception(buffer, side, row, REASON_COLUMN_NOT_FOUND, only=dropped)

    def _serialize(self, side: _Side) -> bytes:
        out = BytesIO()
        try:
            side.workbook.save(out)
        except Exception as e:  # openpyxl raises assorted errors while serializing
            raise DocumentWriteError(side.path, f"{type(e).__name__}: {e}") from e
        return out.getvalue()

    # ---------------------------------------------------------------- commit
    def commit(self, rows: Sequence[UnifiedRow], ref_path: str, comp_path: str) -> CommitResult:
        """Apply ``rows`` to both documents and return per-side statistics.

        Raises:
            DocumentFormatError: a document cannot be parsed (nothing written)
            DocumentLockError: a document is locked (before loading, or on write
                after the other side was attempted; ``result`` carries the outcome)
            DocumentWriteError: a document could not be saved (the other side
                is still attempted; ``result`` carries the outcome)
            CommitError: missing file or identity column
        """
        paths = {"ref": str(ref_path), "comp": str(comp_path)}
        for side in SIDES:
            self.io.check_writable(paths[side])
        workbooks = {side: self._load(paths[side]) for side in SIDES}

        result = CommitResult()
        mappings = comparable_mappings(self.config.mappings, self.config.column_exclusion)
        sides = [
            self._open_side(s, paths[s], workbooks[s], result.side(s), self._side_columns(s, mappings))
            for s in SIDES
        ]
        buffer = ExceptionLogBuffer(self.logs_dir)

        with ProgressTracker(len(rows) * len(sides), description="Committing") as progress:
            for side in sides:
                progress.start_phase(_SIDE_LABELS[side.name])
                for row in rows:
                    self._process_row(side, row, buffer)
                    progress.advance()
                progress.set_postfix(updated=side.stats.updated, unresolved=side.stats.unresolved)

        for side in sides:
            written = buffer.flush_to_sheet(side.workbook, side.name, [name for _, name in side.columns])
            if written:
                logger.info(f"[{side.name}] {written} item(s) need confirmation")

        failures: dict[str, CommitError] = {}
        for side in sides:
            try:
                self.io.write_bytes(side.path, self._serialize(side))
            except CommitError as e:
                logger.error(f"[{side.name}] {e}")
                failures[side.name] = e
                result.errors[side.name] = str(e)
                continue
            result.written[side.name] = True
            logger.info(f"[{side.name}] saved {side.path} ({side.stats.as_dict()})")

        if self.logs_dir is not None:
            path = buffer.flush_json_lines()
            result.exceptions_path = str(path) if path else None
        if failures:
            # lock errors take precedence
            error = next(
                (e for e in failures.values() if isinstance(e, DocumentLockError)),
                next(iter(failures.values())),
            )
            error.result = result
            raise error
        logger.info(f"commit finished: {result.describe()}")
        return result

    async def acommit(self, rows: Sequence[UnifiedRow], ref_path: str, comp_path: str) -> CommitResult:
        """Single-await form of ``commit`` for async callers."""
        return await asyncio.to_thread(self.commit, rows, ref_path, comp_path)
