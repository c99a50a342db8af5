from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl import load_workbook

"""Excel reader.

Sheets are read raw (no header) with pandas, then ``normalize_sheet`` applies
the configured header row: blank header cells become ``Col N`` and repeated
names get a ``_2``, ``_3`` suffix. Cell comments are read separately with
openpyxl because pandas drops them.
"""

__all__ = [
    "SheetHeaderError",
    "SheetNotFoundError",
    "SheetData",
    "list_sheets",
    "resolve_sheet_name",
    "read_raw_sheet",
    "normalize_sheet",
    "read_annotations",
    "read_sheet",
]


class SheetHeaderError(Exception):
    """Raised when the configured header row does not exist in the sheet."""


class SheetNotFoundError(Exception):
    """Raised when the requested sheet name or index is not in the workbook."""


@dataclass
class SheetData:
    sheet_name: str
    columns: list[str]
    rows: list[dict[str, Any]]  # column name -> value (None for blanks)
    row_numbers: list[int] = field(default_factory=list)  # 1-based worksheet row of each entry in rows
    annotations: dict[tuple[int, int], str] = field(default_factory=dict)  # (row index, column index) -> comment


def list_sheets(path: Path) -> list[str]:
    with pd.ExcelFile(path) as xls:
        return [str(n) for n in xls.sheet_names]


def resolve_sheet_name(sheet_names: list[str], sheet: str | int) -> str:
    if isinstance(sheet, int):
        if 0 <= sheet < len(sheet_names):
            return sheet_names[sheet]
        raise SheetNotFoundError(f"sheet index {sheet} out of range (workbook has {len(sheet_names)} sheets)")
    if sheet in sheet_names:
        return sheet
    raise SheetNotFoundError(f"sheet {sheet!r} not found (available: {sheet_names})")


def read_raw_sheet(path: Path, sheet: str | int = 0) -> tuple[str, pd.DataFrame]:
    """Read one sheet without header interpretation; returns ``(sheet_name, frame)``."""
    with pd.ExcelFile(path) as xls:
        name = resolve_sheet_name([str(n) for n in xls.sheet_names], sheet)
        df = xls.parse(name, header=None, dtype=object)
    return name, df


def _header_names(raw: list[Any]) -> list[str]:
    columns: list[str] = []
    seen: dict[str, int] = {}
    for idx, value in enumerate(raw):
        name = "" if value is None or pd.isna(value) else str(value).strip()
        if not name:
            name = f"Col {idx + 1}"
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 1
        columns.append(name)
    return columns


def normalize_sheet(df: pd.DataFrame, sheet_name: str, header_row: int = 0) -> SheetData:
    """Apply ``header_row`` (0-based) to a raw frame.

    Rows after the header become data rows; fully blank rows are skipped and
    NaN cells become ``None``. ``row_numbers`` keeps the worksheet position of
    every kept row.
    """
    if df.shape[0] <= header_row:
        raise SheetHeaderError(f"sheet '{sheet_name}' has no header row {header_row + 1}")
    columns = _header_names(df.iloc[header_row].tolist())
    rows: list[dict[str, Any]] = []
    row_numbers: list[int] = []
    for pos in range(header_row + 1, df.shape[0]):
        raw = df.iloc[pos]
        if raw.isna().all():
            continue
        row_dict: dict[str, Any] = {}
        for col, val in zip(columns, raw.tolist(), strict=False):
            if val is None or (not isinstance(val, str) and pd.isna(val)):
                row_dict[col] = None
            else:
                row_dict[col] = val
        rows.append(row_dict)
        row_numbers.append(pos + 1)
    return SheetData(sheet_name=sheet_name, columns=columns, rows=rows, row_numbers=row_numbers)


def read_annotations(path: Path, sheet: SheetData) -> dict[tuple[int, int], str]:
    """Cell comments of ``sheet`` keyed by (index into ``sheet.rows``, column index)."""
    wb = load_workbook(path)
    try:
        ws = wb[sheet.sheet_name]
        positions = {row_number: idx for idx, row_number in enumerate(sheet.row_numbers)}
        annotations: dict[tuple[int, int], str] = {}
        for cells in ws.iter_rows():
            for cell in cells:
                if cell.comment is None or cell.row not in positions:
                    continue
                col_idx = cell.column - 1
                if col_idx >= len(sheet.columns):
                    continue
                text = (cell.comment.text or "").strip()
                if text:
                    annotations[(positions[cell.row], col_idx)] = text
        return annotations
    finally:
        wb.close()


def read_sheet(path: Path, sheet: str | int = 0, header_row: int = 0) -> SheetData:
    """Read, normalize and annotate one sheet."""
    name, df = read_raw_sheet(path, sheet)
    data = normalize_sheet(df, name, header_row)
    data.annotations = read_annotations(path, data)
    return data
