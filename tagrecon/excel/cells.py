from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

"""Tagged cell values at the document boundary.

openpyxl hands back plain scalars, formula strings, ``CellRichText`` runs or
hyperlinked cells. ``CellValue`` folds those into one tagged record so the rest
of the engine only ever sees text (``normalize_key`` accepts a CellValue and
reduces it to ``.text``).
"""

__all__ = [
    "CellKind",
    "CellValue",
    "scalar_text",
    "cell_value",
    "cell_text",
]


class CellKind(Enum):
    EMPTY = "empty"
    PLAIN = "plain"
    FORMULA = "formula"
    RICH_TEXT = "rich_text"
    HYPERLINK = "hyperlink"


@dataclass(frozen=True)
class CellValue:
    kind: CellKind
    text: str
    raw: Any = None

    def __str__(self) -> str:
        return self.text


def scalar_text(value: Any) -> str:
    """Render a scalar the way a reviewer reads it in the grid."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        if value != value:  # NaN
            return ""
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def cell_value(cell: Any) -> CellValue:
    """Classify an openpyxl cell into a CellValue."""
    value = getattr(cell, "value", None)
    if value is None:
        return CellValue(CellKind.EMPTY, "")
    hyperlink = getattr(cell, "hyperlink", None)
    if type(value).__name__ == "CellRichText":
        text = "".join(getattr(run, "text", str(run)) for run in value)
        return CellValue(CellKind.RICH_TEXT, text.strip(), value)
    if type(value).__name__ in ("ArrayFormula", "DataTableFormula"):
        # no cached result available when loaded with formulas
        return CellValue(CellKind.FORMULA, str(getattr(value, "text", "") or ""), value)
    if getattr(cell, "data_type", None) == "f" or (isinstance(value, str) and value.startswith("=")):
        return CellValue(CellKind.FORMULA, value.strip(), value)
    if hyperlink is not None:
        return CellValue(CellKind.HYPERLINK, scalar_text(value).strip(), value)
    return CellValue(CellKind.PLAIN, scalar_text(value).strip(), value)


def cell_text(cell: Any) -> str:
    """Trimmed display text of an openpyxl cell."""
    return cell_value(cell).text
