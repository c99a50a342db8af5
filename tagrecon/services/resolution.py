from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..excel.cells import cell_text
from ..models.commit_models import CommitTarget, Resolved, Unresolved
from .keys import aggressive_normalize, normalize_header

"""Row and column resolution against external workbooks.

A ``SheetIndex`` is built once per document side and commit run. It maps key
text (exact, lower-cased and aggressively normalized) to the first worksheet
row carrying it. Rows are then located through an ordered chain of
``RowResolver`` strategies; the first hit wins.
"""

__all__ = [
    "SYSTEM_SHEETS",
    "INTEGRATED_KEY_HEADERS",
    "is_system_sheet",
    "SheetIndex",
    "build_index",
    "LookupQuery",
    "RowResolver",
    "IntegratedKeyExact",
    "IntegratedKeyNormalized",
    "IdentityExact",
    "IdentityNormalized",
    "DeepScan",
    "ResolutionChain",
    "default_chain",
    "HeaderMap",
]

logger = logging.getLogger(__name__)

SYSTEM_SHEETS = ("Needs Confirmation", "Added Items", "Change History", "Review History")
INTEGRATED_KEY_HEADERS = frozenset({"integratedkey", "unifiedkey", "통합key", "통합키"})

MAX_HEADER_SCAN_ROWS = 100
MAX_KEY_LENGTH = 400
MAX_DEEP_SCAN_COLUMNS = 100


def is_system_sheet(name: str) -> bool:
    return any(sys_name in name for sys_name in SYSTEM_SHEETS)


def _row_cells(ws: Any, row_number: int) -> Iterator[tuple[int, str]]:
    """(1-based column, text) of the non-empty cells of one row."""
    for cells in ws.iter_rows(min_row=row_number, max_row=row_number):
        for cell in cells:
            text = cell_text(cell)
            if text:
                yield cell.column, text


@dataclass
class _KeyColumn:
    sheet: str
    header_row: int
    column: int
    kind: str  # "integrated" | "exact" | "contains"


def _find_key_column(ws: Any, header_row: int, accepts: Sequence[str]) -> _KeyColumn | None:
    """Locate the key column; configured header row first, then rows 1..100.

    ``accepts`` are normalized header names. An integrated-key header beats an
    exact name match, which beats containment either way.
    """
    targets = [normalize_header(a) for a in accepts if normalize_header(a)]

    def check(row_number: int) -> _KeyColumn | None:
        best: _KeyColumn | None = None
        for column, text in _row_cells(ws, row_number):
            norm = normalize_header(text)
            if norm in INTEGRATED_KEY_HEADERS:
                return _KeyColumn(ws.title, row_number, column, "integrated")
            if norm in targets:
                if best is None or best.kind != "exact":
                    best = _KeyColumn(ws.title, row_number, column, "exact")
            elif best is None and norm and any(t in norm or norm in t for t in targets):
                best = _KeyColumn(ws.title, row_number, column, "contains")
        return best

    found = check(header_row) if header_row <= ws.max_row else None
    if found is not None:
        return found
    for row_number in range(1, min(MAX_HEADER_SCAN_ROWS, ws.max_row) + 1):
        if row_number == header_row:
            continue
        found = check(row_number)
        if found is not None:
            return found
    return None


@dataclass
class SheetIndex:
    """Key -> worksheet row index over every non-system sheet of one workbook."""
    document: str
    workbook: Any
    exact: dict[str, CommitTarget] = field(default_factory=dict)
    lowered: dict[str, CommitTarget] = field(default_factory=dict)
    normalized: dict[str, CommitTarget] = field(default_factory=dict)
    header_rows: dict[str, int] = field(default_factory=dict)  # sheet -> 1-based header row
    key_columns: dict[str, str] = field(default_factory=dict)  # sheet -> match kind

    def __len__(self) -> int:
        return len(self.exact)

    def add(self, text: str, target: CommitTarget) -> None:
        self.exact.setdefault(text, target)
        self.lowered.setdefault(text.lower(), target)
        norm = aggressive_normalize(text)
        if norm:
            self.normalized.setdefault(norm, target)

    def lookup_exact(self, key: str) -> CommitTarget | None:
        if not key:
            return None
        return self.exact.get(key) or self.lowered.get(key.lower())

    def lookup_normalized(self, key: str) -> CommitTarget | None:
        norm = aggressive_normalize(key)
        if not norm:
            return None
        return self.normalized.get(norm)

    def sheets(self) -> Iterator[Any]:
        for ws in self.workbook.worksheets:
            if not is_system_sheet(ws.title):
                yield ws


def build_index(
    workbook: Any,
    document: str,
    identity_headers: Sequence[str],
    header_row: int = 1,
    preferred_sheet: str | None = None,
) -> SheetIndex:
    """Index every non-system sheet of ``workbook``.

    ``header_row`` is 1-based. The preferred sheet (the one the comparison
    was read from) is indexed first so its rows win on duplicate keys.
    """
    index = SheetIndex(document=document, workbook=workbook)
    sheets = sorted(index.sheets(), key=lambda ws: ws.title != preferred_sheet)
    for ws in sheets:
        key_col = _find_key_column(ws, header_row, identity_headers)
        if key_col is None:
            logger.debug(f"[{document}] sheet {ws.title!r}: no key column")
            continue
        index.header_rows[ws.title] = key_col.header_row
        index.key_columns[ws.title] = key_col.kind
        for cells in ws.iter_rows(
            min_row=key_col.header_row + 1, min_col=key_col.column, max_col=key_col.column
        ):
            cell = cells[0]
            text = cell_text(cell)
            if not text or len(text) > MAX_KEY_LENGTH:
                continue
            index.add(text, CommitTarget(document, ws.title, cell.row, key_col.header_row))
        logger.debug(
            f"[{document}] sheet {ws.title!r}: key column {key_col.column} "
            f"({key_col.kind}) header row {key_col.header_row}"
        )
    logger.info(f"[{document}] indexed {len(index)} keys over {len(index.header_rows)} sheet(s)")
    return index


@dataclass(frozen=True)
class LookupQuery:
    """What is known about a unified row on one document side."""
    integrated_key: str
    identity: str  # the side's original identity value


class RowResolver(Protocol):
    name: str

    def resolve(self, query: LookupQuery, index: SheetIndex) -> CommitTarget | None:
        ...


class IntegratedKeyExact:
    name = "integrated_key_exact"

    def resolve(self, query: LookupQuery, index: SheetIndex) -> CommitTarget | None:
        return index.lookup_exact(query.integrated_key)


class IntegratedKeyNormalized:
    name = "integrated_key_normalized"

    def resolve(self, query: LookupQuery, index: SheetIndex) -> CommitTarget | None:
        return index.lookup_normalized(query.integrated_key)


class IdentityExact:
    name = "identity_exact"

    def resolve(self, query: LookupQuery, index: SheetIndex) -> CommitTarget | None:
        return index.lookup_exact(query.identity)


class IdentityNormalized:
    name = "identity_normalized"

    def resolve(self, query: LookupQuery, index: SheetIndex) -> CommitTarget | None:
        return index.lookup_normalized(query.identity)


class DeepScan:
    """Last resort: scan every populated cell (first 100 columns) of every sheet."""
    name = "deep_scan"

    def resolve(self, query: LookupQuery, index: SheetIndex) -> CommitTarget | None:
        target = aggressive_normalize(query.identity or query.integrated_key)
        if not target:
            return None
        for ws in index.sheets():
            header_row = index.header_rows.get(ws.title, 1)
            for cells in ws.iter_rows(max_col=min(ws.max_column, MAX_DEEP_SCAN_COLUMNS)):
                for cell in cells:
                    if cell.value is None:
                        continue
                    if aggressive_normalize(cell_text(cell)) == target:
                        logger.warning(
                            f"[{index.document}] recovered {query.integrated_key!r} by deep scan "
                            f"at {ws.title}!{cell.coordinate}"
                        )
                        return CommitTarget(index.document, ws.title, cell.row, header_row)
        return None


class ResolutionChain:
    """Ordered resolvers; returns the first hit as ``Resolved``, else ``Unresolved``."""

    def __init__(self, resolvers: Iterable[RowResolver]) -> None:
        self.resolvers = list(resolvers)

    def resolve(self, query: LookupQuery, index: SheetIndex) -> Resolved | Unresolved:
        tried: list[str] = []
        for resolver in self.resolvers:
            target = resolver.resolve(query, index)
            if target is not None:
                return Resolved(target, resolver.name)
            tried.append(resolver.name)
        return Unresolved(query.integrated_key, tuple(tried))


def default_chain() -> ResolutionChain:
    return ResolutionChain(
        [
            IntegratedKeyExact(),
            IntegratedKeyNormalized(),
            IdentityExact(),
            IdentityNormalized(),
            DeepScan(),
        ]
    )


class HeaderMap:
    """Header text -> column number of one sheet's header row."""

    def __init__(self, ws: Any, header_row: int) -> None:
        self.exact: dict[str, int] = {}
        self.normalized: dict[str, int] = {}
        for column, text in _row_cells(ws, header_row):
            self.exact.setdefault(text, column)
            norm = normalize_header(text)
            if norm:
                self.normalized.setdefault(norm, column)

    def find(self, name: str) -> int | None:
        """Exact text, then normalized text, then containment either way."""
        if not name:
            return None
        if name in self.exact:
            return self.exact[name]
        norm = normalize_header(name)
        if not norm:
            return None
        if norm in self.normalized:
            return self.normalized[norm]
        for header, column in self.normalized.items():
            if norm in header or header in norm:
                return column
        return None
