# Shared pytest fixtures
from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest
from openpyxl import Workbook

from tagrecon.logging.init import reset_logging
from tagrecon.models.config_models import DocumentSelection, MappingEntry, ReconcileConfig


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(tmp_path: Path, monkeypatch) -> Path:
    (tmp_path / "config").mkdir()
    (tmp_path / "data").mkdir()
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture()
def mappings() -> tuple[MappingEntry, ...]:
    return (
        MappingEntry("TAG", "TAG", is_primary_key=True),
        MappingEntry("DESC", "DESCRIPTION"),
        MappingEntry("SIZE", "SIZE"),
        MappingEntry("REMARK", "REMARK"),
    )


@pytest.fixture()
def config(mappings) -> ReconcileConfig:
    return ReconcileConfig(primary_key_column="TAG", mappings=mappings)


def build_workbook(
    path: Path,
    header: Sequence[str],
    rows: Sequence[Sequence[Any]],
    sheet: str = "Sheet1",
    title_rows: int = 0,
) -> Path:
    """Write a simple workbook: optional title rows, one header row, data rows."""
    wb = Workbook()
    ws = wb.active
    ws.title = sheet
    for i in range(title_rows):
        ws.append([f"Title line {i + 1}"])
    ws.append(list(header))
    for row in rows:
        ws.append(list(row))
    path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(path)
    return path


@pytest.fixture()
def make_workbook() -> Callable[..., Path]:
    return build_workbook


@pytest.fixture()
def ref_workbook(temp_workdir: Path) -> Path:
    return build_workbook(
        temp_workdir / "data" / "ref.xlsx",
        ["TAG", "DESC", "SIZE", "REMARK"],
        [
            ["0-001", "Pump A", 100, ""],
            ["0-002", "Valve B", 50, "check"],
            ["0-003", "Tank C", 10, None],
        ],
    )


@pytest.fixture()
def comp_workbook(temp_workdir: Path) -> Path:
    return build_workbook(
        temp_workdir / "data" / "comp.xlsx",
        ["TAG", "DESCRIPTION", "SIZE", "REMARK"],
        [
            ["0-001", "Pump A", "100.0", None],
            ["0-002", "Valve X", 50, None],
            ["0-004", "Motor D", 5, None],
        ],
    )


@pytest.fixture()
def sample_config_yaml() -> str:
    return """primary_key_column: TAG
mappings:
  - ref_column: TAG
    comp_column: TAG
    is_primary_key: true
  - ref_column: DESC
    comp_column: DESCRIPTION
  - ref_column: SIZE
  - ref_column: REMARK
reference:
  path: data/ref.xlsx
  sheet: Sheet1
  header_row: 0
comparison:
  path: data/comp.xlsx
  sheet: 0
output:
  result_path: output/result.xlsx
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "tagrecon.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def file_config(write_config: Path) -> ReconcileConfig:
    return ReconcileConfig(
        primary_key_column="TAG",
        mappings=(
            MappingEntry("TAG", "TAG", is_primary_key=True),
            MappingEntry("DESC", "DESCRIPTION"),
            MappingEntry("SIZE", "SIZE"),
            MappingEntry("REMARK", "REMARK"),
        ),
        reference=DocumentSelection("data/ref.xlsx", "Sheet1", 0),
        comparison=DocumentSelection("data/comp.xlsx", 0, 0),
    )
