from __future__ import annotations

from pathlib import Path

import pytest
from openpyxl import load_workbook

from tagrecon.cli.__main__ import EXIT_FATAL, EXIT_PARTIAL_FAILURE, EXIT_SUCCESS_ALL, main
from tagrecon.excel.writer import RESULT_SHEET

"""Exit code contract tests: 0 success, 2 partial commit, 1 fatal."""

RESULT = "output/result.xlsx"


def _append_result_row(path: Path, values: dict[str, str]) -> None:
    wb = load_workbook(path)
    ws = wb[RESULT_SHEET]
    header = [c.value for c in ws[1]]
    ws.append([values.get(h, None) for h in header])
    wb.save(path)


def test_exit_code_fatal_without_config(temp_workdir: Path, capsys):
    code = main(["compare"])
    assert code == EXIT_FATAL
    assert "ERROR config:" in capsys.readouterr().out


def test_subcommand_is_required(temp_workdir: Path):
    with pytest.raises(SystemExit) as e:
        main([])
    assert e.value.code == 2


def test_exit_code_compare_success(write_config, ref_workbook, comp_workbook, capsys):
    code = main(["compare"])
    out = capsys.readouterr().out
    assert code == EXIT_SUCCESS_ALL
    assert Path(RESULT).exists()
    assert "INFO result written: output/result.xlsx" in out
    assert "SUMMARY rows=4 both=2" in out


def test_exit_code_validation_error(write_config, ref_workbook, comp_workbook, capsys):
    text = write_config.read_text(encoding="utf-8").replace("sheet: Sheet1", "sheet: Missing")
    write_config.write_text(text, encoding="utf-8")
    assert main(["compare"]) == EXIT_FATAL
    assert "ERROR validation: reference: sheet 'Missing' not found" in capsys.readouterr().out


def test_exit_code_missing_document(write_config, ref_workbook, capsys):
    assert main(["compare"]) == EXIT_FATAL
    assert "ERROR processing: comparison file not found" in capsys.readouterr().out


def test_exit_code_commit_all_success(write_config, ref_workbook, comp_workbook, capsys):
    assert main(["compare"]) == EXIT_SUCCESS_ALL
    code = main(["commit", "--result", RESULT])
    out = capsys.readouterr().out
    assert code == EXIT_SUCCESS_ALL
    assert "SUMMARY nothing changed:" in out


def test_exit_code_commit_partial(write_config, ref_workbook, comp_workbook, capsys):
    assert main(["compare"]) == EXIT_SUCCESS_ALL
    _append_result_row(
        Path(RESULT),
        {"integratedKey": "0-404", "exists": "Both", "TAG_ref": "0-404", "TAG_comp": "0-404", "DESC_refReview": "x"},
    )
    code = main(["commit", "--result", RESULT])
    out = capsys.readouterr().out
    assert code == EXIT_PARTIAL_FAILURE
    assert "WARN [ref] row '0-404' not found" in out
    assert "INFO exceptions log: logs" in out
    assert "Needs Confirmation" in load_workbook(ref_workbook).sheetnames


def test_exit_code_commit_missing_result(write_config, ref_workbook, comp_workbook, capsys):
    assert main(["commit", "--result", "output/none.xlsx"]) == EXIT_FATAL
    assert "ERROR commit: result workbook not found" in capsys.readouterr().out


def test_exit_code_commit_locked_document(write_config, ref_workbook, comp_workbook, capsys):
    assert main(["compare"]) == EXIT_SUCCESS_ALL
    (comp_workbook.parent / f"~${comp_workbook.name}").write_text("", encoding="utf-8")
    assert main(["commit", "--result", RESULT]) == EXIT_FATAL
    assert "Close it and run the commit again" in capsys.readouterr().out


def test_exit_code_commit_unreadable_document(write_config, ref_workbook, comp_workbook, capsys):
    assert main(["compare"]) == EXIT_SUCCESS_ALL
    comp_workbook.write_bytes(b"garbage")
    assert main(["commit", "--result", RESULT]) == EXIT_FATAL
    assert "ERROR commit:" in capsys.readouterr().out


def test_config_path_from_environment(temp_workdir, write_config, ref_workbook, comp_workbook, monkeypatch):
    moved = temp_workdir / "other.yml"
    write_config.rename(moved)
    monkeypatch.setenv("TAGRECON_CONFIG", str(moved))
    assert main(["compare"]) == EXIT_SUCCESS_ALL


def test_config_path_from_dotenv(temp_workdir, write_config, ref_workbook, comp_workbook, monkeypatch):
    moved = temp_workdir / "config" / "from_env.yml"
    write_config.rename(moved)
    monkeypatch.setenv("TAGRECON_CONFIG", "placeholder")
    (temp_workdir / ".env").write_text("TAGRECON_CONFIG=config/from_env.yml\n", encoding="utf-8")
    assert main(["compare"]) == EXIT_SUCCESS_ALL


def test_debug_flag(write_config, ref_workbook, comp_workbook, capsys):
    assert main(["--debug", "compare"]) == EXIT_SUCCESS_ALL
    assert "DEBUG debug mode enabled" in capsys.readouterr().out


def test_inspect(write_config, ref_workbook, comp_workbook, capsys):
    assert main(["inspect"]) == EXIT_SUCCESS_ALL
    out = capsys.readouterr().out
    assert "FILE (reference): data/ref.xlsx" in out
    assert "cols=['TAG', 'DESCRIPTION', 'SIZE', 'REMARK']" in out
