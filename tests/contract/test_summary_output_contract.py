from __future__ import annotations

import re

from tagrecon.cli.__main__ import main
from tagrecon.models.processing_result import ComparisonSummary
from tagrecon.services.summary import render_summary_line

"""SUMMARY line format contract for the compare command."""

SUMMARY_PATTERN = re.compile(
    r"^SUMMARY\s+rows=([0-9]+)\s+both=([0-9]+)\s+perfect=([0-9]+)\s+mismatches=([0-9]+)\s+"
    r"only_ref=([0-9]+)\s+only_comp=([0-9]+)\s+integrity=([0-9]+\.?[0-9]*)\s+"
    r"elapsed_sec=([0-9]+\.?[0-9]*)$"
)


def test_summary_pattern_example_line():
    line = "SUMMARY rows=4 both=2 perfect=1 mismatches=1 only_ref=1 only_comp=1 integrity=25 elapsed_sec=0.84"
    m = SUMMARY_PATTERN.match(line)
    assert m, "SUMMARY line should match contract regex"


def test_rendered_line_matches_contract():
    summary = ComparisonSummary(total=7, both=5, perfect_match=4, only_ref=1, only_comp=1, mismatches=1)
    m = SUMMARY_PATTERN.match(render_summary_line(summary, 12.3456))
    assert m
    assert m.group(7) == "57.14"
    assert m.group(8) == "12.35"


def test_compare_prints_contract_line(write_config, ref_workbook, comp_workbook, capsys):
    assert main(["compare"]) == 0
    lines = [ln for ln in capsys.readouterr().out.splitlines() if ln.startswith("SUMMARY")]
    assert len(lines) == 1
    m = SUMMARY_PATTERN.match(lines[0])
    assert m, lines[0]
    rows, both, perfect, mismatches, only_ref, only_comp = (int(m.group(i)) for i in range(1, 7))
    assert (rows, both, perfect, mismatches, only_ref, only_comp) == (4, 2, 1, 1, 1, 1)
    assert perfect + mismatches == both
