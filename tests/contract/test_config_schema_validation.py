from __future__ import annotations

import json

import jsonschema
import pytest
from jsonschema.exceptions import ValidationError

from tagrecon.config.loader import SCHEMA_PATH

"""Config schema contract test."""


@pytest.fixture(scope="module")
def schema():
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def _valid():
    return {
        "primary_key_column": "TAG",
        "mappings": [
            {"ref_column": "TAG", "comp_column": "Tag No", "is_primary_key": True},
            {"ref_column": "SIZE"},
        ],
        "reference": {"path": "ref.xlsx", "sheet": "List", "header_row": 2},
        "comparison": {"path": "comp.xlsx", "sheet": 0},
        "merge_policy": "representative_only",
        "numeric_tolerance": 0.01,
        "output": {"result_path": "out/result.xlsx"},
    }


def test_config_schema_valid_example(schema):
    jsonschema.validate(_valid(), schema)


@pytest.mark.parametrize(
    "mutate",
    [
        lambda c: c.pop("primary_key_column"),
        lambda c: c.update(mappings=[]),
        lambda c: c["mappings"][0].update(unknown=True),
        lambda c: c["reference"].update(header_row=-1),
        lambda c: c["comparison"].pop("path"),
        lambda c: c.update(merge_policy="newest"),
        lambda c: c.update(numeric_tolerance=-0.1),
        lambda c: c.update(extra=1),
    ],
)
def test_config_schema_rejects(schema, mutate):
    config = _valid()
    mutate(config)
    with pytest.raises(ValidationError):
        jsonschema.validate(config, schema)
