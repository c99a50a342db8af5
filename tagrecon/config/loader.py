from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import ReconcileConfig

"""Config loader.

Responsibilities:
- Load the YAML reconciliation config
- Validate it against ``config_schema.json`` (shipped next to this module)
- Apply defaults and convert to ``ReconcileConfig``
"""

__all__ = [
    "ConfigError",
    "SCHEMA_PATH",
    "load_config",
    "config_from_dict",
    "dump_config",
]

SCHEMA_PATH = Path(__file__).parent / "config_schema.json"


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or not valid JSON, or the data
            violates the schema (missing keys, wrong types, unknown keys)
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path)
        suffix = f" (at {location})" if location else ""
        raise ConfigError(f"config validation failed: {e.message}{suffix}") from e


def config_from_dict(data: dict[str, Any]) -> ReconcileConfig:
    """Validate an already parsed config object and convert it."""
    _validate_config_schema(data)
    mappings = data.get("mappings", [])
    for flag in ("is_primary_key", "is_secondary_key"):
        if sum(1 for m in mappings if m.get(flag)) > 1:
            raise ConfigError(f"config validation failed: more than one mapping sets {flag}")
    return ReconcileConfig.from_dict(data)


def load_config(path: Path) -> ReconcileConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping, got {type(data).__name__}")
    return config_from_dict(data)


def dump_config(config: ReconcileConfig, path: Path) -> None:
    """Write ``config`` as YAML (the exported flat object)."""
    path.write_text(
        yaml.safe_dump(config.to_dict(), allow_unicode=True, sort_keys=False),
        encoding="utf-8",
    )
