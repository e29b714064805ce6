from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from specimen_import.models.config_models import DatabaseConfig, ImportConfig, ImporterOverride

"""Config loader.

Responsibilities:
- Load YAML config/import.yml
- Validate against the packaged config_schema.json
- Apply defaults (timezone=UTC, retention_days=7, ./staging, ./logs)
- Reject per-importer overrides for importers that do not exist
"""

__all__ = [
    "ConfigError",
    "SCHEMA_PATH",
    "DEFAULT_CONFIG_PATH",
    "load_config",
]

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/import.yml")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against JSON schema.

    Raises:
        ConfigError: schema file missing / not valid JSON, or the config data
            fails validation (wrong types, unknown keys, ...)
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _check_timezone(name: str) -> None:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"unknown timezone: {name}") from e


def load_config(path: Path, known_importers: Iterable[str] | None = None) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)

    tz = data.get("timezone", "UTC")
    _check_timezone(tz)

    importers_raw = data.get("importers") or {}
    if known_importers is not None:
        unknown = sorted(set(importers_raw) - set(known_importers))
        if unknown:
            raise ConfigError(f"unknown importer(s) in config: {', '.join(unknown)}")
    importers = {
        name: ImporterOverride(
            starting_row=raw.get("starting_row"),
            column_map={k: v.upper() for k, v in raw["column_map"].items()} if raw.get("column_map") else None,
        )
        for name, raw in importers_raw.items()
    }

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    return ImportConfig(
        staging_directory=data.get("staging_directory", "./staging"),
        logs_directory=data.get("logs_directory", "./logs"),
        retention_days=data.get("retention_days", 7),
        timezone=tz,
        importers=importers,
        database=db,
    )
