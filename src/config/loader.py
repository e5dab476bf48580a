from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

"""Config loader.

Responsibilities:
- Load YAML config/import.yml
- Validate against the bundled JSON schema (config_schema.json, additionalProperties=false)
- Apply defaults (timezone=UTC, default_site_code="1", sync section defaults)
"""

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")

DEFAULT_CONFIG_PATH = Path("config/import.yml")


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class SyncSettings:
    """Live sync paging / concurrency / retry settings."""
    page_size: int = 1000
    concurrency: int = 20
    retry_delay_seconds: float = 5.0
    throttle_seconds: float = 0.1
    max_fetch_retries: int | None = None  # None = 同一 offset を成功するまで再試行
    start_date: date | None = None
    end_date: date | None = None


@dataclass(frozen=True)
class ImportConfig:
    source_directory: str
    archive_directory: str | None = None
    default_site_code: str = "1"
    timezone: str = "UTC"
    sync: SyncSettings = field(default_factory=SyncSettings)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against JSON schema.

    Raises:
        ConfigError: schema file missing / not valid JSON, or the config data fails
            schema validation (missing required keys, wrong types, unknown keys).
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


def _parse_date(value: Any, key: str) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise ConfigError(f"config validation failed: sync.{key} is not an ISO date: {value!r}") from e


def _build_sync(raw: dict[str, Any]) -> SyncSettings:
    defaults = SyncSettings()
    start = _parse_date(raw.get("start_date"), "start_date")
    end = _parse_date(raw.get("end_date"), "end_date")
    if start and end and start > end:
        raise ConfigError("config validation failed: sync.start_date is after sync.end_date")
    return SyncSettings(
        page_size=raw.get("page_size", defaults.page_size),
        concurrency=raw.get("concurrency", defaults.concurrency),
        retry_delay_seconds=float(raw.get("retry_delay_seconds", defaults.retry_delay_seconds)),
        throttle_seconds=float(raw.get("throttle_seconds", defaults.throttle_seconds)),
        max_fetch_retries=raw.get("max_fetch_retries", defaults.max_fetch_retries),
        start_date=start,
        end_date=end,
    )


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config validation failed: top level must be a mapping")

    # YAML の素の日付 (2025-01-01) は date 型で読まれるため文字列に戻してから検証
    sync_raw = data.get("sync")
    if isinstance(sync_raw, dict):
        for key in ("start_date", "end_date"):
            if isinstance(sync_raw.get(key), date):
                sync_raw[key] = sync_raw[key].isoformat()

    _validate_config_schema(data)

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
        source_directory=data["source_directory"],
        archive_directory=data.get("archive_directory"),
        default_site_code=str(data.get("default_site_code", "1")),
        timezone=data.get("timezone", "UTC"),
        sync=_build_sync(data.get("sync") or {}),
        database=db,
    )
