from __future__ import annotations

import json
from pathlib import Path

import jsonschema
import pytest
import yaml
from jsonschema.exceptions import ValidationError

from src.config.loader import SCHEMA_PATH

"""Config schema contract test (bundled config_schema.json)."""

PROJECT_ROOT = Path(__file__).resolve().parents[2]


@pytest.fixture(scope="module")
def schema() -> dict:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def test_config_schema_valid_example(schema):
    config = {
        "source_directory": "./data",
        "archive_directory": "./data/archive",
        "default_site_code": 3,
        "timezone": "UTC",
        "sync": {
            "page_size": 500,
            "concurrency": 4,
            "retry_delay_seconds": 5,
            "throttle_seconds": 0.1,
            "max_fetch_retries": 3,
            "start_date": "2025-01-01",
            "end_date": "2025-12-31",
        },
        "database": {
            "host": "localhost",
            "port": 5432,
            "user": "appuser",
            "password": "secret",
            "database": "appdb",
        },
    }
    jsonschema.validate(config, schema)


def test_config_schema_minimal_valid_config(schema):
    jsonschema.validate({"source_directory": "./data"}, schema)


def test_config_schema_missing_source_directory(schema):
    with pytest.raises(ValidationError):
        jsonschema.validate({"timezone": "UTC"}, schema)


def test_config_schema_rejects_extra_key(schema):
    with pytest.raises(ValidationError):
        jsonschema.validate({"source_directory": "./data", "sheet_mappings": {}}, schema)


def test_config_schema_rejects_unknown_sync_key(schema):
    with pytest.raises(ValidationError):
        jsonschema.validate({"source_directory": "./data", "sync": {"workers": 4}}, schema)


@pytest.mark.parametrize("key,value", [("page_size", 0), ("concurrency", 0), ("retry_delay_seconds", -1)])
def test_config_schema_rejects_out_of_range_sync(schema, key, value):
    with pytest.raises(ValidationError):
        jsonschema.validate({"source_directory": "./data", "sync": {key: value}}, schema)


def test_bundled_config_validates(schema):
    config = yaml.safe_load((PROJECT_ROOT / "config" / "import.yml").read_text(encoding="utf-8"))
    jsonschema.validate(config, schema)
