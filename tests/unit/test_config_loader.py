from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from src.config.loader import ConfigError, SyncSettings, load_config


def _edit(cfg: Path, old: str, new: str) -> None:
    text = cfg.read_text(encoding="utf-8")
    assert old in text
    cfg.write_text(text.replace(old, new), encoding="utf-8")


def test_load_config_success(write_config: Path):
    cfg = load_config(write_config)
    assert cfg.source_directory == "./data"
    assert cfg.archive_directory == "./archive"
    assert cfg.timezone == "UTC"
    assert cfg.default_site_code == "1"
    assert cfg.sync.page_size == 2
    assert cfg.sync.concurrency == 2
    assert cfg.sync.start_date == date(2025, 1, 1)
    assert cfg.sync.end_date == date(2025, 12, 31)
    assert cfg.database.host == "localhost"
    assert cfg.database.port == 5432


def test_load_config_defaults(temp_workdir: Path):
    path = temp_workdir / "config" / "import.yml"
    path.write_text("source_directory: ./data\n", encoding="utf-8")
    cfg = load_config(path)
    assert cfg.archive_directory is None
    assert cfg.timezone == "UTC"
    assert cfg.sync == SyncSettings()
    assert cfg.sync.max_fetch_retries is None
    assert cfg.database.dsn is None


def test_default_site_code_integer_is_stringified(write_config: Path):
    _edit(write_config, 'default_site_code: "1"', "default_site_code: 3")
    assert load_config(write_config).default_site_code == "3"


def test_load_config_missing_file(temp_workdir: Path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(temp_workdir / "config" / "not_exists.yml")


def test_load_config_missing_required(write_config: Path):
    _edit(write_config, "source_directory: ./data\n", "")
    with pytest.raises(ConfigError) as e:
        load_config(write_config)
    assert "config validation failed" in str(e.value) and "required property" in str(e.value)


def test_load_config_unknown_key(write_config: Path):
    write_config.write_text(write_config.read_text(encoding="utf-8") + "sheet_mappings: {}\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="config validation failed"):
        load_config(write_config)


def test_load_config_unknown_sync_key(write_config: Path):
    _edit(write_config, "  page_size: 2\n", "  page_size: 2\n  batch_size: 10\n")
    with pytest.raises(ConfigError, match="config validation failed"):
        load_config(write_config)


@pytest.mark.parametrize(
    "old,new",
    [
        ("  page_size: 2\n", "  page_size: 0\n"),
        ("  concurrency: 2\n", "  concurrency: many\n"),
        ("  retry_delay_seconds: 0\n", "  retry_delay_seconds: -1\n"),
        ("  port: 5432\n", "  port: '5432'\n"),
    ],
)
def test_load_config_invalid_values(write_config: Path, old: str, new: str):
    _edit(write_config, old, new)
    with pytest.raises(ConfigError, match="config validation failed"):
        load_config(write_config)


def test_load_config_bad_date(write_config: Path):
    _edit(write_config, 'end_date: "2025-12-31"', 'end_date: "31/12/2025"')
    with pytest.raises(ConfigError, match="ISO date"):
        load_config(write_config)


def test_load_config_start_after_end(write_config: Path):
    _edit(write_config, "start_date: 2025-01-01", "start_date: 2026-01-01")
    with pytest.raises(ConfigError, match="after"):
        load_config(write_config)


def test_load_config_invalid_yaml(write_config: Path):
    write_config.write_text("source_directory: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="invalid yaml"):
        load_config(write_config)


def test_load_config_top_level_not_mapping(write_config: Path):
    write_config.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(write_config)


def test_bundled_config_is_valid():
    cfg = load_config(Path(__file__).resolve().parents[2] / "config" / "import.yml")
    assert cfg.sync.page_size == 1000
    assert cfg.sync.concurrency == 20
