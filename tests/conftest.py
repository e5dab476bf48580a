# Shared pytest fixtures
from __future__ import annotations
import tempfile
from collections.abc import Callable
from pathlib import Path
import pytest

from src.db.store import InMemoryInvoiceStore
from src.logging.init import reset_logging
from src.models.row import RawRow
from tests.report_samples import sample_report_lines, to_rows


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """source_directory: ./data
archive_directory: ./archive
default_site_code: "1"
timezone: UTC
sync:
  page_size: 2
  concurrency: 2
  retry_delay_seconds: 0
  throttle_seconds: 0
  start_date: 2025-01-01
  end_date: "2025-12-31"
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def mock_db(monkeypatch):
    """Force CLI mock mode (in-memory store)."""
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")


@pytest.fixture()
def store() -> InMemoryInvoiceStore:
    return InMemoryInvoiceStore()


@pytest.fixture()
def report_lines() -> list[str]:
    return sample_report_lines()


@pytest.fixture()
def report_rows(report_lines: list[str]) -> list[RawRow]:
    return to_rows(report_lines)


@pytest.fixture()
def write_report(temp_workdir: Path) -> Callable[..., Path]:
    def _write(name: str = "report.csv", lines: list[str] | None = None) -> Path:
        path = temp_workdir / "data" / name
        body = "\n".join(lines if lines is not None else sample_report_lines()) + "\n"
        path.write_text(body, encoding="utf-8")
        return path
    return _write
