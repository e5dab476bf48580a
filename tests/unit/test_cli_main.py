from __future__ import annotations

from pathlib import Path

import pytest

from src.cli.__main__ import main as cli_main


def test_cli_no_files_success(write_config, mock_db, capsys):
    code = cli_main([])
    out = capsys.readouterr().out
    assert code == 0
    assert "SUMMARY files=0/0 success=0 failed=0 skipped=0 invoices=0" in out


def test_cli_imports_sample_report(write_config, mock_db, write_report, temp_workdir: Path, capsys):
    write_report()
    code = cli_main([])
    out = capsys.readouterr().out
    assert code == 0
    assert "mode=mock invoices=2 line_items=13" in out
    assert "SUMMARY files=1/1 success=1 failed=0 skipped=0 invoices=2 line_items=13 failed_invoices=0" in out
    # 全件成功なので archive へ移動
    assert (temp_workdir / "archive" / "report.csv").exists()
    assert not (temp_workdir / "data" / "report.csv").exists()


def test_cli_directory_missing(write_config, mock_db, capsys):
    text = write_config.read_text(encoding="utf-8").replace("./data", "./missing_dir")
    write_config.write_text(text, encoding="utf-8")
    code = cli_main([])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR processing(mock): Directory not found:" in out


def test_cli_config_error(write_config, mock_db, capsys):
    write_config.write_text("timezone: UTC\n", encoding="utf-8")
    code = cli_main([])
    assert code == 1
    assert "ERROR config: config validation failed" in capsys.readouterr().out


def test_cli_explicit_config_path(temp_workdir: Path, mock_db, sample_config_yaml, capsys):
    alt = temp_workdir / "alt.yml"
    alt.write_text(sample_config_yaml, encoding="utf-8")
    assert cli_main(["--config", str(alt)]) == 0


def test_cli_modes_are_mutually_exclusive(write_config, mock_db):
    with pytest.raises(SystemExit):
        cli_main(["--sync", "--repair-totals"])


def test_cli_sync_without_database_is_fatal(write_config, mock_db, capsys):
    code = cli_main(["--sync"])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR live sync requires a database connection" in out


def test_cli_repair_totals_mock(write_config, mock_db, capsys):
    code = cli_main(["--repair-totals"])
    assert code == 0
    assert "SUMMARY repair invoices=0 repaired=0" in capsys.readouterr().out


def test_cli_rollback_unknown_batch(write_config, mock_db, capsys):
    code = cli_main(["--rollback", "42"])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR rollback: batch 42 not found" in out


def test_cli_env_file_overrides(write_config, temp_workdir: Path, monkeypatch, capsys):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "0")
    (temp_workdir / ".env").write_text("DISABLE_DB_CONNECT=1\n", encoding="utf-8")
    code = cli_main(["--debug"])
    out = capsys.readouterr().out
    assert code == 0
    assert "DB connect disabled via DISABLE_DB_CONNECT=1" in out
