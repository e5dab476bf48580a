from __future__ import annotations

from pathlib import Path

import src.cli.__main__ as cli_module
from src.cli.__main__ import main as cli_main
from src.db.store import InMemoryInvoiceStore, StoreError

"""Exit code contract: 0 = all ok, 2 = partial failure, 1 = fatal."""


class FlakyStore(InMemoryInvoiceStore):
    def upsert_invoice(self, record, batch_id):
        if record.natural_key == "3-327874":
            raise StoreError("deadlock detected")
        return super().upsert_invoice(record, batch_id)


def test_exit_code_fatal_startup(temp_workdir: Path, capsys):
    # config/import.yml 無し -> exit 1
    code = cli_main([])
    assert code == 1
    assert "ERROR config:" in capsys.readouterr().out


def test_exit_code_all_success(write_config, mock_db, write_report, capsys):
    write_report()
    code = cli_main([])
    out = capsys.readouterr().out
    assert code == 0
    assert "SUMMARY files=1/1 success=1 failed=0" in out


def test_exit_code_partial_failure_on_unreadable_file(write_config, mock_db, write_report, temp_workdir: Path,
                                                      capsys):
    write_report()
    (temp_workdir / "data" / "broken.xlsx").write_bytes(b"")
    code = cli_main([])
    out = capsys.readouterr().out
    assert code == 2
    assert "SUMMARY files=2/2 success=1 failed=1" in out


def test_exit_code_partial_failure_on_invoice_error(write_config, mock_db, write_report, monkeypatch, capsys):
    monkeypatch.setattr(cli_module, "InMemoryInvoiceStore", FlakyStore)
    write_report()
    code = cli_main([])
    out = capsys.readouterr().out
    assert code == 2
    assert "failed_invoices=1" in out


def test_exit_code_fatal_on_missing_directory(write_config, mock_db, capsys):
    write_config.write_text(write_config.read_text(encoding="utf-8").replace("./data", "./nowhere"),
                            encoding="utf-8")
    assert cli_main([]) == 1


def test_exit_code_fatal_on_unknown_rollback(write_config, mock_db):
    assert cli_main(["--rollback", "42"]) == 1
