from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import psycopg2
from dotenv import load_dotenv

from src.config.loader import DEFAULT_CONFIG_PATH, ConfigError, ImportConfig, load_config
from src.db.connection import create_pool
from src.db.postgres import PostgresInvoiceStore
from src.db.staging import OrderSource, StagingOrderSource
from src.db.store import InMemoryInvoiceStore, InvoiceStore, StoreError
from src.logging.error_log import ErrorLogBuffer
from src.logging.init import log_summary, set_debug, setup_logging
from src.report.assembler import parse_report
from src.report.reader import ReportReadError, read_report_rows
from src.services.batches import BatchService, BatchStateError
from src.services.events import EventBus
from src.services.orchestrator import ProcessingError, process_all, scan_report_files
from src.services.reconciliation import ReconciliationEngine, repair_invoice_totals
from src.services.summary import render_summary_line, render_sync_summary_line
from src.services.sync import SyncError, run_sync

"""CLI entrypoint.

Modes (default = report file import):
- import        : source_directory の全レポートを取込 (--force で取込済みも再取込)
- --sync        : staging テーブルから live sync
- --repair-totals: 保存済み line item から invoice 集計を再計算
- --rollback ID : バッチが最初に書いた invoice を削除
- --inspect-data: 分類件数と先頭 invoice を表示して終了 (DB 不要)

Exit codes: 0 = all ok, 2 = partial failure, 1 = fatal.
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

INSPECT_SAMPLE_INVOICES = 3


@dataclass
class Backend:
    store: InvoiceStore
    source: OrderSource | None
    mode: str  # live / mock


def _report_db_fallback(logger: logging.Logger, error: Exception) -> None:
    # テストで警告抑制したい場合は SUPPRESS_DB_WARNING=1 を設定
    if os.getenv("SUPPRESS_DB_WARNING") == "1":
        logger.debug(f"DB connection failed (suppressed warn) -> fallback to mock mode: {error}")
    else:
        logger.warning(f"DB connection failed -> fallback to mock mode: {error}")


@contextmanager
def _open_backend(cfg: ImportConfig, logger: logging.Logger) -> Iterator[Backend]:
    """PostgreSQL store + staging source, or the in-memory store (mock mode).

    DB 接続制御: テスト等で完全に無効化したい場合 DISABLE_DB_CONNECT=1
    """
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> mock mode")
        yield Backend(store=InMemoryInvoiceStore(), source=None, mode="mock")
        return

    try:
        pool = create_pool(cfg.database, cfg.sync.concurrency)
    except psycopg2.Error as e:
        _report_db_fallback(logger, e)
        yield Backend(store=InMemoryInvoiceStore(), source=None, mode="mock")
        return

    store = PostgresInvoiceStore(pool)
    try:
        store.ensure_schema()
    except StoreError as e:
        store.close()
        _report_db_fallback(logger, e)
        yield Backend(store=InMemoryInvoiceStore(), source=None, mode="mock")
        return

    try:
        yield Backend(
            store=store,
            source=StagingOrderSource(pool, cfg.sync.start_date, cfg.sync.end_date),
            mode="live",
        )
    finally:
        store.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv.

    override=True により .env の値で既存環境変数を上書きし、PostgreSQL 接続情報を最優先化。
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="TireMaster Invoice Detail Report importer")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument(
        "--inspect-data",
        action="store_true",
        help="Print row classification counts and first invoices per file then exit",
    )
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--sync", action="store_true", help="Rehydrate invoices from the staging tables")
    mode.add_argument(
        "--repair-totals", action="store_true", help="Recompute invoice totals from stored line items"
    )
    mode.add_argument("--rollback", type=int, metavar="BATCH_ID", help="Roll back an import batch")
    p.add_argument("--force", action="store_true", help="Re-import files that were already imported")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Config YAML path")
    return p.parse_args(argv)


def _inspect_data(cfg: ImportConfig) -> int:
    try:
        files = scan_report_files(Path(cfg.source_directory))
    except ProcessingError as e:
        print(f"inspect: {e}")
        return EXIT_FATAL
    if not files:
        print("inspect: no report files")
        return EXIT_SUCCESS_ALL
    for f in files:
        print(f"FILE: {f.name}")
        try:
            parsed = parse_report(read_report_rows(f))
        except ReportReadError as e:
            print(f"  read_error: {e}")
            continue
        kinds = {k.value: v for k, v in sorted(parsed.kind_counts.items(), key=lambda kv: kv[0].value)}
        print(f"  rows={parsed.total_rows} kinds={kinds}")
        print(
            f"  invoices={len(parsed.invoices)} line_items={parsed.total_line_items} "
            f"diagnostics={len(parsed.diagnostics)} duplicates={parsed.duplicate_invoice_numbers}"
        )
        for inv in parsed.invoices[:INSPECT_SAMPLE_INVOICES]:
            h = inv.header
            print(
                f"    INVOICE: {h.invoice_number} customer={h.customer_name!r} "
                f"date={h.invoice_date.isoformat() if h.invoice_date else None} "
                f"items={len(inv.line_items)} total={h.total_amount:.2f}"
            )
            for item in inv.line_items[:INSPECT_SAMPLE_INVOICES]:
                print(
                    f"      {item.line_number}: {item.product_code} qty={item.quantity:g} "
                    f"total={item.line_total:.2f} cost={item.cost:.2f}"
                )
    return EXIT_SUCCESS_ALL


def _run_import(backend: Backend, cfg: ImportConfig, events: EventBus, force: bool,
                logger: logging.Logger) -> int:
    logger.info(f"Processing files from: {cfg.source_directory}")
    try:
        result = process_all(cfg, backend.store, force=force, events=events)
    except (ProcessingError, StoreError, BatchStateError) as e:
        logger.error(f"processing({backend.mode}): {e}")
        return EXIT_FATAL

    logger.info(f"mode={backend.mode} invoices={result.total_invoices} line_items={result.total_line_items}")
    summary_line = render_summary_line(result.total_files, result)
    # log_summary が "SUMMARY " を付けるので除去
    log_summary(summary_line[len("SUMMARY "):])
    return EXIT_PARTIAL_FAILURE if result.has_failures else EXIT_SUCCESS_ALL


def _run_sync(backend: Backend, cfg: ImportConfig, events: EventBus, logger: logging.Logger) -> int:
    if backend.source is None:
        logger.error("live sync requires a database connection")
        return EXIT_FATAL
    error_log = ErrorLogBuffer()
    batches = BatchService(backend.store, events, error_log)
    engine = ReconciliationEngine(backend.store, cfg.default_site_code)
    try:
        result = run_sync(backend.source, engine, cfg.sync, batches)
    except (SyncError, StoreError, BatchStateError) as e:
        logger.error(f"sync: {e}")
        return EXIT_FATAL
    finally:
        log_path = error_log.flush()
        if log_path is not None:
            logger.info(f"error log: {log_path}")

    log_summary(render_sync_summary_line(result)[len("SUMMARY "):])
    return EXIT_PARTIAL_FAILURE if result.has_failures else EXIT_SUCCESS_ALL


def _run_rollback(backend: Backend, batch_id: int, events: EventBus, logger: logging.Logger) -> int:
    try:
        batch, deleted = BatchService(backend.store, events).rollback(batch_id)
    except (BatchStateError, StoreError) as e:
        logger.error(f"rollback: {e}")
        return EXIT_FATAL
    log_summary(f"rollback batch={batch.id} file={batch.file_name} deleted_invoices={deleted}")
    return EXIT_SUCCESS_ALL


def _run_repair(backend: Backend, logger: logging.Logger) -> int:
    try:
        counts = repair_invoice_totals(backend.store)
    except StoreError as e:
        logger.error(f"repair: {e}")
        return EXIT_FATAL
    log_summary(
        f"repair invoices={counts.total} repaired={counts.repaired} unchanged={counts.unchanged} "
        f"skipped_zero={counts.skipped_zero}"
    )
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # NOTE: 空リスト [] (テストの cli_main([])) で sys.argv[1:] が混入しないよう None のときのみ読む
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    # .env を最優先で読み込む (DB 接続パラメータ優先順位保証)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        set_debug(True)
        logger.debug("debug mode enabled")

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.inspect_data:
        return _inspect_data(cfg)

    events = EventBus()
    with _open_backend(cfg, logger) as backend:
        logger.debug("backend mode=%s", backend.mode)
        if args.rollback is not None:
            return _run_rollback(backend, args.rollback, events, logger)
        if args.repair_totals:
            return _run_repair(backend, logger)
        if args.sync:
            return _run_sync(backend, cfg, events, logger)
        return _run_import(backend, cfg, events, args.force, logger)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
