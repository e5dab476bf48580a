from __future__ import annotations

import logging
import shutil
import time
from datetime import UTC, datetime
from pathlib import Path

from ..config.loader import ImportConfig
from ..db.store import InvoiceStore, StoreError
from ..logging.error_log import ErrorLogBuffer, ErrorRecord
from ..models.import_batch import ImportBatch
from ..models.processing_result import FileStat, ProcessingResult, TimingStatsAccumulator
from ..report.assembler import ParseResult, parse_report
from ..report.reader import SUPPORTED_SUFFIXES, ReportReadError, read_report_rows
from .batches import BatchService
from .events import EventBus
from .normalizer import normalize_invoice
from .progress import ProgressTracker
from .reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)

"""Service orchestration for the Invoice Detail Report import.

process_all() coordinates the whole file import:
1. scan the source directory for report exports (.csv / .txt / .xlsx)
2. per file: batch → read → parse → normalize → reconcile every invoice → complete / fail
3. archive fully successful files, aggregate metrics, flush the error log

Per-invoice failures are counted in the batch (failed_records) and never abort the file;
an unreadable file fails its batch and processing continues with the next file.
"""

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"

# import.progress.updated を送る間隔 (invoice 数)
PROGRESS_EVERY = 50


class ProcessingError(Exception):
    """Fatal orchestration error (missing directory etc.)."""
    pass


def scan_report_files(directory: Path) -> list[Path]:
    """Scan directory for report exports (non-recursive, sorted by name).

    Raises:
        ProcessingError: If directory doesn't exist or can't be read
    """
    if not directory.exists():
        raise ProcessingError(f"Directory not found: {directory}")

    if not directory.is_dir():
        raise ProcessingError(f"Path is not a directory: {directory}")

    try:
        return sorted(
            p for p in directory.iterdir() if p.is_file() and p.suffix.lower() in SUPPORTED_SUFFIXES
        )
    except OSError as e:
        raise ProcessingError(f"Error reading directory {directory}: {e}") from e


def process_all(
    config: ImportConfig,
    store: InvoiceStore,
    *,
    force: bool = False,
    events: EventBus | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> ProcessingResult:
    """Import every report file of ``config.source_directory`` into ``store``.

    Args:
        config: Import configuration
        store: Downstream invoice store (PostgreSQL or in-memory mock)
        force: Re-import files that already have a COMPLETED batch
        events: Lifecycle event bus (a private one when None)
        error_log: JSONL error log buffer (a fresh one when None)

    Returns:
        ProcessingResult with aggregated metrics and file stats

    Raises:
        ProcessingError: For fatal errors that prevent processing
    """
    start_time = datetime.now(UTC)
    error_log = error_log if error_log is not None else ErrorLogBuffer()
    batches = BatchService(store, events, error_log)
    engine = ReconciliationEngine(store, config.default_site_code)
    archive_dir = Path(config.archive_directory) if config.archive_directory else None

    file_paths = scan_report_files(Path(config.source_directory))

    file_stats: list[FileStat] = []
    success_count = 0
    failed_count = 0
    skipped_count = 0
    total_invoices = 0
    total_items = 0
    failed_invoices = 0
    skipped_rows = 0

    with ProgressTracker(len(file_paths), description="Processing files") as progress:
        for file_path in file_paths:
            progress.start_file(file_path)
            stat = _process_single_file(file_path, engine, batches, force=force, archive_dir=archive_dir)
            file_stats.append(stat)

            if stat.status == STATUS_SUCCESS:
                success_count += 1
            elif stat.status == STATUS_SKIPPED:
                skipped_count += 1
            else:
                failed_count += 1
            total_invoices += stat.invoices
            total_items += stat.line_items
            failed_invoices += stat.failed_invoices
            skipped_rows += stat.skipped_rows

            progress.set_postfix(ok=success_count, failed=failed_count, invoices=total_invoices)
            progress.finish_file(success=(stat.status != STATUS_FAILED))

    try:
        log_path = error_log.flush()
        if log_path is not None:
            logger.info(f"error log: {log_path}")
    except OSError as e:
        # error log の書き込み失敗で取込結果は変えない
        logger.warning(f"could not write error log: {e}")

    end_time = datetime.now(UTC)
    elapsed_seconds = (end_time - start_time).total_seconds()
    throughput = total_invoices / elapsed_seconds if elapsed_seconds > 0 else 0.0

    return ProcessingResult(
        success_files=success_count,
        failed_files=failed_count,
        skipped_files=skipped_count,
        total_invoices=total_invoices,
        total_line_items=total_items,
        failed_invoices=failed_invoices,
        skipped_rows=skipped_rows,
        start_time=start_time,
        end_time=end_time,
        elapsed_seconds=elapsed_seconds,
        throughput_invoices_per_sec=throughput,
        file_stats=file_stats,
    )


def _record(batches: BatchService, batch: ImportBatch, source: str, row: int, error_type: str,
            message: str, invoice: str = "") -> None:
    batches.record_error(
        batch.id,
        ErrorRecord.create(source=source, row=row, error_type=error_type, message=message, invoice=invoice),
    )


def _record_parse_diagnostics(batches: BatchService, batch: ImportBatch, file_name: str,
                              parsed: ParseResult) -> None:
    for diag in parsed.diagnostics:
        logger.warning(f"{file_name} row {diag.row_number}: {diag.message}")
        _record(batches, batch, file_name, diag.row_number, diag.error_type, diag.message, diag.invoice)
    for number in parsed.duplicate_invoice_numbers:
        logger.warning(f"{file_name}: invoice {number} appears more than once, last one wins")


def _process_single_file(
    file_path: Path,
    engine: ReconciliationEngine,
    batches: BatchService,
    *,
    force: bool = False,
    archive_dir: Path | None = None,
) -> FileStat:
    """Import one report file under its own import batch."""
    t0 = time.perf_counter()
    file_name = file_path.name

    if not force:
        done = batches.find_completed(file_name)
        if done is not None:
            logger.info(f"{file_name}: already imported (batch {done.id}), skipped. Use --force to re-import")
            return FileStat(
                file_name=file_name,
                status=STATUS_SKIPPED,
                invoices=0,
                line_items=0,
                failed_invoices=0,
                elapsed_seconds=time.perf_counter() - t0,
                batch_id=done.id,
            )

    batch = batches.create(file_name, str(file_path))
    try:
        parsed = parse_report(read_report_rows(file_path))
    except ReportReadError as e:
        logger.error(f"{file_name}: {e}")
        _record(batches, batch, file_name, -1, "PROCESSING_ERROR", str(e))
        batches.fail(batch, str(e))
        return FileStat(
            file_name=file_name,
            status=STATUS_FAILED,
            invoices=0,
            line_items=0,
            failed_invoices=0,
            elapsed_seconds=time.perf_counter() - t0,
            batch_id=batch.id,
        )

    _record_parse_diagnostics(batches, batch, file_name, parsed)
    total = len(parsed.invoices)
    batch = batches.start(batch, total_records=total)
    logger.debug(
        "%s: rows=%d invoices=%d kinds=%s",
        file_name,
        parsed.total_rows,
        total,
        {k.value: v for k, v in parsed.kind_counts.items()},
    )

    timing = TimingStatsAccumulator()
    imported = 0
    failed = 0
    line_items = 0
    try:
        for idx, invoice in enumerate(parsed.invoices, start=1):
            started = time.perf_counter()
            normalized = normalize_invoice(invoice)
            for warning in normalized.warnings:
                logger.warning(f"{file_name} invoice {normalized.invoice_number}: {warning}")
                _record(batches, batch, file_name, normalized.header.source_row, "FINANCIAL_MISMATCH",
                        warning, normalized.invoice_number)
            try:
                result = engine.reconcile_invoice(normalized, batch.id)
            except StoreError as e:
                failed += 1
                logger.warning(f"{file_name} invoice {normalized.invoice_number}: {e}")
                _record(batches, batch, file_name, normalized.header.source_row, "INVOICE_PERSIST_ERROR",
                        str(e), normalized.invoice_number)
                continue
            imported += 1
            line_items += result.line_items
            timing.add(time.perf_counter() - started)
            if idx % PROGRESS_EVERY == 0:
                batches.progress(batch, idx, failed, total=total)
    except Exception as e:
        # 想定外エラー: バッチを FAILED にして次のファイルへ
        logger.error(f"{file_name}: unexpected error: {e}", exc_info=True)
        _record(batches, batch, file_name, -1, "PROCESSING_ERROR", str(e))
        batches.fail(batch, str(e), total=total, successful=imported, failed=failed)
        return FileStat(
            file_name=file_name,
            status=STATUS_FAILED,
            invoices=imported,
            line_items=line_items,
            failed_invoices=failed,
            elapsed_seconds=time.perf_counter() - t0,
            batch_id=batch.id,
            skipped_rows=parsed.skipped_rows,
        )

    batches.progress(batch, imported + failed, failed, total=total)
    batch = batches.complete(batch, total=total, successful=imported, failed=failed)
    logger.info(f"{file_name}: invoices={imported} line_items={line_items} failed={failed}")

    if failed == 0 and archive_dir is not None:
        _archive(file_path, archive_dir)

    count, avg, p95 = timing.get_stats()
    return FileStat(
        file_name=file_name,
        status=STATUS_SUCCESS,
        invoices=imported,
        line_items=line_items,
        failed_invoices=failed,
        elapsed_seconds=time.perf_counter() - t0,
        batch_id=batch.id,
        skipped_rows=parsed.skipped_rows,
        duplicate_invoices=tuple(parsed.duplicate_invoice_numbers),
        total_invoices_timed=count,
        avg_invoice_seconds=avg,
        p95_invoice_seconds=p95,
    )


def _archive(file_path: Path, archive_dir: Path) -> Path | None:
    """Move an imported file into the archive directory (timestamp suffix on name clash)."""
    try:
        archive_dir.mkdir(parents=True, exist_ok=True)
        target = archive_dir / file_path.name
        if target.exists():
            stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
            target = archive_dir / f"{file_path.stem}-{stamp}{file_path.suffix}"
        moved = Path(shutil.move(str(file_path), str(target)))
    except OSError as e:
        logger.warning(f"{file_path.name}: archive failed: {e}")
        return None
    logger.debug("archived %s -> %s", file_path.name, moved)
    return moved
