from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import UTC, datetime

from ..config.loader import SyncSettings
from ..db.staging import OrderSource
from ..models.error_record import ErrorRecord
from ..models.import_batch import LIVE_SYNC_ORIGINAL_PATH, ImportBatch
from ..models.processing_result import SyncResult
from ..models.upstream import UpstreamOrder
from .batches import BatchService
from .progress import ProgressTracker
from .reconciliation import ReconciliationEngine, SyncOutcome

"""Live sync orchestrator.

Pages through the upstream orders (page_size per fetch) and rehydrates each page with a
bounded worker pool (concurrency). Semantics:

- an order failure is counted and logged (SYNC_RECORD_ERROR), never aborts the page
- a page fetch failure waits retry_delay_seconds and retries the same offset
  (max_fetch_retries 連続失敗で SyncError; None なら無制限)
- progress "Processed: X, Skipped: Y" after every page, throttle_seconds between pages
- stops at the first empty page
"""

__all__ = [
    "SyncError",
    "PageCounts",
    "sync_page",
    "run_sync",
]

logger = logging.getLogger(__name__)

SYNC_SOURCE = LIVE_SYNC_ORIGINAL_PATH


class SyncError(Exception):
    """Upstream fetch kept failing beyond the configured retry bound."""


@dataclass
class PageCounts:
    processed: int = 0
    skipped: int = 0
    failed: int = 0


def sync_page(
    orders: Sequence[UpstreamOrder],
    engine: ReconciliationEngine,
    batch: ImportBatch,
    batches: BatchService,
    concurrency: int,
) -> PageCounts:
    """Rehydrate one page of orders with at most ``concurrency`` in flight.

    Counting happens on the calling thread as futures complete, so no lock is needed.
    """
    counts = PageCounts()
    with ThreadPoolExecutor(max_workers=max(1, concurrency)) as executor:
        futures = {executor.submit(engine.sync_order, order, batch.id): order for order in orders}
        for future in as_completed(futures):
            order = futures[future]
            try:
                outcome = future.result()
            except Exception as e:  # 1件の失敗でページを止めない
                counts.failed += 1
                logger.warning(f"sync failed for {order.natural_key}: {e}")
                batches.record_error(
                    batch.id,
                    ErrorRecord.create(
                        source=SYNC_SOURCE,
                        row=-1,
                        invoice=order.natural_key,
                        error_type="SYNC_RECORD_ERROR",
                        message=str(e),
                    ),
                )
                continue
            if outcome is SyncOutcome.SKIPPED:
                counts.skipped += 1
            else:
                counts.processed += 1
    return counts


def _fetch_page(
    source: OrderSource,
    offset: int,
    settings: SyncSettings,
    sleep: Callable[[float], None],
) -> tuple[list[UpstreamOrder], int]:
    """Fetch one page, retrying the same offset. Returns (orders, retries used)."""
    retries = 0
    while True:
        try:
            return source.page(offset, settings.page_size), retries
        except Exception as e:
            retries += 1
            if settings.max_fetch_retries is not None and retries > settings.max_fetch_retries:
                raise SyncError(
                    f"fetch at offset {offset} failed {retries} times: {e}"
                ) from e
            logger.warning(
                f"fetch at offset {offset} failed ({e}); retrying in {settings.retry_delay_seconds}s"
            )
            sleep(settings.retry_delay_seconds)


def run_sync(
    source: OrderSource,
    engine: ReconciliationEngine,
    settings: SyncSettings,
    batches: BatchService,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> SyncResult:
    """Run one live sync over every upstream page under a fresh "Live Sync Batch".

    Raises:
        SyncError: fetch retries exhausted (batch marked FAILED)
    """
    start_time = datetime.now(UTC)
    t0 = time.perf_counter()
    batch = batches.start(batches.create_live_sync())
    logger.info(
        f"live sync started (batch {batch.id}, page_size={settings.page_size}, "
        f"concurrency={settings.concurrency})"
    )

    totals = PageCounts()
    offset = 0
    pages = 0
    fetch_retries = 0
    try:
        with ProgressTracker(None, description="Live sync", unit="page") as progress:
            while True:
                orders, retries = _fetch_page(source, offset, settings, sleep)
                fetch_retries += retries
                if not orders:
                    break
                pages += 1
                counts = sync_page(orders, engine, batch, batches, settings.concurrency)
                totals.processed += counts.processed
                totals.skipped += counts.skipped
                totals.failed += counts.failed
                offset += len(orders)
                logger.info(f"Processed: {totals.processed}, Skipped: {totals.skipped}, Failed: {totals.failed}")
                batches.progress(batch, totals.processed, totals.failed, skipped=totals.skipped)
                progress.advance()
                progress.set_postfix(processed=totals.processed, skipped=totals.skipped)
                if settings.throttle_seconds:
                    sleep(settings.throttle_seconds)
    except Exception as e:
        batches.fail(
            batch,
            str(e),
            total=totals.processed + totals.skipped + totals.failed,
            successful=totals.processed + totals.skipped,
            failed=totals.failed,
        )
        raise

    batch = batches.complete(
        batch,
        total=totals.processed + totals.skipped + totals.failed,
        successful=totals.processed + totals.skipped,
        failed=totals.failed,
    )
    elapsed = time.perf_counter() - t0
    return SyncResult(
        processed=totals.processed,
        skipped=totals.skipped,
        failed=totals.failed,
        pages=pages,
        fetch_retries=fetch_retries,
        start_time=start_time,
        end_time=datetime.now(UTC),
        elapsed_seconds=elapsed,
        batch_id=batch.id,
    )
