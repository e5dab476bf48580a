from __future__ import annotations

import logging
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from ..db.store import InvoiceStore, StoreError
from ..logging.error_log import ErrorLogBuffer
from ..models.error_record import ErrorRecord
from ..models.import_batch import (
    LIVE_SYNC_BATCH_NAME,
    LIVE_SYNC_ORIGINAL_PATH,
    BatchStatus,
    ImportBatch,
)
from . import events as ev

"""Import batch lifecycle service.

STARTED → IN_PROGRESS → COMPLETED | FAILED → ROLLED_BACK. 不正な遷移は BatchStateError。
Every transition is persisted through the store and emitted as a lifecycle event.
"""

__all__ = [
    "BatchStateError",
    "BatchService",
]

logger = logging.getLogger(__name__)


class BatchStateError(Exception):
    """Invalid batch status transition (or unknown batch)."""


class BatchService:
    def __init__(
        self,
        store: InvoiceStore,
        events: ev.EventBus | None = None,
        error_log: ErrorLogBuffer | None = None,
    ) -> None:
        self.store = store
        self.events = events or ev.EventBus()
        self.error_log = error_log

    def _emit_batch(self, name: str, batch: ImportBatch) -> None:
        self.events.emit(
            name,
            ev.BatchEvent(
                batch_id=batch.id,
                file_name=batch.file_name,
                status=batch.status.value,
                total_records=batch.total_records,
                successful_records=batch.successful_records,
                failed_records=batch.failed_records,
                error_message=batch.error_message,
            ),
        )

    def _transition(self, batch: ImportBatch, target: BatchStatus, **changes: Any) -> ImportBatch:
        if not batch.status.can_transition_to(target):
            raise BatchStateError(
                f"batch {batch.id}: cannot transition {batch.status.value} -> {target.value}"
            )
        return self.store.save_batch(replace(batch, status=target, **changes))

    def create(self, file_name: str, original_path: str | None) -> ImportBatch:
        batch = self.store.create_batch(file_name, original_path)
        logger.debug("batch created id=%s file=%s", batch.id, file_name)
        self._emit_batch(ev.BATCH_CREATED, batch)
        return batch

    def create_live_sync(self) -> ImportBatch:
        return self.create(LIVE_SYNC_BATCH_NAME, LIVE_SYNC_ORIGINAL_PATH)

    def find_completed(self, file_name: str) -> ImportBatch | None:
        """Latest COMPLETED batch for ``file_name`` (already imported), if any."""
        done = [b for b in self.store.find_batches(file_name) if b.status is BatchStatus.COMPLETED]
        return done[-1] if done else None

    def start(self, batch: ImportBatch, total_records: int = 0) -> ImportBatch:
        batch = self._transition(batch, BatchStatus.IN_PROGRESS, total_records=total_records)
        self._emit_batch(ev.BATCH_STARTED, batch)
        return batch

    def progress(
        self, batch: ImportBatch, processed: int, failed: int, skipped: int = 0, total: int | None = None
    ) -> None:
        self.events.emit(
            ev.PROGRESS_UPDATED,
            ev.ProgressEvent(batch_id=batch.id, processed=processed, failed=failed, skipped=skipped, total=total),
        )

    def complete(self, batch: ImportBatch, total: int, successful: int, failed: int) -> ImportBatch:
        batch = self._transition(
            batch,
            BatchStatus.COMPLETED,
            total_records=total,
            successful_records=successful,
            failed_records=failed,
            completed_at=datetime.now(UTC),
        )
        self._emit_batch(ev.BATCH_COMPLETED, batch)
        return batch

    def fail(
        self, batch: ImportBatch, message: str, total: int = 0, successful: int = 0, failed: int = 0
    ) -> ImportBatch:
        batch = self._transition(
            batch,
            BatchStatus.FAILED,
            total_records=total,
            successful_records=successful,
            failed_records=failed,
            completed_at=datetime.now(UTC),
            error_message=message,
        )
        self._emit_batch(ev.BATCH_FAILED, batch)
        return batch

    def rollback(self, batch_id: int) -> tuple[ImportBatch, int]:
        """Delete invoices first written by the batch and mark it ROLLED_BACK.

        Returns:
            (batch, deleted invoice count)
        """
        batch = self.store.get_batch(batch_id)
        if batch is None:
            raise BatchStateError(f"batch {batch_id} not found")
        if not batch.status.can_transition_to(BatchStatus.ROLLED_BACK):
            raise BatchStateError(
                f"batch {batch.id}: cannot roll back a {batch.status.value} batch"
            )
        deleted = self.store.delete_invoices_for_batch(batch_id)
        batch = self._transition(batch, BatchStatus.ROLLED_BACK)
        logger.info(f"batch {batch_id} rolled back, deleted invoices={deleted}")
        self._emit_batch(ev.BATCH_ROLLED_BACK, batch)
        return batch, deleted

    def record_error(self, batch_id: int | None, record: ErrorRecord) -> None:
        """Append to the JSONL error log, persist to import_errors and emit the event."""
        if self.error_log is not None:
            self.error_log.append(record)
        try:
            self.store.record_import_error(batch_id, record)
        except StoreError as e:
            logger.warning(f"could not persist import error ({record.error_type}): {e}")
        self.events.emit(
            ev.ERROR_RECORDED,
            ev.ErrorRecordedEvent(
                batch_id=batch_id,
                source=record.source,
                row=record.row,
                invoice=record.invoice,
                error_type=record.error_type,
                message=record.message,
            ),
        )
