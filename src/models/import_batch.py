from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

"""ImportBatch domain model and BatchStatus enum.

An ImportBatch tracks one ingestion run (a report file, or one live sync run) and is the
unit of idempotent retry and of rollback bookkeeping.

State transitions: started → in_progress → (completed | failed) → rolled_back
"""

__all__ = [
    "BatchStatus",
    "ImportBatch",
    "LIVE_SYNC_BATCH_NAME",
    "LIVE_SYNC_ORIGINAL_PATH",
]

LIVE_SYNC_BATCH_NAME = "Live Sync Batch"
LIVE_SYNC_ORIGINAL_PATH = "LIVE_SYNC"


class BatchStatus(Enum):
    """Status enum for the ImportBatch lifecycle.

    - STARTED: batch created, nothing processed yet
    - IN_PROGRESS: records are being reconciled
    - COMPLETED: run finished (failed_records may still be > 0)
    - FAILED: run aborted by a file level / fatal error
    - ROLLED_BACK: records first written by this batch were removed
    """
    STARTED = "STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"

    def can_transition_to(self, target: BatchStatus) -> bool:
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.STARTED: frozenset({BatchStatus.IN_PROGRESS, BatchStatus.FAILED}),
    BatchStatus.IN_PROGRESS: frozenset({BatchStatus.COMPLETED, BatchStatus.FAILED}),
    BatchStatus.COMPLETED: frozenset({BatchStatus.ROLLED_BACK}),
    BatchStatus.FAILED: frozenset({BatchStatus.ROLLED_BACK}),
    BatchStatus.ROLLED_BACK: frozenset(),
}


@dataclass(frozen=True)
class ImportBatch:
    """Bookkeeping row for one ingestion run.

    total/successful/failed_records make partial success observable: a COMPLETED batch
    with failed_records > 0 is a partial import, never a silent "complete".
    """
    id: int
    file_name: str
    original_path: str | None
    status: BatchStatus = BatchStatus.STARTED
    total_records: int = 0
    successful_records: int = 0
    failed_records: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None

    @property
    def is_live_sync(self) -> bool:
        return self.original_path == LIVE_SYNC_ORIGINAL_PATH
