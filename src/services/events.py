from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

"""In-process lifecycle event bus for import batches.

Named events (consumed by the dashboard UI through whatever transport subscribes):
import.batch.created / started / completed / failed / rolled_back,
import.progress.updated, import.error.recorded.

A failing subscriber is logged and never breaks the import.
"""

__all__ = [
    "BATCH_CREATED",
    "BATCH_STARTED",
    "PROGRESS_UPDATED",
    "BATCH_COMPLETED",
    "BATCH_FAILED",
    "BATCH_ROLLED_BACK",
    "ERROR_RECORDED",
    "BatchEvent",
    "ProgressEvent",
    "ErrorRecordedEvent",
    "EventBus",
]

logger = logging.getLogger(__name__)

BATCH_CREATED = "import.batch.created"
BATCH_STARTED = "import.batch.started"
PROGRESS_UPDATED = "import.progress.updated"
BATCH_COMPLETED = "import.batch.completed"
BATCH_FAILED = "import.batch.failed"
BATCH_ROLLED_BACK = "import.batch.rolled_back"
ERROR_RECORDED = "import.error.recorded"


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class BatchEvent:
    batch_id: int
    file_name: str
    status: str
    total_records: int = 0
    successful_records: int = 0
    failed_records: int = 0
    error_message: str | None = None
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class ProgressEvent:
    batch_id: int
    processed: int
    failed: int
    skipped: int = 0
    total: int | None = None  # live sync では総数不明
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class ErrorRecordedEvent:
    batch_id: int | None
    source: str
    row: int
    invoice: str
    error_type: str
    message: str
    timestamp: datetime = field(default_factory=_now)


Handler = Callable[[str, Any], None]


class EventBus:
    """Minimal synchronous publish/subscribe; safe to emit from worker threads."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, name: str, handler: Handler) -> None:
        """Register ``handler(name, payload)``; ``"*"`` receives every event."""
        with self._lock:
            self._handlers[name].append(handler)

    def emit(self, name: str, payload: Any) -> None:
        with self._lock:
            handlers = list(self._handlers.get(name, ())) + list(self._handlers.get("*", ()))
        logger.debug("event %s %s", name, payload)
        for handler in handlers:
            try:
                handler(name, payload)
            except Exception:
                logger.warning("event handler failed for %s", name, exc_info=True)
