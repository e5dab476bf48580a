from __future__ import annotations

import pytest

from src.logging.error_log import ErrorLogBuffer
from src.models.error_record import ErrorRecord
from src.models.import_batch import BatchStatus
from src.models.invoice import Invoice, InvoiceHeader, LineItem
from src.services import events as ev
from src.services.batches import BatchService, BatchStateError
from src.services.reconciliation import ReconciliationEngine


@pytest.fixture
def recorded():
    return []


@pytest.fixture
def batches(store, recorded):
    bus = ev.EventBus()
    bus.subscribe("*", lambda name, payload: recorded.append((name, payload)))
    return BatchService(store, events=bus)


def _names(recorded):
    return [name for name, _ in recorded]


def test_lifecycle_completed(batches, store, recorded):
    batch = batches.create("report.csv", "/data/report.csv")
    assert batch.status is BatchStatus.STARTED
    batch = batches.start(batch)
    batch = batches.complete(batch, total=10, successful=9, failed=1)
    assert batch.status is BatchStatus.COMPLETED
    assert batch.failed_records == 1
    assert batch.completed_at is not None
    assert store.get_batch(batch.id) == batch
    assert _names(recorded) == [ev.BATCH_CREATED, ev.BATCH_STARTED, ev.BATCH_COMPLETED]


def test_fail_from_started(batches):
    batch = batches.fail(batches.create("bad.csv", None), "unreadable")
    assert batch.status is BatchStatus.FAILED
    assert batch.error_message == "unreadable"


def test_complete_requires_in_progress(batches):
    batch = batches.create("report.csv", None)
    with pytest.raises(BatchStateError):
        batches.complete(batch, total=0, successful=0, failed=0)


def test_live_sync_batch(batches):
    batch = batches.create_live_sync()
    assert batch.file_name == "Live Sync Batch"
    assert batch.is_live_sync


def test_find_completed(batches):
    assert batches.find_completed("report.csv") is None
    failed = batches.fail(batches.create("report.csv", None), "x")
    assert batches.find_completed("report.csv") is None
    done = batches.complete(batches.start(batches.create("report.csv", None)), 1, 1, 0)
    assert batches.find_completed("report.csv").id == done.id
    assert failed.id != done.id


def test_rollback_deletes_invoices_first_written_by_batch(batches, store, recorded):
    engine = ReconciliationEngine(store)
    item = LineItem(line_number=1, product_code="P1", quantity=1, line_total=10.0)
    first = batches.start(batches.create("a.csv", None))
    engine.reconcile_invoice(Invoice(InvoiceHeader("3-1", "A"), (item,)), first.id)
    first = batches.complete(first, 1, 1, 0)

    second = batches.start(batches.create("b.csv", None))
    engine.reconcile_invoice(Invoice(InvoiceHeader("3-1", "A"), (item,)), second.id)
    engine.reconcile_invoice(Invoice(InvoiceHeader("3-2", "A"), (item,)), second.id)
    second = batches.complete(second, 2, 2, 0)

    batch, deleted = batches.rollback(second.id)
    assert deleted == 1
    assert batch.status is BatchStatus.ROLLED_BACK
    # 3-1 は最初の batch の所有
    assert sorted(store.invoices) == ["3-1"]
    assert _names(recorded)[-1] == ev.BATCH_ROLLED_BACK


def test_rollback_twice_is_rejected(batches):
    batch = batches.complete(batches.start(batches.create("a.csv", None)), 0, 0, 0)
    batches.rollback(batch.id)
    with pytest.raises(BatchStateError, match="ROLLED_BACK"):
        batches.rollback(batch.id)


def test_rollback_in_progress_is_rejected(batches):
    batch = batches.start(batches.create("a.csv", None))
    with pytest.raises(BatchStateError):
        batches.rollback(batch.id)


def test_rollback_unknown_batch(batches):
    with pytest.raises(BatchStateError, match="not found"):
        batches.rollback(999)


def test_record_error_goes_to_log_store_and_bus(store, recorded):
    bus = ev.EventBus()
    bus.subscribe(ev.ERROR_RECORDED, lambda name, payload: recorded.append((name, payload)))
    error_log = ErrorLogBuffer()
    batches = BatchService(store, events=bus, error_log=error_log)

    record = ErrorRecord.create(source="report.csv", row=7, error_type="ORPHAN_LINE_ITEM",
                                message="line item outside invoice")
    batches.record_error(3, record)

    assert len(error_log) == 1
    assert error_log.total_appended == 1
    assert store.import_errors == [(3, record)]
    name, payload = recorded[0]
    assert name == ev.ERROR_RECORDED
    assert payload.row == 7
    assert payload.batch_id == 3


def test_progress_event(batches, recorded):
    batch = batches.create_live_sync()
    batches.progress(batch, processed=5, failed=1, skipped=2)
    name, payload = recorded[-1]
    assert name == ev.PROGRESS_UPDATED
    assert (payload.processed, payload.skipped, payload.failed, payload.total) == (5, 2, 1, None)
