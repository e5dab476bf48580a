from __future__ import annotations

import itertools
import threading
from collections.abc import Sequence
from dataclasses import replace
from datetime import UTC, datetime
from typing import Protocol

from ..models.error_record import ErrorRecord
from ..models.import_batch import BatchStatus, ImportBatch
from ..models.invoice import InvoiceTotals, LineItem
from ..models.records import CustomerRecord, InvoiceRecord, StoreRecord

"""Downstream invoice store interface and the in-memory implementation.

Store contract:
- invoices are unique by natural_key; upsert_invoice inserts or refreshes the safe fields
  and never changes import_batch_id / created_at of the first write
- line items are unique by (invoice_id, line_number)
- customers are unique by name and by customer_code (code may be None)
- every call is its own transaction; concurrent calls on different keys need no locking

InMemoryInvoiceStore は DB 接続なし (mock モード) とテストで使用。単一ロックで直列化。
"""

__all__ = [
    "StoreError",
    "DuplicateKeyError",
    "InvoiceStore",
    "InMemoryInvoiceStore",
    "SAFE_INVOICE_FIELDS",
    "store_display_name",
]

# 既存 invoice への upsert で更新してよい列
SAFE_INVOICE_FIELDS: tuple[str, ...] = (
    "customer_id",
    "store_id",
    "invoice_date",
    "salesperson",
    "vehicle",
    "mileage",
    "subtotal",
    "tax_amount",
    "total_amount",
    "parts_cost",
    "labor_cost",
    "fet_total",
    "total_cost",
    "gross_profit",
    "margin_pct",
    "status",
)


class StoreError(Exception):
    """Persistence failure."""


class DuplicateKeyError(StoreError):
    """Unique constraint collision."""


def store_display_name(site_code: str) -> str:
    return f"Site {site_code}"


class InvoiceStore(Protocol):
    def get_invoice(self, natural_key: str) -> InvoiceRecord | None: ...

    def upsert_invoice(
        self, record: InvoiceRecord, batch_id: int | None
    ) -> tuple[InvoiceRecord, bool]: ...

    def replace_line_items(self, invoice_id: int, items: Sequence[LineItem]) -> int: ...

    def list_line_items(self, invoice_id: int) -> list[LineItem]: ...

    def update_invoice_totals(self, invoice_id: int, totals: InvoiceTotals) -> InvoiceRecord: ...

    def list_invoice_keys(self) -> list[str]: ...

    def find_customer_by_code(self, customer_code: str) -> CustomerRecord | None: ...

    def find_customer_by_name(self, name: str) -> CustomerRecord | None: ...

    def create_customer(self, name: str, customer_code: str | None) -> CustomerRecord: ...

    def upsert_store(self, site_code: str) -> StoreRecord: ...

    def create_batch(self, file_name: str, original_path: str | None) -> ImportBatch: ...

    def get_batch(self, batch_id: int) -> ImportBatch | None: ...

    def find_batches(self, file_name: str) -> list[ImportBatch]: ...

    def save_batch(self, batch: ImportBatch) -> ImportBatch: ...

    def record_import_error(self, batch_id: int | None, record: ErrorRecord) -> None: ...

    def delete_invoices_for_batch(self, batch_id: int) -> int: ...


class InMemoryInvoiceStore:
    """Thread safe dict backed store with the same uniqueness rules as the SQL schema."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self.invoices: dict[str, InvoiceRecord] = {}
        self.line_items: dict[int, dict[int, LineItem]] = {}
        self.customers: dict[int, CustomerRecord] = {}
        self.stores: dict[str, StoreRecord] = {}
        self.batches: dict[int, ImportBatch] = {}
        self.import_errors: list[tuple[int | None, ErrorRecord]] = []

    def _next_id(self) -> int:
        return next(self._ids)

    # --- invoices -------------------------------------------------------
    def get_invoice(self, natural_key: str) -> InvoiceRecord | None:
        with self._lock:
            return self.invoices.get(natural_key)

    def _invoice_by_id(self, invoice_id: int) -> InvoiceRecord:
        for rec in self.invoices.values():
            if rec.id == invoice_id:
                return rec
        raise StoreError(f"invoice id={invoice_id} not found")

    def upsert_invoice(self, record: InvoiceRecord, batch_id: int | None) -> tuple[InvoiceRecord, bool]:
        now = datetime.now(UTC)
        with self._lock:
            existing = self.invoices.get(record.natural_key)
            if existing is None:
                stored = replace(
                    record, id=self._next_id(), import_batch_id=batch_id, created_at=now, updated_at=now
                )
                self.invoices[record.natural_key] = stored
                self.line_items[stored.id] = {}
                return stored, True
            updates = {name: getattr(record, name) for name in SAFE_INVOICE_FIELDS}
            stored = replace(existing, updated_at=now, **updates)
            self.invoices[record.natural_key] = stored
            return stored, False

    def replace_line_items(self, invoice_id: int, items: Sequence[LineItem]) -> int:
        with self._lock:
            self._invoice_by_id(invoice_id)
            current = self.line_items.setdefault(invoice_id, {})
            for item in items:
                current[item.line_number] = item
            keep = {item.line_number for item in items}
            for line_number in [n for n in current if n not in keep]:
                del current[line_number]
            return len(items)

    def list_line_items(self, invoice_id: int) -> list[LineItem]:
        with self._lock:
            items = self.line_items.get(invoice_id, {})
            return [items[n] for n in sorted(items)]

    def update_invoice_totals(self, invoice_id: int, totals: InvoiceTotals) -> InvoiceRecord:
        with self._lock:
            rec = self._invoice_by_id(invoice_id)
            updated = replace(
                rec,
                subtotal=totals.subtotal,
                total_amount=totals.total_amount,
                parts_cost=totals.parts_cost,
                labor_cost=totals.labor_cost,
                fet_total=totals.fet_total,
                total_cost=totals.total_cost,
                gross_profit=totals.gross_profit,
                margin_pct=totals.margin_pct,
                updated_at=datetime.now(UTC),
            )
            self.invoices[rec.natural_key] = updated
            return updated

    def list_invoice_keys(self) -> list[str]:
        with self._lock:
            return sorted(self.invoices)

    # --- customers / stores ---------------------------------------------
    def find_customer_by_code(self, customer_code: str) -> CustomerRecord | None:
        with self._lock:
            for c in self.customers.values():
                if c.customer_code == customer_code:
                    return c
            return None

    def find_customer_by_name(self, name: str) -> CustomerRecord | None:
        with self._lock:
            for c in self.customers.values():
                if c.name == name:
                    return c
            return None

    def create_customer(self, name: str, customer_code: str | None) -> CustomerRecord:
        with self._lock:
            for c in self.customers.values():
                if c.name == name:
                    raise DuplicateKeyError(f"customer name already exists: {name}")
                if customer_code is not None and c.customer_code == customer_code:
                    raise DuplicateKeyError(f"customer code already exists: {customer_code}")
            rec = CustomerRecord(id=self._next_id(), name=name, customer_code=customer_code)
            self.customers[rec.id] = rec
            return rec

    def upsert_store(self, site_code: str) -> StoreRecord:
        with self._lock:
            rec = self.stores.get(site_code)
            if rec is None:
                rec = StoreRecord(id=self._next_id(), code=site_code, name=store_display_name(site_code))
                self.stores[site_code] = rec
            return rec

    # --- batches --------------------------------------------------------
    def create_batch(self, file_name: str, original_path: str | None) -> ImportBatch:
        with self._lock:
            batch = ImportBatch(
                id=self._next_id(),
                file_name=file_name,
                original_path=original_path,
                status=BatchStatus.STARTED,
                started_at=datetime.now(UTC),
            )
            self.batches[batch.id] = batch
            return batch

    def get_batch(self, batch_id: int) -> ImportBatch | None:
        with self._lock:
            return self.batches.get(batch_id)

    def find_batches(self, file_name: str) -> list[ImportBatch]:
        with self._lock:
            return [b for b in self.batches.values() if b.file_name == file_name]

    def save_batch(self, batch: ImportBatch) -> ImportBatch:
        with self._lock:
            if batch.id not in self.batches:
                raise StoreError(f"batch id={batch.id} not found")
            self.batches[batch.id] = batch
            return batch

    def record_import_error(self, batch_id: int | None, record: ErrorRecord) -> None:
        with self._lock:
            self.import_errors.append((batch_id, record))

    def delete_invoices_for_batch(self, batch_id: int) -> int:
        with self._lock:
            doomed = [k for k, rec in self.invoices.items() if rec.import_batch_id == batch_id]
            for key in doomed:
                rec = self.invoices.pop(key)
                self.line_items.pop(rec.id, None)
            return len(doomed)
