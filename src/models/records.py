from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

"""Persistent record models (rows of invoices / customers / stores).

InvoiceRecord は natural_key (site_code-invoice_number) で一意。
import_batch_id は最初の書き込み時のものを保持し、以降の upsert では更新しない。
"""

__all__ = [
    "CustomerRecord",
    "StoreRecord",
    "InvoiceRecord",
    "INVOICE_STATUS_ACTIVE",
]

INVOICE_STATUS_ACTIVE = "ACTIVE"


@dataclass(frozen=True)
class CustomerRecord:
    id: int
    name: str
    customer_code: str | None = None


@dataclass(frozen=True)
class StoreRecord:
    id: int
    code: str
    name: str


@dataclass(frozen=True)
class InvoiceRecord:
    natural_key: str
    site_code: str
    invoice_number: str
    customer_id: int | None = None
    store_id: int | None = None
    invoice_date: date | None = None
    salesperson: str | None = None
    vehicle: str | None = None
    mileage: str | None = None
    subtotal: float = 0.0
    tax_amount: float = 0.0
    total_amount: float = 0.0
    parts_cost: float = 0.0
    labor_cost: float = 0.0
    fet_total: float = 0.0
    total_cost: float = 0.0
    gross_profit: float = 0.0
    margin_pct: float = 0.0
    status: str = INVOICE_STATUS_ACTIVE
    import_batch_id: int | None = None
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
