from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from ..db.store import DuplicateKeyError, InvoiceStore, StoreError
from ..models.invoice import Invoice, InvoiceHeader, LineItem, InvoiceTotals
from ..models.records import INVOICE_STATUS_ACTIVE, CustomerRecord, InvoiceRecord
from ..models.upstream import UpstreamOrder, UpstreamOrderItem
from .normalizer import (
    UNKNOWN_CUSTOMER,
    normalize_invoice,
    normalize_line_item,
    reconcile_totals,
    round_money,
)

"""Reconciliation / upsert engine.

Both import paths (report files and live sync) end here:

1. natural key = "<site_code>-<invoice_number>"
2. customer get-or-create (code → name, collision → "<name> (<code>)" → lookup)
3. store upsert by site code
4. invoice upsert by natural key (safe fields only on update, provenance kept)
5. line items replaced by (invoice_id, line_number)

Suspicious profit: 既存 invoice で total > 0 かつ gross_profit == total (±0.01) は
原価欠落とみなし live sync で再同期する。
"""

__all__ = [
    "ReconcileOutcome",
    "ReconcileResult",
    "SyncOutcome",
    "RepairCounts",
    "ReconciliationEngine",
    "split_natural_key",
    "repair_invoice_totals",
]

logger = logging.getLogger(__name__)

SUSPICIOUS_TOLERANCE = 0.01
_KEYED_NUMBER = re.compile(r"^(\d+)-(\S+)$")


class ReconcileOutcome(Enum):
    INSERTED = "INSERTED"
    UPDATED = "UPDATED"


class SyncOutcome(Enum):
    SYNCED = "SYNCED"
    RESYNCED = "RESYNCED"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True)
class ReconcileResult:
    natural_key: str
    outcome: ReconcileOutcome
    invoice_id: int
    line_items: int


@dataclass
class RepairCounts:
    repaired: int = 0
    unchanged: int = 0
    skipped_zero: int = 0
    missing: int = 0

    @property
    def total(self) -> int:
        return self.repaired + self.unchanged + self.skipped_zero + self.missing


def split_natural_key(
    invoice_number: str, site_code: str | None = None, default_site_code: str = "1"
) -> tuple[str, str]:
    """Return (site_code, invoice_number) for the natural key.

    "3-327551" (no explicit site) -> ("3", "327551"); site "3" + "327551" -> ("3", "327551");
    site "3" + "3-327551" -> ("3", "327551") (no double prefix).
    """
    number = (invoice_number or "").strip()
    if site_code is not None and str(site_code).strip():
        site = str(site_code).strip()
        prefix = f"{site}-"
        if number.startswith(prefix) and len(number) > len(prefix):
            number = number[len(prefix):]
        return site, number
    m = _KEYED_NUMBER.match(number)
    if m:
        return m.group(1), m.group(2)
    return default_site_code, number


def _line_item_from_upstream(line_number: int, item: UpstreamOrderItem) -> LineItem:
    qty = item.quantity
    unit_price = item.unit_parts + item.unit_labor + item.unit_fet
    # 数量 0 で単価ありは 1 個として売上計上 (quantity 自体は 0 のまま)
    billed_qty = 1 if qty == 0 and unit_price != 0 else qty
    cost = item.total_cost if item.total_cost else item.fallback_unit_cost * qty
    return LineItem(
        line_number=line_number,
        product_code=item.product_code,
        description=item.description,
        quantity=qty,
        parts_cost=item.unit_parts * qty,
        labor_cost=item.unit_labor * qty,
        fet=item.unit_fet * qty,
        line_total=unit_price * billed_qty,
        cost=cost,
        is_tire=item.is_tire,
    )


def _totals_match(record: InvoiceRecord, totals: InvoiceTotals) -> bool:
    pairs = (
        (record.subtotal, totals.subtotal),
        (record.total_amount, totals.total_amount),
        (record.parts_cost, totals.parts_cost),
        (record.labor_cost, totals.labor_cost),
        (record.fet_total, totals.fet_total),
        (record.total_cost, totals.total_cost),
        (record.gross_profit, totals.gross_profit),
        (record.margin_pct, totals.margin_pct),
    )
    return all(abs(a - b) < 0.005 for a, b in pairs)


class ReconciliationEngine:
    """Idempotent writer of normalized invoices into an ``InvoiceStore``.

    Holds no mutable state besides its collaborators, so one engine is shared by all
    live sync workers; same-key serialization is left to the store's upsert.
    """

    def __init__(self, store: InvoiceStore, default_site_code: str = "1") -> None:
        self.store = store
        self.default_site_code = default_site_code

    def natural_key(self, invoice_number: str, site_code: str | None = None) -> str:
        site, number = split_natural_key(invoice_number, site_code, self.default_site_code)
        return f"{site}-{number}"

    @staticmethod
    def is_profit_suspicious(record: InvoiceRecord) -> bool:
        return record.total_amount > 0 and abs(record.gross_profit - record.total_amount) < SUSPICIOUS_TOLERANCE

    def get_or_create_customer(self, name: str | None, customer_code: str | None = None) -> CustomerRecord:
        """Find or create the customer; collisions retry once with "<name> (<code>)".

        Raises:
            StoreError: when both the retry and the lookup fail
        """
        code = (customer_code or "").strip() or None
        name = (name or "").strip() or (f"Customer {code}" if code else UNKNOWN_CUSTOMER)

        found = self.store.find_customer_by_code(code) if code else self.store.find_customer_by_name(name)
        if found is not None:
            return found

        try:
            return self.store.create_customer(name, code)
        except DuplicateKeyError as e:
            if code is None:
                # 同名の顧客が並行して作成された
                found = self.store.find_customer_by_name(name)
                if found is None:
                    raise StoreError(f"customer '{name}' collided but could not be found") from e
                return found

        disambiguated = f"{name} ({code})"
        logger.debug("customer name collision for '%s', retrying as '%s'", name, disambiguated)
        try:
            return self.store.create_customer(disambiguated, code)
        except DuplicateKeyError as e:
            found = self.store.find_customer_by_name(disambiguated) or self.store.find_customer_by_code(code)
            if found is None:
                raise StoreError(
                    f"customer '{name}' (code {code}) collided twice and lookup failed"
                ) from e
            return found

    def reconcile_invoice(
        self,
        invoice: Invoice,
        batch_id: int | None,
        site_code: str | None = None,
        customer_code: str | None = None,
    ) -> ReconcileResult:
        """Upsert one invoice with its line items (normalizing it first when needed)."""
        if not invoice.is_normalized:
            invoice = normalize_invoice(invoice)
        header = invoice.header
        totals = invoice.totals
        site, number = split_natural_key(header.invoice_number, site_code, self.default_site_code)
        if not number:
            raise StoreError("invoice without invoice number")
        key = f"{site}-{number}"

        customer = self.get_or_create_customer(header.customer_name, customer_code)
        store_rec = self.store.upsert_store(site)
        record = InvoiceRecord(
            natural_key=key,
            site_code=site,
            invoice_number=number,
            customer_id=customer.id,
            store_id=store_rec.id,
            invoice_date=header.invoice_date,
            salesperson=header.salesperson,
            vehicle=header.vehicle,
            mileage=header.mileage,
            subtotal=totals.subtotal,
            tax_amount=totals.tax_amount,
            total_amount=totals.total_amount,
            parts_cost=totals.parts_cost,
            labor_cost=totals.labor_cost,
            fet_total=totals.fet_total,
            total_cost=totals.total_cost,
            gross_profit=totals.gross_profit,
            margin_pct=totals.margin_pct,
            status=INVOICE_STATUS_ACTIVE,
        )
        stored, inserted = self.store.upsert_invoice(record, batch_id)
        count = self.store.replace_line_items(stored.id, invoice.line_items)
        outcome = ReconcileOutcome.INSERTED if inserted else ReconcileOutcome.UPDATED
        logger.debug("invoice %s %s (%d items)", key, outcome.value.lower(), count)
        return ReconcileResult(natural_key=key, outcome=outcome, invoice_id=stored.id, line_items=count)

    def invoice_from_upstream(self, order: UpstreamOrder) -> Invoice:
        """Map an upstream order to an (un-normalized) Invoice; items renumbered 1..n by source line."""
        items = sorted(order.items, key=lambda i: i.line_number)
        line_items = tuple(_line_item_from_upstream(n, item) for n, item in enumerate(items, start=1))
        customer_name = (order.customer_name or "").strip()
        if not customer_name and order.customer_code:
            customer_name = f"Customer {order.customer_code}"
        header = InvoiceHeader(
            invoice_number=order.invoice_number,
            customer_name=customer_name,
            invoice_date=order.order_date,
            salesperson=order.salesperson,
            tax_amount=order.tax_amount,
            total_amount=order.total_amount,
        )
        return Invoice(header=header, line_items=line_items)

    def sync_order(self, order: UpstreamOrder, batch_id: int | None) -> SyncOutcome:
        """Rehydrate one upstream order; existing invoices are skipped unless suspicious."""
        key = self.natural_key(order.invoice_number, order.site_no)
        existing = self.store.get_invoice(key)
        if existing is not None and not self.is_profit_suspicious(existing):
            return SyncOutcome.SKIPPED
        if existing is not None:
            logger.debug(
                "re-syncing %s: gross profit %.2f equals total %.2f",
                key,
                existing.gross_profit,
                existing.total_amount,
            )
        invoice = normalize_invoice(self.invoice_from_upstream(order))
        self.reconcile_invoice(invoice, batch_id, site_code=order.site_no, customer_code=order.customer_code)
        return SyncOutcome.RESYNCED if existing is not None else SyncOutcome.SYNCED

    def recompute_invoice_totals(self, natural_key: str) -> str:
        """Recompute stored aggregates from stored line items.

        Returns one of "repaired", "unchanged", "skipped_zero", "missing".
        """
        record = self.store.get_invoice(natural_key)
        if record is None or record.id is None:
            return "missing"
        items = [normalize_line_item(i)[0] for i in self.store.list_line_items(record.id)]
        totals = reconcile_totals(items, record.tax_amount, record.total_amount)
        if totals.items_total == 0:
            return "skipped_zero"
        if _totals_match(record, totals):
            return "unchanged"
        self.store.update_invoice_totals(record.id, totals)
        logger.debug(
            "repaired %s: total %.2f -> %.2f, gross profit %.2f -> %.2f",
            natural_key,
            record.total_amount,
            totals.total_amount,
            record.gross_profit,
            round_money(totals.gross_profit),
        )
        return "repaired"

    def repair_invoice_totals(self, keys: Iterable[str] | None = None) -> RepairCounts:
        counts = RepairCounts()
        for key in (self.store.list_invoice_keys() if keys is None else keys):
            outcome = self.recompute_invoice_totals(key)
            setattr(counts, outcome, getattr(counts, outcome) + 1)
        logger.info(
            f"repair totals: repaired={counts.repaired} unchanged={counts.unchanged} "
            f"skipped_zero={counts.skipped_zero} missing={counts.missing}"
        )
        return counts


def repair_invoice_totals(store: InvoiceStore, keys: Iterable[str] | None = None) -> RepairCounts:
    """Recompute invoice aggregates from their stored line items (all invoices when keys is None)."""
    return ReconciliationEngine(store).repair_invoice_totals(keys)
