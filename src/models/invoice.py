from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum

"""Invoice domain models (assembled and normalized form).

InvoiceHeader / LineItem are produced by the field extractors, Invoice by the assembler.
Derived financial values (unit_cost, gross_profit, margin_pct, category, totals) are filled
by the financial normalizer; until then they hold their zero defaults.
"""

__all__ = [
    "ProductCategory",
    "InvoiceHeader",
    "LineItem",
    "InvoiceTotals",
    "Invoice",
]


class ProductCategory(Enum):
    TIRES = "TIRES"
    SERVICES = "SERVICES"
    PARTS = "PARTS"
    FEES = "FEES"
    OTHER = "OTHER"


@dataclass(frozen=True)
class InvoiceHeader:
    """Header fields of one invoice.

    Attributes:
        invoice_number: natural key component as exported (e.g. "3-327551")
        customer_name: customer display name ("" until known)
        vehicle: vehicle description (optional)
        mileage: mileage text as exported (optional, e.g. "0 / 0")
        invoice_date: parsed from M/D/YYYY (optional)
        salesperson: salesperson name (optional)
        tax_amount: currency, 0 when unparsable
        total_amount: currency, 0 when unparsable
        source_row: physical row of the InvoiceStart row (-1 when not file based)
    """
    invoice_number: str
    customer_name: str = ""
    vehicle: str | None = None
    mileage: str | None = None
    invoice_date: date | None = None
    salesperson: str | None = None
    tax_amount: float = 0.0
    total_amount: float = 0.0
    source_row: int = -1


@dataclass(frozen=True)
class LineItem:
    """One invoice line.

    Column order of the export: Product Code | Size & Desc. | Adjustment | QTY | Parts |
    Labor | FET | Total | Cost | GPM% | GP$.

    ``cost`` is the extended (total) cost of the line, not a unit cost.
    ``reported_margin_pct`` / ``reported_gross_profit`` keep the export's own GPM% / GP$;
    ``margin_pct`` / ``gross_profit`` are always derived by the normalizer.
    """
    line_number: int
    product_code: str
    description: str = ""
    adjustment: str | None = None
    quantity: float = 0.0
    parts_cost: float = 0.0
    labor_cost: float = 0.0
    fet: float = 0.0
    line_total: float = 0.0
    cost: float = 0.0
    reported_margin_pct: float = 0.0
    reported_gross_profit: float = 0.0
    unit_cost: float = 0.0
    margin_pct: float = 0.0
    gross_profit: float = 0.0
    is_tire: bool = False
    category: ProductCategory | None = None
    source_row: int = -1


@dataclass(frozen=True)
class InvoiceTotals:
    """Invoice level aggregates after reconciliation of header vs. line items."""
    items_total: float
    subtotal: float
    tax_amount: float
    total_amount: float
    parts_cost: float
    labor_cost: float
    fet_total: float
    total_cost: float
    gross_profit: float
    margin_pct: float


@dataclass(frozen=True)
class Invoice:
    header: InvoiceHeader
    line_items: tuple[LineItem, ...] = ()
    totals: InvoiceTotals | None = None
    warnings: tuple[str, ...] = field(default=())

    @property
    def invoice_number(self) -> str:
        return self.header.invoice_number

    @property
    def is_normalized(self) -> bool:
        return self.totals is not None
