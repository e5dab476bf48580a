from __future__ import annotations

from dataclasses import dataclass
from datetime import date

"""Upstream (point-of-sale staging) order models used by live sync."""

__all__ = [
    "UpstreamOrderItem",
    "UpstreamOrder",
]


@dataclass(frozen=True)
class UpstreamOrderItem:
    """One order line as pushed by the point-of-sale sync client.

    unit_parts / unit_labor / unit_fet are per-unit prices (AMOUNT / LABOR / FETAX).
    total_cost is the extended cost of the line (COST); fallback_unit_cost is the
    product's last known unit cost, used only when total_cost is 0.
    """
    line_number: int
    product_code: str
    description: str = ""
    quantity: float = 0.0
    unit_parts: float = 0.0
    unit_labor: float = 0.0
    unit_fet: float = 0.0
    total_cost: float = 0.0
    fallback_unit_cost: float = 0.0
    is_tire: bool = False


@dataclass(frozen=True)
class UpstreamOrder:
    site_no: str
    invoice_number: str
    order_date: date | None = None
    customer_code: str | None = None
    customer_name: str | None = None
    salesperson: str | None = None
    tax_amount: float = 0.0
    total_amount: float = 0.0
    items: tuple[UpstreamOrderItem, ...] = ()

    @property
    def natural_key(self) -> str:
        return f"{self.site_no}-{self.invoice_number}"
