from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import replace

from ..models.invoice import Invoice, InvoiceHeader, InvoiceTotals, LineItem, ProductCategory

"""Financial normalizer.

Per line item:
- gross_profit = line_total - cost (cost は数量込みの総原価)
- margin_pct = gross_profit / line_total * 100 (line_total == 0 -> 0), clamped to ±999.99
- unit_cost = cost / quantity (quantity == 0 -> 0, never divides by zero)
- category: first matching rule of CATEGORY_RULES

Per invoice: totals from the line items. When the line item sum is non-zero it is the
invoice total even if the header says otherwise; the header total is only kept when the
items sum to zero.
"""

__all__ = [
    "MARGIN_LIMIT",
    "FINANCIAL_TOLERANCE",
    "UNKNOWN_CUSTOMER",
    "UNKNOWN_SALESPERSON",
    "round_money",
    "clamp_margin",
    "margin_pct",
    "unit_cost",
    "categorize",
    "normalize_line_item",
    "reconcile_totals",
    "normalize_invoice",
]

MARGIN_LIMIT = 999.99
FINANCIAL_TOLERANCE = 0.05
UNKNOWN_CUSTOMER = "Unknown Customer"
UNKNOWN_SALESPERSON = "Unknown"

_WS = re.compile(r"\s+")


def round_money(value: float) -> float:
    return round(value + 0.0, 2)


def clamp_margin(value: float) -> float:
    if value != value:  # NaN
        return 0.0
    return max(-MARGIN_LIMIT, min(MARGIN_LIMIT, value))


def margin_pct(gross_profit: float, line_total: float) -> float:
    if line_total == 0:
        return 0.0
    return clamp_margin(round(gross_profit / line_total * 100, 2))


def unit_cost(total_cost: float, quantity: float) -> float:
    if quantity == 0:
        return 0.0
    return round(total_cost / quantity, 4)


def _collapse(text: str | None) -> str:
    return _WS.sub(" ", text or "").strip()


def _is_tire_code(code: str, description: str) -> bool:
    return ("OP" in code and len(code) <= 10) or "TIRE" in code or "CASING" in code


def _is_service(code: str, description: str) -> bool:
    desc = description.lower()
    return "labor" in desc or "service" in desc or code.startswith(("SRV-", "STW-", "LAB-"))


def _is_fee(code: str, description: str) -> bool:
    return code.startswith(("ENV-", "48-01-")) or "SCRAP" in code


def _is_blank(code: str, description: str) -> bool:
    return not code and not description


# (rule, category) 先勝ち。tire フラグは categorize() 側で先に判定
CATEGORY_RULES = (
    (_is_tire_code, ProductCategory.TIRES),
    (_is_service, ProductCategory.SERVICES),
    (_is_fee, ProductCategory.FEES),
    (_is_blank, ProductCategory.OTHER),
)


def categorize(product_code: str, description: str = "", is_tire: bool = False) -> ProductCategory:
    """Priority ordered category rule; ties go to the first matching rule."""
    if is_tire:
        return ProductCategory.TIRES
    code = (product_code or "").upper().strip()
    desc = description or ""
    for rule, category in CATEGORY_RULES:
        if rule(code, desc):
            return category
    return ProductCategory.PARTS


def normalize_line_item(item: LineItem) -> tuple[LineItem, list[str]]:
    """Derive cost / profit / margin fields and return (item, warnings)."""
    warnings: list[str] = []
    code = (item.product_code or "").upper().strip()
    description = _collapse(item.description).lstrip(".").strip()
    line_total = round_money(item.line_total)
    cost = round_money(item.cost)
    gross_profit = round_money(line_total - cost)

    if item.reported_gross_profit and abs(item.reported_gross_profit - gross_profit) > FINANCIAL_TOLERANCE:
        warnings.append(
            f"line {item.line_number} {code}: reported GP$ {item.reported_gross_profit:.2f} "
            f"!= derived {gross_profit:.2f}"
        )
    components = item.parts_cost + item.labor_cost + item.fet
    if line_total and components:
        tolerance = max(FINANCIAL_TOLERANCE, abs(line_total) * 0.01)
        if abs(components - line_total) > tolerance:
            warnings.append(
                f"line {item.line_number} {code}: parts+labor+FET {components:.2f} "
                f"!= total {line_total:.2f}"
            )

    normalized = replace(
        item,
        product_code=code,
        description=description,
        adjustment=_collapse(item.adjustment) or None,
        parts_cost=round_money(item.parts_cost),
        labor_cost=round_money(item.labor_cost),
        fet=round_money(item.fet),
        line_total=line_total,
        cost=cost,
        gross_profit=gross_profit,
        margin_pct=margin_pct(gross_profit, line_total),
        unit_cost=unit_cost(cost, item.quantity),
        category=categorize(code, description, item.is_tire),
    )
    return normalized, warnings


def reconcile_totals(items: Iterable[LineItem], tax_amount: float, header_total: float) -> InvoiceTotals:
    """Aggregate line items into invoice totals.

    total = line item sum when non-zero, else the header total; subtotal = total - tax.
    """
    items = list(items)
    items_total = round_money(sum(i.line_total for i in items))
    total = items_total if items_total != 0 else round_money(header_total)
    gross_profit = round_money(sum(i.gross_profit for i in items))
    return InvoiceTotals(
        items_total=items_total,
        subtotal=round_money(total - tax_amount),
        tax_amount=round_money(tax_amount),
        total_amount=total,
        parts_cost=round_money(sum(i.parts_cost for i in items)),
        labor_cost=round_money(sum(i.labor_cost for i in items)),
        fet_total=round_money(sum(i.fet for i in items)),
        total_cost=round_money(sum(i.cost for i in items)),
        gross_profit=gross_profit,
        margin_pct=margin_pct(gross_profit, total),
    )


def _normalize_header(header: InvoiceHeader) -> InvoiceHeader:
    return replace(
        header,
        invoice_number=header.invoice_number.strip(),
        customer_name=_collapse(header.customer_name) or UNKNOWN_CUSTOMER,
        salesperson=_collapse(header.salesperson) or UNKNOWN_SALESPERSON,
        vehicle=_collapse(header.vehicle) or None,
        mileage=_collapse(header.mileage) or None,
        tax_amount=round_money(header.tax_amount),
        total_amount=round_money(header.total_amount),
    )


def normalize_invoice(invoice: Invoice) -> Invoice:
    """Normalize every line item and compute reconciled invoice totals."""
    header = _normalize_header(invoice.header)
    warnings: list[str] = []
    items: list[LineItem] = []
    for item in invoice.line_items:
        normalized, item_warnings = normalize_line_item(item)
        items.append(normalized)
        warnings.extend(item_warnings)

    totals = reconcile_totals(items, header.tax_amount, header.total_amount)
    if (
        totals.items_total != 0
        and header.total_amount != 0
        and abs(totals.items_total - header.total_amount) > FINANCIAL_TOLERANCE
    ):
        warnings.append(
            f"header total {header.total_amount:.2f} != line items {totals.items_total:.2f}; "
            "using line items"
        )
    return Invoice(header=header, line_items=tuple(items), totals=totals, warnings=tuple(warnings))
