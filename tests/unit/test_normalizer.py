from __future__ import annotations

import math

import pytest

from src.models.invoice import Invoice, InvoiceHeader, LineItem, ProductCategory
from src.services.normalizer import (
    MARGIN_LIMIT,
    UNKNOWN_CUSTOMER,
    categorize,
    clamp_margin,
    margin_pct,
    normalize_invoice,
    normalize_line_item,
    reconcile_totals,
    unit_cost,
)


def _item(n: int = 1, code: str = "P2256517", **kw) -> LineItem:
    defaults = dict(quantity=1, parts_cost=100.0, line_total=100.0, cost=60.0)
    defaults.update(kw)
    return LineItem(line_number=n, product_code=code, **defaults)


def test_line_item_derivations():
    item, warnings = normalize_line_item(_item(quantity=2, cost=60.0))
    assert item.gross_profit == 40.0
    assert item.margin_pct == 40.0
    assert item.unit_cost == 30.0
    assert warnings == []


def test_zero_quantity_has_zero_unit_cost():
    item, _ = normalize_line_item(_item(quantity=0))
    assert item.unit_cost == 0.0
    assert unit_cost(50.0, 0) == 0.0


def test_zero_line_total_has_zero_margin():
    item, _ = normalize_line_item(_item(parts_cost=0.0, line_total=0.0, cost=10.0))
    assert item.margin_pct == 0.0
    assert item.gross_profit == -10.0


@pytest.mark.parametrize("gp,total", [(1e9, 1.0), (-1e9, 1.0), (5.0, 0.0001), (-5.0, 0.0001)])
def test_margin_always_within_bounds(gp, total):
    value = margin_pct(gp, total)
    assert -MARGIN_LIMIT <= value <= MARGIN_LIMIT


def test_clamp_margin_nan():
    assert clamp_margin(math.nan) == 0.0


@pytest.mark.parametrize(
    "code,desc,is_tire,expected",
    [
        ("ANY", "", True, ProductCategory.TIRES),
        ("2657017OP", "LT265/70R17", False, ProductCategory.TIRES),
        ("TIRE-ROT", "rotation", False, ProductCategory.TIRES),
        ("X1", "Brake labor", False, ProductCategory.SERVICES),
        ("SRV-ALIGN", "alignment", False, ProductCategory.SERVICES),
        ("X2", "Oil service", False, ProductCategory.SERVICES),
        ("ENV-F01", "Environmental Fee", False, ProductCategory.FEES),
        ("48-01-0101", "disposal", False, ProductCategory.FEES),
        ("SCRAP1", "", False, ProductCategory.FEES),
        ("", "", False, ProductCategory.OTHER),
        ("VS-1234", "VALVE STEM", False, ProductCategory.PARTS),
    ],
)
def test_categorize(code, desc, is_tire, expected):
    assert categorize(code, desc, is_tire) is expected


def test_first_matching_rule_wins():
    # tire パターンと labor 記述の両方に一致 -> 先の TIRES
    assert categorize("CASING-1", "casing labor") is ProductCategory.TIRES


def test_text_normalization():
    item, _ = normalize_line_item(_item(code=" p225 ", description="..  225/65R17   TOURING ", adjustment="  "))
    assert item.product_code == "P225"
    assert item.description == "225/65R17 TOURING"
    assert item.adjustment is None


def test_reported_gross_profit_mismatch_warns():
    _, warnings = normalize_line_item(_item(reported_gross_profit=55.0))
    assert len(warnings) == 1
    assert "GP$" in warnings[0]


def test_components_mismatch_warns():
    _, warnings = normalize_line_item(_item(parts_cost=50.0, labor_cost=10.0))
    assert any("parts+labor+FET" in w for w in warnings)


def test_reconcile_totals_uses_items_sum():
    items = [normalize_line_item(_item(n))[0] for n in (1, 2, 3)]
    totals = reconcile_totals(items, tax_amount=10.0, header_total=999.0)
    assert totals.items_total == 300.0
    assert totals.total_amount == 300.0
    assert totals.subtotal == 290.0
    assert totals.total_cost == 180.0
    assert totals.gross_profit == 120.0
    assert totals.margin_pct == 40.0


def test_reconcile_totals_keeps_header_when_items_sum_to_zero():
    totals = reconcile_totals([], tax_amount=5.0, header_total=50.0)
    assert totals.total_amount == 50.0
    assert totals.subtotal == 45.0
    assert totals.margin_pct == 0.0


def test_normalize_invoice_defaults_and_warning():
    invoice = Invoice(
        header=InvoiceHeader(invoice_number=" 3-1 ", customer_name="  ", total_amount=250.0),
        line_items=(_item(1), _item(2)),
    )
    normalized = normalize_invoice(invoice)
    assert normalized.is_normalized
    assert normalized.invoice_number == "3-1"
    assert normalized.header.customer_name == UNKNOWN_CUSTOMER
    assert normalized.header.salesperson == "Unknown"
    assert normalized.totals.total_amount == 200.0
    assert any("header total" in w for w in normalized.warnings)
