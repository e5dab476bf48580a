from __future__ import annotations

from datetime import date

import pytest

from src.report.extractors import (
    EMBEDDED_LINE_ITEM_COLUMNS,
    decode_embedded_line_item,
    decode_standard_line_item,
    extract_header,
    extract_header_values,
    extract_label_value,
    parse_amount_or_default,
    parse_report_date,
)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("$1,234.50", 1234.5),
        ("-$12", -12.0),
        ("45.2%", 45.2),
        ("  7 ", 7.0),
        (".5", 0.5),
        ("", 0.0),
        ("abc", 0.0),
        (None, 0.0),
        (3, 3.0),
        (float("nan"), 0.0),
    ],
)
def test_parse_amount_or_default(text, expected):
    assert parse_amount_or_default(text) == expected


def test_parse_amount_overflow_falls_back_to_default():
    assert parse_amount_or_default("9" * 400) == 0.0
    assert parse_amount_or_default("9" * 400, default=-1.0) == -1.0


def test_parse_amount_custom_default():
    assert parse_amount_or_default("n/a", default=-1.0) == -1.0


def test_parse_report_date():
    assert parse_report_date("1/15/2025") == date(2025, 1, 15)
    assert parse_report_date("12/01/2024 10:30 AM") == date(2024, 12, 1)
    assert parse_report_date("not a date") is None
    assert parse_report_date("") is None


def test_decode_standard_line_item():
    fields = ["P2256517", "225/65R17 TOURING", "", "2", "$200.00", "0", "3.00", "203.00", "120.00",
              "40.89", "83.00"]
    item = decode_standard_line_item(fields, row_number=7)
    assert item is not None
    assert item.product_code == "P2256517"
    assert item.description == "225/65R17 TOURING"
    assert item.adjustment is None
    assert item.quantity == 2
    assert item.parts_cost == 200.0
    assert item.fet == 3.0
    assert item.line_total == 203.0
    assert item.cost == 120.0
    assert item.reported_margin_pct == 40.89
    assert item.reported_gross_profit == 83.0
    assert item.source_row == 7


def test_decode_standard_line_item_short_row_defaults_to_zero():
    item = decode_standard_line_item(["VS-1234", "VALVE STEM"])
    assert item is not None
    assert item.quantity == 0
    assert item.line_total == 0


def test_decode_without_product_code_is_none():
    assert decode_standard_line_item(["", "desc", "", "1"]) is None


def test_decode_embedded_line_item_uses_offset_columns():
    fields = ["Invoice Detail Report", "Totals for Invoice # 3-327874"] + [""] * 25
    fields += ["ENV-F01", "Environmental Fee", "", "1", "2.50", "0", "0", "2.50", "0", "", ""]
    assert fields[EMBEDDED_LINE_ITEM_COLUMNS.product_code] == "ENV-F01"
    item = decode_embedded_line_item(fields, row_number=20)
    assert item is not None
    assert item.product_code == "ENV-F01"
    assert item.description == "Environmental Fee"
    assert item.quantity == 1
    assert item.line_total == 2.5


def test_extract_label_value_from_next_field():
    assert extract_label_value(["Invoice #", "3-327551"], "Invoice #") == "3-327551"


def test_extract_label_value_inline():
    assert extract_label_value(["Invoice # 3-327551"], "Invoice #") == "3-327551"


def test_extract_label_value_next_field_is_label():
    assert extract_label_value(["Customer Name:", "Vehicle:", "F-150"], "Customer Name:") == ""


def test_extract_label_value_absent():
    assert extract_label_value(["foo", "bar"], "Tax:") is None


def test_extract_header_values_typed():
    fields = ["Invoice #", "3-327551", "Customer Name:", "JOHN DOE", "Invoice Date:", "1/15/2025",
              "Tax:", "$8.00", "Total:", "1,000.00"]
    values = extract_header_values(fields)
    assert values["invoice_number"] == "3-327551"
    assert values["customer_name"] == "JOHN DOE"
    assert values["invoice_date"] == date(2025, 1, 15)
    assert values["tax_amount"] == 8.0
    assert values["total_amount"] == 1000.0
    assert "vehicle" not in values


def test_extract_header():
    header = extract_header(["Invoice #", "3-327551 (reprint)", "Salesperson:", "MIKE"], row_number=3)
    assert header is not None
    assert header.invoice_number == "3-327551"
    assert header.salesperson == "MIKE"
    assert header.source_row == 3
    assert header.customer_name == ""


def test_extract_header_without_number():
    assert extract_header(["Invoice #", ""]) is None
    assert extract_header(["Invoice #", "Customer Name:", "X"]) is None
