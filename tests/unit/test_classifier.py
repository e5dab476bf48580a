from __future__ import annotations

import pytest

from src.models.row import RowKind
from src.report.classifier import classify_row, classify_rows, has_embedded_line_item
from src.report.tokenizer import tokenize_line
from tests.report_samples import embedded_footer_line, item_line, q, to_rows


def _kind(line: str) -> RowKind:
    return classify_row(tokenize_line(line))


@pytest.mark.parametrize(
    "line,expected",
    [
        (q("Invoice #", "3-327551"), RowKind.INVOICE_START),
        (q("Totals for Invoice # 3-327551", "", "100.00"), RowKind.INVOICE_END),
        (q("Total # of Invoices", "2"), RowKind.IGNORE),
        (q("Average Invoice", "12.00"), RowKind.IGNORE),
        (q("Printed: 1/31/2025 10:00 AM"), RowKind.IGNORE),
        (q("Product Code", "Size & Desc.", "Adjustment", "QTY"), RowKind.IGNORE),
        (q("Totals for Report", "2"), RowKind.IGNORE),
        (q("Invoice Detail Report", "Site# 3"), RowKind.IGNORE),
        (item_line("P2256517", "225/65R17", "1", "100", "0", "0", "100", "60"), RowKind.LINE_ITEM),
        (q("", "orphan description"), RowKind.IGNORE),
        (q("Grand Total", "1.00"), RowKind.IGNORE),
        (q("Customer Name:", "JOHN DOE"), RowKind.HEADER_DETAIL),
        (q("Vehicle:", "2019 FORD F-150", "Mileage:", "42000"), RowKind.HEADER_DETAIL),
    ],
)
def test_classify_row(line: str, expected: RowKind):
    assert _kind(line) is expected


def test_empty_row_is_ignored():
    assert classify_row([]) is RowKind.IGNORE


def test_end_marker_wins_over_start_marker():
    # "Totals for Invoice # ..." にも "Invoice #" が含まれる
    assert _kind(q("Totals for Invoice # 3-1")) is RowKind.INVOICE_END


def test_invoice_detail_report_row_with_embedded_item():
    fields = ["Invoice Detail Report"] + [""] * 26 + ["ENV-F01", "Environmental Fee", "", "1"]
    assert has_embedded_line_item(fields)
    assert classify_row(fields) is RowKind.LINE_ITEM_EMBEDDED


def test_embedded_columns_holding_a_label_are_not_an_item():
    fields = ["Invoice Detail Report"] + [""] * 26 + ["Customer Name:", "x", "", "1"]
    assert not has_embedded_line_item(fields)
    assert classify_row(fields) is RowKind.IGNORE


def test_embedded_item_requires_quantity_column():
    fields = ["Invoice Detail Report"] + [""] * 26 + ["ENV-F01", "Environmental Fee"]
    assert not has_embedded_line_item(fields)


def test_embedded_item_requires_report_banner_in_first_field():
    fields = ["Something else"] + [""] * 26 + ["ENV-F01", "Environmental Fee", "", "1"]
    assert not has_embedded_line_item(fields)


def test_footer_with_embedded_item_yields_item_then_end():
    rows = to_rows([embedded_footer_line("3-327874", "ENV-F01", "Environmental Fee", "1",
                                         "2.50", "0", "0", "2.50", "0")])
    kinds = [c.kind for c in classify_rows(rows)]
    assert kinds == [RowKind.LINE_ITEM_EMBEDDED, RowKind.INVOICE_END]


def test_classify_rows_keeps_file_order(report_rows):
    classified = list(classify_rows(report_rows))
    numbers = [c.row_number for c in classified]
    assert numbers == sorted(numbers)
    assert classified[2].kind is RowKind.INVOICE_START


def _banner_start_line(number: str) -> str:
    # 0: banner, 5: 次の invoice の "Invoice #", 27..37 直前 invoice の最終 line item
    fields = ["Invoice Detail Report", "", "", "", "", f"Invoice #   {number}"] + [""] * 21
    fields += ["ENV-F01", "Environmental Fee", "", "1", "2.50", "0", "0", "2.50", "0", "", ""]
    return q(*fields)


def test_banner_start_with_embedded_item_yields_item_then_start():
    rows = to_rows([_banner_start_line("3-2")])
    assert classify_row(rows[0].fields) is RowKind.INVOICE_START
    kinds = [c.kind for c in classify_rows(rows)]
    assert kinds == [RowKind.LINE_ITEM_EMBEDDED, RowKind.INVOICE_START]


def test_plain_invoice_start_yields_only_start():
    rows = to_rows([q("Invoice #", "3-2", "Customer Name:", "ACME")])
    assert [c.kind for c in classify_rows(rows)] == [RowKind.INVOICE_START]
