from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence

from ..models.row import ClassifiedRow, RawRow, RowKind
from .extractors import EMBEDDED_LINE_ITEM_COLUMNS, HEADER_LABELS

"""Row classifier for the Invoice Detail Report.

Rules, in precedence order:

1. any field contains "Totals for Invoice" -> InvoiceEnd. If the same row also carries an
   embedded line item, the item is emitted first (LineItemEmbedded) and then InvoiceEnd,
   so the last line of the invoice is not lost.
2. any field contains "Invoice #" -> InvoiceStart
3. first field contains a report noise marker -> Ignore
   (3b. first field starts with a header label -> HeaderDetail)
4. first field contains "Invoice Detail Report" -> LineItemEmbedded when columns 27/30 hold
   a non-label value, otherwise Ignore
5. first field non-empty without "Report" / "Total" -> LineItem
6. otherwise Ignore
"""

__all__ = [
    "INVOICE_END_MARKER",
    "INVOICE_START_MARKER",
    "REPORT_SECTION_MARKER",
    "NOISE_MARKERS",
    "EMBEDDED_EXCLUDE_MARKERS",
    "classify_row",
    "has_embedded_line_item",
    "classify_rows",
]

INVOICE_END_MARKER = "Totals for Invoice"
INVOICE_START_MARKER = "Invoice #"
REPORT_SECTION_MARKER = "Invoice Detail Report"

NOISE_MARKERS: tuple[str, ...] = (
    "Total #",
    "Average",
    "Selected Date Range",
    "Report Notes",
    "Printed:",
    "Product Code",
    "Totals for Report",
)

# 27 列目がこれらを含む場合は明細ではなくラベル
EMBEDDED_EXCLUDE_MARKERS: tuple[str, ...] = (
    "Invoice #",
    "Customer Name",
    "Total",
    "Report",
    "Totals for",
    "Site#",
    "Page ",
)

# HeaderDetail 判定用 (Invoice # は rule 2 で処理済み)
_CONTINUATION_LABELS = tuple(
    label for name, label in HEADER_LABELS.items() if name != "invoice_number"
)


_BOUNDARY_KINDS = frozenset({RowKind.INVOICE_END, RowKind.INVOICE_START})


def _first_field(fields: Sequence[str]) -> str:
    return (fields[0] or "").strip() if fields else ""


def _any_field_contains(fields: Sequence[str], marker: str) -> bool:
    return any(marker in (f or "") for f in fields)


def has_embedded_line_item(fields: Sequence[str]) -> bool:
    """True when an "Invoice Detail Report" row smuggles a line item in columns 27+.

    Both the product code (27) and quantity (30) columns must be non-empty and the product
    code must not look like another label.
    """
    if REPORT_SECTION_MARKER not in _first_field(fields):
        return False
    cols = EMBEDDED_LINE_ITEM_COLUMNS
    if len(fields) <= cols.quantity:
        return False
    product_code = (fields[cols.product_code] or "").strip()
    quantity = (fields[cols.quantity] or "").strip()
    if not product_code or not quantity:
        return False
    return not any(marker in product_code for marker in EMBEDDED_EXCLUDE_MARKERS)


def classify_row(fields: Sequence[str]) -> RowKind:
    """Classify one tokenized row. Pure function of content.

    A footer row carrying an embedded item classifies as INVOICE_END here; use
    ``classify_rows`` to get the item extraction before the boundary.
    """
    if not fields:
        return RowKind.IGNORE

    if _any_field_contains(fields, INVOICE_END_MARKER):
        return RowKind.INVOICE_END

    if _any_field_contains(fields, INVOICE_START_MARKER):
        return RowKind.INVOICE_START

    first = _first_field(fields)
    if any(marker in first for marker in NOISE_MARKERS):
        return RowKind.IGNORE

    if first.startswith(_CONTINUATION_LABELS):
        return RowKind.HEADER_DETAIL

    if REPORT_SECTION_MARKER in first:
        return RowKind.LINE_ITEM_EMBEDDED if has_embedded_line_item(fields) else RowKind.IGNORE

    if first and "Report" not in first and "Total" not in first:
        return RowKind.LINE_ITEM

    return RowKind.IGNORE


def classify_rows(rows: Iterable[RawRow]) -> Iterator[ClassifiedRow]:
    """Classify rows in file order.

    A banner row that is also an invoice boundary (footer or "Invoice #") and carries an
    embedded line item yields two classified rows for the same physical row:
    LINE_ITEM_EMBEDDED first, then the boundary. The item belongs to the invoice that is
    open before the boundary is applied.
    """
    for row in rows:
        kind = classify_row(row.fields)
        if kind in _BOUNDARY_KINDS and has_embedded_line_item(row.fields):
            yield ClassifiedRow(row=row, kind=RowKind.LINE_ITEM_EMBEDDED)
        yield ClassifiedRow(row=row, kind=kind)
