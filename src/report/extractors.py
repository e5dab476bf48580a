from __future__ import annotations

import math
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from ..models.invoice import InvoiceHeader, LineItem

"""Field extractors for Invoice Detail Report rows.

Two positional layouts decode line items (standard columns 0-10, embedded columns 27-37),
and label based extraction finds header values anywhere in a row ("Invoice #", "Tax:", ...).

Numeric policy: every currency / quantity field goes through ``parse_amount_or_default``;
an unparsable value becomes the default (0) and never raises.
"""

__all__ = [
    "LineItemColumns",
    "STANDARD_LINE_ITEM_COLUMNS",
    "EMBEDDED_LINE_ITEM_COLUMNS",
    "HEADER_LABELS",
    "parse_amount_or_default",
    "parse_report_date",
    "decode_standard_line_item",
    "decode_embedded_line_item",
    "extract_label_value",
    "extract_header_values",
    "extract_header",
]


@dataclass(frozen=True)
class LineItemColumns:
    """Column positions of one line item layout, in export column order."""
    product_code: int
    description: int
    adjustment: int
    quantity: int
    parts_cost: int
    labor_cost: int
    fet: int
    line_total: int
    cost: int
    margin_pct: int
    gross_profit: int


# Product Code | Size & Desc. | Adjustment | QTY | Parts | Labor | FET | Total | Cost | GPM% | GP$
STANDARD_LINE_ITEM_COLUMNS = LineItemColumns(0, 1, 2, 3, 4, 5, 6, 7, 8, 9, 10)

# "Invoice Detail Report" 行は 0-26 列にレポートヘッダ定型文を持ち、明細は 27 列目から
EMBEDDED_LINE_ITEM_COLUMNS = LineItemColumns(27, 28, 29, 30, 31, 32, 33, 34, 35, 36, 37)

# header field -> label substring
HEADER_LABELS: dict[str, str] = {
    "invoice_number": "Invoice #",
    "customer_name": "Customer Name:",
    "vehicle": "Vehicle:",
    "mileage": "Mileage:",
    "invoice_date": "Invoice Date:",
    "salesperson": "Salesperson:",
    "tax_amount": "Tax:",
    "total_amount": "Total:",
}

_NUMBER_PREFIX = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)")
_DATE_FORMATS = ("%m/%d/%Y", "%m/%d/%y", "%Y-%m-%d")


def parse_amount_or_default(text: Any, default: float = 0.0) -> float:
    """Parse a currency / numeric export value, returning ``default`` when unparsable.

    "$1,234.50" -> 1234.5, "-$12" -> -12.0, "" -> default, "abc" -> default.
    Only the leading numeric part is used ("45.2%" -> 45.2).
    """
    if text is None:
        return default
    if isinstance(text, (int, float)) and not isinstance(text, bool):
        value = float(text)
        return value if math.isfinite(value) else default
    cleaned = str(text).strip().replace("$", "").replace(",", "")
    match = _NUMBER_PREFIX.match(cleaned)
    if match is None:
        return default
    value = float(match.group(0))
    # 桁あふれ ("9" * 400) は inf になる
    return value if math.isfinite(value) else default


def parse_report_date(text: str | None) -> date | None:
    """Parse M/D/YYYY (time part ignored). Returns None when not a date."""
    if not text:
        return None
    token = text.strip().split(" ")[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(token, fmt).date()
        except ValueError:
            continue
    return None


def _field(fields: Sequence[str], index: int) -> str:
    if 0 <= index < len(fields):
        return (fields[index] or "").strip()
    return ""


def _decode_line_item(fields: Sequence[str], columns: LineItemColumns, row_number: int) -> LineItem | None:
    product_code = _field(fields, columns.product_code)
    if not product_code:
        return None
    adjustment = _field(fields, columns.adjustment)
    return LineItem(
        line_number=0,  # assembler が採番
        product_code=product_code,
        description=_field(fields, columns.description),
        adjustment=adjustment or None,
        quantity=parse_amount_or_default(_field(fields, columns.quantity)),
        parts_cost=parse_amount_or_default(_field(fields, columns.parts_cost)),
        labor_cost=parse_amount_or_default(_field(fields, columns.labor_cost)),
        fet=parse_amount_or_default(_field(fields, columns.fet)),
        line_total=parse_amount_or_default(_field(fields, columns.line_total)),
        cost=parse_amount_or_default(_field(fields, columns.cost)),
        reported_margin_pct=parse_amount_or_default(_field(fields, columns.margin_pct)),
        reported_gross_profit=parse_amount_or_default(_field(fields, columns.gross_profit)),
        source_row=row_number,
    )


def decode_standard_line_item(fields: Sequence[str], row_number: int = -1) -> LineItem | None:
    """Decode columns 0-10. Returns None when the product code column is empty."""
    return _decode_line_item(fields, STANDARD_LINE_ITEM_COLUMNS, row_number)


def decode_embedded_line_item(fields: Sequence[str], row_number: int = -1) -> LineItem | None:
    """Decode columns 27-37 of an "Invoice Detail Report" row. None when empty."""
    return _decode_line_item(fields, EMBEDDED_LINE_ITEM_COLUMNS, row_number)


def _is_label_field(value: str) -> bool:
    return any(label in value for label in HEADER_LABELS.values())


def extract_label_value(fields: Sequence[str], label: str) -> str | None:
    """Find the first field containing ``label`` and return the text after it.

    When the label field holds nothing after the label ("Invoice #","3-327551"), the value
    is taken from the next field unless that field is itself a label. Returns None when
    the label is absent.
    """
    for idx, raw in enumerate(fields):
        cell = raw or ""
        pos = cell.find(label)
        if pos < 0:
            continue
        value = cell[pos + len(label):].strip()
        if not value:
            nxt = _field(fields, idx + 1)
            if nxt and not _is_label_field(nxt):
                value = nxt
        return value
    return None


def extract_header_values(fields: Sequence[str]) -> dict[str, Any]:
    """Extract every header label present in the row, already typed.

    Only labels found in the row appear in the result.
    """
    values: dict[str, Any] = {}
    for name, label in HEADER_LABELS.items():
        raw = extract_label_value(fields, label)
        if raw is None:
            continue
        if name in ("tax_amount", "total_amount"):
            values[name] = parse_amount_or_default(raw)
        elif name == "invoice_date":
            parsed = parse_report_date(raw)
            if parsed is not None:
                values[name] = parsed
        elif raw:
            values[name] = raw
    return values


def extract_header(fields: Sequence[str], row_number: int = -1) -> InvoiceHeader | None:
    """Build an InvoiceHeader from an InvoiceStart row; None without an invoice number."""
    values = extract_header_values(fields)
    invoice_number = values.pop("invoice_number", "")
    if not invoice_number:
        return None
    invoice_number = invoice_number.split()[0]
    return InvoiceHeader(invoice_number=invoice_number, source_row=row_number, **values)
