from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any

from ..models.invoice import Invoice, InvoiceHeader, LineItem
from ..models.row import ClassifiedRow, RawRow, RowKind
from .classifier import classify_rows
from .extractors import (
    decode_embedded_line_item,
    decode_standard_line_item,
    extract_header,
    extract_header_values,
)

"""Invoice assembler: single pass state machine over classified rows.

States are ``NoOpenInvoice`` and ``OpenInvoice(header, items)``. ``step`` is a pure
transition function (state, row) -> StepResult so the open/closed invariant can be tested
without any I/O; ``InvoiceAssembler`` folds rows through it in file order.

Line numbers are assigned here, 1-based and contiguous per invoice, regardless of any
line number field in the source.
"""

__all__ = [
    "Diagnostic",
    "NoOpenInvoice",
    "OpenInvoice",
    "NO_OPEN_INVOICE",
    "StepResult",
    "step",
    "InvoiceAssembler",
    "ParseResult",
    "parse_report",
]


@dataclass(frozen=True)
class Diagnostic:
    """Non-fatal parse finding (recorded in the error log, never raised)."""
    row_number: int
    error_type: str
    message: str
    invoice: str = ""


@dataclass(frozen=True)
class NoOpenInvoice:
    pass


@dataclass(frozen=True)
class OpenInvoice:
    header: InvoiceHeader
    items: tuple[LineItem, ...] = ()

    def with_item(self, item: LineItem) -> OpenInvoice:
        numbered = replace(item, line_number=len(self.items) + 1)
        return OpenInvoice(header=self.header, items=self.items + (numbered,))

    def close(self) -> Invoice:
        return Invoice(header=self.header, line_items=self.items)


NO_OPEN_INVOICE = NoOpenInvoice()

AssemblerState = NoOpenInvoice | OpenInvoice


@dataclass(frozen=True)
class StepResult:
    state: AssemblerState
    emitted: tuple[Invoice, ...] = ()
    diagnostics: tuple[Diagnostic, ...] = ()


def _append(state: AssemblerState, item: LineItem | None, crow: ClassifiedRow) -> StepResult:
    if item is None:
        return StepResult(state)
    if isinstance(state, OpenInvoice):
        return StepResult(state.with_item(item))
    diag = Diagnostic(
        row_number=crow.row_number,
        error_type="ORPHAN_LINE_ITEM",
        message=f"line item {item.product_code!r} found without an open invoice",
    )
    return StepResult(state, diagnostics=(diag,))


def _on_line_item(state: AssemblerState, crow: ClassifiedRow) -> StepResult:
    return _append(state, decode_standard_line_item(crow.fields, crow.row_number), crow)


def _on_line_item_embedded(state: AssemblerState, crow: ClassifiedRow) -> StepResult:
    return _append(state, decode_embedded_line_item(crow.fields, crow.row_number), crow)


def _on_invoice_start(state: AssemblerState, crow: ClassifiedRow) -> StepResult:
    header = extract_header(crow.fields, crow.row_number)
    if header is None:
        # 開いている invoice は閉じずにそのまま
        diag = Diagnostic(
            row_number=crow.row_number,
            error_type="HEADER_EXTRACTION_FAILED",
            message="invoice start row without a recoverable invoice number",
        )
        return StepResult(state, diagnostics=(diag,))
    emitted = (state.close(),) if isinstance(state, OpenInvoice) else ()
    return StepResult(OpenInvoice(header=header), emitted=emitted)


def _on_invoice_end(state: AssemblerState, crow: ClassifiedRow) -> StepResult:
    if isinstance(state, OpenInvoice):
        return StepResult(NO_OPEN_INVOICE, emitted=(state.close(),))
    return StepResult(state)


def _on_header_detail(state: AssemblerState, crow: ClassifiedRow) -> StepResult:
    if not isinstance(state, OpenInvoice):
        return StepResult(state)
    values = extract_header_values(crow.fields)
    values.pop("invoice_number", None)
    updates: dict[str, Any] = {
        name: value for name, value in values.items() if not getattr(state.header, name)
    }
    if not updates:
        return StepResult(state)
    return StepResult(OpenInvoice(header=replace(state.header, **updates), items=state.items))


def _on_ignore(state: AssemblerState, crow: ClassifiedRow) -> StepResult:
    return StepResult(state)


_TRANSITIONS = {
    RowKind.INVOICE_START: _on_invoice_start,
    RowKind.INVOICE_END: _on_invoice_end,
    RowKind.LINE_ITEM: _on_line_item,
    RowKind.LINE_ITEM_EMBEDDED: _on_line_item_embedded,
    RowKind.HEADER_DETAIL: _on_header_detail,
    RowKind.IGNORE: _on_ignore,
}


def step(state: AssemblerState, crow: ClassifiedRow) -> StepResult:
    """Apply one classified row to the assembler state."""
    return _TRANSITIONS[crow.kind](state, crow)


class InvoiceAssembler:
    """Stateful wrapper folding classified rows through ``step``."""

    def __init__(self) -> None:
        self.state: AssemblerState = NO_OPEN_INVOICE
        self.invoices: list[Invoice] = []
        self.diagnostics: list[Diagnostic] = []

    def feed(self, crow: ClassifiedRow) -> None:
        result = step(self.state, crow)
        self.state = result.state
        self.invoices.extend(result.emitted)
        self.diagnostics.extend(result.diagnostics)

    def finish(self) -> list[Invoice]:
        """Close a still open invoice at end of input and return all invoices."""
        if isinstance(self.state, OpenInvoice):
            self.invoices.append(self.state.close())
            self.state = NO_OPEN_INVOICE
        return self.invoices


@dataclass
class ParseResult:
    invoices: list[Invoice]
    diagnostics: list[Diagnostic] = field(default_factory=list)
    kind_counts: dict[RowKind, int] = field(default_factory=dict)
    duplicate_invoice_numbers: list[str] = field(default_factory=list)
    total_rows: int = 0

    @property
    def skipped_rows(self) -> int:
        return self.kind_counts.get(RowKind.IGNORE, 0)

    @property
    def total_line_items(self) -> int:
        return sum(len(inv.line_items) for inv in self.invoices)


def _find_duplicates(invoices: Iterable[Invoice]) -> list[str]:
    seen: set[str] = set()
    duplicates: list[str] = []
    for inv in invoices:
        number = inv.invoice_number
        if number in seen:
            duplicates.append(number)
        else:
            seen.add(number)
    return duplicates


def parse_report(rows: Iterable[RawRow]) -> ParseResult:
    """Tokenized rows -> classified rows -> assembled invoices (file order)."""
    assembler = InvoiceAssembler()
    counts: Counter[RowKind] = Counter()
    physical_rows: set[int] = set()
    for crow in classify_rows(rows):
        counts[crow.kind] += 1
        physical_rows.add(crow.row_number)
        assembler.feed(crow)
    invoices = assembler.finish()
    return ParseResult(
        invoices=invoices,
        diagnostics=assembler.diagnostics,
        kind_counts=dict(counts),
        duplicate_invoice_numbers=_find_duplicates(invoices),
        total_rows=len(physical_rows),
    )
