"""Invoice Detail Report parsing: tokenizer, row classifier, field extractors, assembler."""

from .assembler import ParseResult, parse_report
from .classifier import classify_row, classify_rows
from .reader import ReportReadError, read_report_rows
from .tokenizer import tokenize_line

__all__ = [
    "tokenize_line",
    "classify_row",
    "classify_rows",
    "parse_report",
    "ParseResult",
    "read_report_rows",
    "ReportReadError",
]
