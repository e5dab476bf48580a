from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for error logging.

Structured error record written as one JSON Lines entry. row=-1 is the sentinel for
file level errors and for live sync records that have no physical row.
"""

__all__ = [
    "ErrorRecord",
    "ERROR_TYPES",
]

# UPPER_SNAKE error classification
ERROR_TYPES = frozenset({
    "HEADER_EXTRACTION_FAILED",
    "ORPHAN_LINE_ITEM",
    "INVOICE_PERSIST_ERROR",
    "CUSTOMER_CONFLICT",
    "FETCH_ERROR",
    "SYNC_RECORD_ERROR",
    "PROCESSING_ERROR",
    "TRANSACTION_ERROR",
    "FINANCIAL_MISMATCH",
})


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        source: report file name, or "LIVE_SYNC" for the sync path
        row: physical row number (1-based). -1 when unknown / not row based
        invoice: invoice number or natural key ("" when not invoice related)
        error_type: error classification in UPPER_SNAKE_CASE format
        message: error message or description
    """
    timestamp: str  # ISO8601 UTC
    source: str
    row: int  # 行番号。不明な場合 -1 許容
    invoice: str
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(source: str, row: int, error_type: str, message: str, invoice: str = "") -> ErrorRecord:
        """Create a new ErrorRecord with current UTC timestamp."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            source=source,
            row=row,
            invoice=invoice,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        # 追加キー阻止: dataclass -> dict して json.dumps
        return json.dumps(asdict(self), ensure_ascii=False)
