"""Domain models for the TireMaster invoice importer.

This package contains the domain model classes used throughout the application:
report rows, assembled invoices, persistent records, import batches and run results.
"""

from .error_record import ErrorRecord
from .import_batch import BatchStatus, ImportBatch
from .invoice import Invoice, InvoiceHeader, InvoiceTotals, LineItem, ProductCategory
from .processing_result import FileStat, ProcessingResult, SyncResult
from .records import CustomerRecord, InvoiceRecord, StoreRecord
from .row import ClassifiedRow, RawRow, RowKind
from .upstream import UpstreamOrder, UpstreamOrderItem

__all__ = [
    # Report rows
    "RawRow",
    "RowKind",
    "ClassifiedRow",
    # Invoices
    "ProductCategory",
    "InvoiceHeader",
    "LineItem",
    "InvoiceTotals",
    "Invoice",
    # Persistence
    "CustomerRecord",
    "StoreRecord",
    "InvoiceRecord",
    "BatchStatus",
    "ImportBatch",
    "ErrorRecord",
    # Live sync
    "UpstreamOrder",
    "UpstreamOrderItem",
    # Results
    "FileStat",
    "ProcessingResult",
    "SyncResult",
]
