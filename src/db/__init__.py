"""Persistence layer: invoice store implementations, batch insert helper, staging source."""

from .store import DuplicateKeyError, InMemoryInvoiceStore, InvoiceStore, StoreError

__all__ = [
    "InvoiceStore",
    "InMemoryInvoiceStore",
    "StoreError",
    "DuplicateKeyError",
]
