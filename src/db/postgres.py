from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from importlib import resources
from typing import Any

import psycopg2
import psycopg2.errors
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from ..models.error_record import ErrorRecord
from ..models.import_batch import BatchStatus, ImportBatch
from ..models.invoice import InvoiceTotals, LineItem, ProductCategory
from ..models.records import CustomerRecord, InvoiceRecord, StoreRecord
from .batch_insert import BatchInsertError, batch_insert
from .store import SAFE_INVOICE_FIELDS, DuplicateKeyError, StoreError, store_display_name

"""PostgreSQL implementation of the invoice store.

1 呼び出し = 1 トランザクション (pool から接続取得 → with conn で COMMIT / ROLLBACK)。
同一キーへの同時 upsert は INSERT ... ON CONFLICT の原子性で直列化し、アプリ側ロックは持たない。
"""

__all__ = [
    "PostgresInvoiceStore",
]

logger = logging.getLogger(__name__)

# InvoiceRecord field -> invoices column (名前が異なるもののみ)
_INVOICE_COLUMN = {"margin_pct": "gross_profit_margin"}

_INVOICE_INSERT_FIELDS: tuple[str, ...] = ("natural_key", "site_code", "invoice_number") + SAFE_INVOICE_FIELDS

_LINE_ITEM_COLUMNS: tuple[str, ...] = (
    "invoice_id",
    "line_number",
    "product_code",
    "description",
    "adjustment",
    "quantity",
    "parts_cost",
    "labor_cost",
    "fet",
    "line_total",
    "cost",
    "unit_cost",
    "gross_profit",
    "gross_profit_margin",
    "category",
)


def _col(field_name: str) -> str:
    return _INVOICE_COLUMN.get(field_name, field_name)


def _f(value: Any) -> float:
    return float(value) if value is not None else 0.0


def _invoice_from_row(row: dict[str, Any]) -> InvoiceRecord:
    return InvoiceRecord(
        id=row["id"],
        natural_key=row["natural_key"],
        site_code=row["site_code"],
        invoice_number=row["invoice_number"],
        customer_id=row["customer_id"],
        store_id=row["store_id"],
        invoice_date=row["invoice_date"],
        salesperson=row["salesperson"],
        vehicle=row["vehicle"],
        mileage=row["mileage"],
        subtotal=_f(row["subtotal"]),
        tax_amount=_f(row["tax_amount"]),
        total_amount=_f(row["total_amount"]),
        parts_cost=_f(row["parts_cost"]),
        labor_cost=_f(row["labor_cost"]),
        fet_total=_f(row["fet_total"]),
        total_cost=_f(row["total_cost"]),
        gross_profit=_f(row["gross_profit"]),
        margin_pct=_f(row["gross_profit_margin"]),
        status=row["status"],
        import_batch_id=row["import_batch_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _line_item_from_row(row: dict[str, Any]) -> LineItem:
    return LineItem(
        line_number=row["line_number"],
        product_code=row["product_code"],
        description=row["description"],
        adjustment=row["adjustment"],
        quantity=_f(row["quantity"]),
        parts_cost=_f(row["parts_cost"]),
        labor_cost=_f(row["labor_cost"]),
        fet=_f(row["fet"]),
        line_total=_f(row["line_total"]),
        cost=_f(row["cost"]),
        unit_cost=_f(row["unit_cost"]),
        gross_profit=_f(row["gross_profit"]),
        margin_pct=_f(row["gross_profit_margin"]),
        category=ProductCategory(row["category"]),
    )


def _batch_from_row(row: dict[str, Any]) -> ImportBatch:
    return ImportBatch(
        id=row["id"],
        file_name=row["file_name"],
        original_path=row["original_path"],
        status=BatchStatus(row["status"]),
        total_records=row["total_records"],
        successful_records=row["successful_records"],
        failed_records=row["failed_records"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        error_message=row["error_message"],
    )


class PostgresInvoiceStore:
    """InvoiceStore backed by PostgreSQL through a ThreadedConnectionPool."""

    def __init__(self, pool: ThreadedConnectionPool) -> None:
        self._pool = pool

    @contextmanager
    def transaction(self) -> Iterator[RealDictCursor]:
        """One short transaction; psycopg2 errors are mapped to StoreError."""
        try:
            conn = self._pool.getconn()
        except psycopg2.Error as e:
            # PoolError (pool exhausted / closed) も StoreError として扱う
            raise StoreError(f"connection pool: {str(e).strip()}") from e
        try:
            with conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    yield cur
        except psycopg2.errors.UniqueViolation as e:
            raise DuplicateKeyError(str(e).strip()) from e
        except BatchInsertError as e:
            if isinstance(e.__cause__, psycopg2.errors.UniqueViolation):
                raise DuplicateKeyError(str(e).strip()) from e
            raise StoreError(str(e).strip()) from e
        except psycopg2.Error as e:
            raise StoreError(str(e).strip()) from e
        finally:
            self._pool.putconn(conn)

    def ensure_schema(self) -> None:
        ddl = resources.files("src.db").joinpath("schema.sql").read_text(encoding="utf-8")
        with self.transaction() as cur:
            cur.execute(ddl)
        logger.debug("schema ensured")

    def close(self) -> None:
        self._pool.closeall()

    # --- invoices -------------------------------------------------------
    def get_invoice(self, natural_key: str) -> InvoiceRecord | None:
        with self.transaction() as cur:
            cur.execute("SELECT * FROM invoices WHERE natural_key = %s", (natural_key,))
            row = cur.fetchone()
        return _invoice_from_row(row) if row else None

    def upsert_invoice(self, record: InvoiceRecord, batch_id: int | None) -> tuple[InvoiceRecord, bool]:
        insert_cols = [_col(f) for f in _INVOICE_INSERT_FIELDS] + ["import_batch_id"]
        values = [getattr(record, f) for f in _INVOICE_INSERT_FIELDS] + [batch_id]
        # import_batch_id / created_at は最初の書き込みのまま
        assignments = ", ".join(f"{_col(f)} = EXCLUDED.{_col(f)}" for f in SAFE_INVOICE_FIELDS)
        sql = (
            f"INSERT INTO invoices ({', '.join(insert_cols)}) "
            f"VALUES ({', '.join(['%s'] * len(insert_cols))}) "
            f"ON CONFLICT (natural_key) DO UPDATE SET {assignments}, updated_at = now() "
            "RETURNING *, (xmax = 0) AS inserted"
        )
        with self.transaction() as cur:
            cur.execute(sql, values)
            row = cur.fetchone()
        return _invoice_from_row(row), bool(row["inserted"])

    def replace_line_items(self, invoice_id: int, items: Sequence[LineItem]) -> int:
        rows = [
            (
                invoice_id,
                i.line_number,
                i.product_code,
                i.description,
                i.adjustment,
                i.quantity,
                i.parts_cost,
                i.labor_cost,
                i.fet,
                i.line_total,
                i.cost,
                i.unit_cost,
                i.gross_profit,
                i.margin_pct,
                (i.category or ProductCategory.OTHER).value,
            )
            for i in items
        ]
        with self.transaction() as cur:
            result = batch_insert(
                cur,
                table="invoice_line_items",
                columns=_LINE_ITEM_COLUMNS,
                rows=rows,
                conflict_columns=("invoice_id", "line_number"),
            )
            cur.execute(
                "DELETE FROM invoice_line_items WHERE invoice_id = %s AND line_number > %s",
                (invoice_id, len(rows)),
            )
        return result.inserted_rows

    def list_line_items(self, invoice_id: int) -> list[LineItem]:
        with self.transaction() as cur:
            cur.execute(
                "SELECT * FROM invoice_line_items WHERE invoice_id = %s ORDER BY line_number",
                (invoice_id,),
            )
            rows = cur.fetchall()
        return [_line_item_from_row(r) for r in rows]

    def update_invoice_totals(self, invoice_id: int, totals: InvoiceTotals) -> InvoiceRecord:
        with self.transaction() as cur:
            cur.execute(
                "UPDATE invoices SET subtotal = %s, total_amount = %s, parts_cost = %s, "
                "labor_cost = %s, fet_total = %s, total_cost = %s, gross_profit = %s, "
                "gross_profit_margin = %s, updated_at = now() WHERE id = %s RETURNING *",
                (
                    totals.subtotal,
                    totals.total_amount,
                    totals.parts_cost,
                    totals.labor_cost,
                    totals.fet_total,
                    totals.total_cost,
                    totals.gross_profit,
                    totals.margin_pct,
                    invoice_id,
                ),
            )
            row = cur.fetchone()
        if row is None:
            raise StoreError(f"invoice id={invoice_id} not found")
        return _invoice_from_row(row)

    def list_invoice_keys(self) -> list[str]:
        with self.transaction() as cur:
            cur.execute("SELECT natural_key FROM invoices ORDER BY natural_key")
            return [r["natural_key"] for r in cur.fetchall()]

    # --- customers / stores ---------------------------------------------
    def find_customer_by_code(self, customer_code: str) -> CustomerRecord | None:
        with self.transaction() as cur:
            cur.execute(
                "SELECT id, name, customer_code FROM customers WHERE customer_code = %s",
                (customer_code,),
            )
            row = cur.fetchone()
        return CustomerRecord(**row) if row else None

    def find_customer_by_name(self, name: str) -> CustomerRecord | None:
        with self.transaction() as cur:
            cur.execute("SELECT id, name, customer_code FROM customers WHERE name = %s", (name,))
            row = cur.fetchone()
        return CustomerRecord(**row) if row else None

    def create_customer(self, name: str, customer_code: str | None) -> CustomerRecord:
        with self.transaction() as cur:
            cur.execute(
                "INSERT INTO customers (name, customer_code) VALUES (%s, %s) "
                "RETURNING id, name, customer_code",
                (name, customer_code),
            )
            row = cur.fetchone()
        return CustomerRecord(**row)

    def upsert_store(self, site_code: str) -> StoreRecord:
        with self.transaction() as cur:
            # DO UPDATE (no-op) で既存行も RETURNING させる
            cur.execute(
                "INSERT INTO stores (code, name) VALUES (%s, %s) "
                "ON CONFLICT (code) DO UPDATE SET code = EXCLUDED.code RETURNING id, code, name",
                (site_code, store_display_name(site_code)),
            )
            row = cur.fetchone()
        return StoreRecord(**row)

    # --- batches --------------------------------------------------------
    def create_batch(self, file_name: str, original_path: str | None) -> ImportBatch:
        with self.transaction() as cur:
            cur.execute(
                "INSERT INTO import_batches (file_name, original_path, status, started_at) "
                "VALUES (%s, %s, %s, %s) RETURNING *",
                (file_name, original_path, BatchStatus.STARTED.value, datetime.now(UTC)),
            )
            row = cur.fetchone()
        return _batch_from_row(row)

    def get_batch(self, batch_id: int) -> ImportBatch | None:
        with self.transaction() as cur:
            cur.execute("SELECT * FROM import_batches WHERE id = %s", (batch_id,))
            row = cur.fetchone()
        return _batch_from_row(row) if row else None

    def find_batches(self, file_name: str) -> list[ImportBatch]:
        with self.transaction() as cur:
            cur.execute("SELECT * FROM import_batches WHERE file_name = %s ORDER BY id", (file_name,))
            rows = cur.fetchall()
        return [_batch_from_row(r) for r in rows]

    def save_batch(self, batch: ImportBatch) -> ImportBatch:
        with self.transaction() as cur:
            cur.execute(
                "UPDATE import_batches SET status = %s, total_records = %s, successful_records = %s, "
                "failed_records = %s, completed_at = %s, error_message = %s WHERE id = %s RETURNING *",
                (
                    batch.status.value,
                    batch.total_records,
                    batch.successful_records,
                    batch.failed_records,
                    batch.completed_at,
                    batch.error_message,
                    batch.id,
                ),
            )
            row = cur.fetchone()
        if row is None:
            raise StoreError(f"batch id={batch.id} not found")
        return _batch_from_row(row)

    def record_import_error(self, batch_id: int | None, record: ErrorRecord) -> None:
        with self.transaction() as cur:
            cur.execute(
                "INSERT INTO import_errors (batch_id, source, row_number, invoice_number, error_type, message) "
                "VALUES (%s, %s, %s, %s, %s, %s)",
                (batch_id, record.source, record.row, record.invoice, record.error_type, record.message),
            )

    def delete_invoices_for_batch(self, batch_id: int) -> int:
        with self.transaction() as cur:
            # line items は ON DELETE CASCADE
            cur.execute("DELETE FROM invoices WHERE import_batch_id = %s", (batch_id,))
            return cur.rowcount
