from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Any, Protocol

from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from ..models.upstream import UpstreamOrder, UpstreamOrderItem

"""Live sync upstream source: staging tables pushed by the point-of-sale sync client.

ページングは (order_date DESC, site_no, invoice_number) の決定的順序で OFFSET / LIMIT。
"""

__all__ = [
    "OrderSource",
    "StagingOrderSource",
]


class OrderSource(Protocol):
    def page(self, offset: int, limit: int) -> list[UpstreamOrder]: ...


def _f(value: Any) -> float:
    return float(value) if value is not None else 0.0


class StagingOrderSource:
    """Pages tm_sales_orders with their tm_sales_order_items."""

    def __init__(
        self,
        pool: ThreadedConnectionPool,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> None:
        self._pool = pool
        self.start_date = start_date
        self.end_date = end_date

    def _order_filter(self) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if self.start_date is not None:
            clauses.append("order_date >= %s")
            params.append(self.start_date)
        if self.end_date is not None:
            clauses.append("order_date <= %s")
            params.append(self.end_date)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def page(self, offset: int, limit: int) -> list[UpstreamOrder]:
        where, params = self._order_filter()
        conn = self._pool.getconn()
        try:
            with conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(
                        f"SELECT * FROM tm_sales_orders {where} "
                        "ORDER BY order_date DESC NULLS LAST, site_no, invoice_number "
                        "LIMIT %s OFFSET %s",
                        params + [limit, offset],
                    )
                    orders = cur.fetchall()
                    if not orders:
                        return []
                    cur.execute(
                        "SELECT * FROM tm_sales_order_items WHERE order_id = ANY(%s) "
                        "ORDER BY order_id, line_number",
                        ([o["id"] for o in orders],),
                    )
                    item_rows = cur.fetchall()
        finally:
            self._pool.putconn(conn)

        items_by_order: dict[int, list[UpstreamOrderItem]] = defaultdict(list)
        for r in item_rows:
            items_by_order[r["order_id"]].append(
                UpstreamOrderItem(
                    line_number=r["line_number"],
                    product_code=r["product_code"],
                    description=r["description"],
                    quantity=_f(r["quantity"]),
                    unit_parts=_f(r["unit_parts"]),
                    unit_labor=_f(r["unit_labor"]),
                    unit_fet=_f(r["unit_fet"]),
                    total_cost=_f(r["total_cost"]),
                    fallback_unit_cost=_f(r["fallback_unit_cost"]),
                    is_tire=bool(r["is_tire"]),
                )
            )
        return [
            UpstreamOrder(
                site_no=str(o["site_no"]),
                invoice_number=str(o["invoice_number"]),
                order_date=o["order_date"],
                customer_code=o["customer_code"],
                customer_name=o["customer_name"],
                salesperson=o["salesperson"],
                tax_amount=_f(o["tax_amount"]),
                total_amount=_f(o["total_amount"]),
                items=tuple(items_by_order.get(o["id"], [])),
            )
            for o in orders
        ]
