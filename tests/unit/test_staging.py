from __future__ import annotations

from datetime import date

from src.db.staging import StagingOrderSource


class ScriptedConn:
    """Returns one scripted result set per execute()."""

    def __init__(self, result_sets):
        self.result_sets = list(result_sets)
        self.executed: list[tuple] = []
        self._current: list = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def cursor(self, cursor_factory=None):
        return self

    def execute(self, sql, params=None):
        self.executed.append((sql, params))
        self._current = self.result_sets.pop(0) if self.result_sets else []

    def fetchall(self):
        return self._current


class OnePool:
    def __init__(self, conn):
        self.conn = conn
        self.returned = 0

    def getconn(self):
        return self.conn

    def putconn(self, conn):
        self.returned += 1


ORDER = dict(id=11, site_no=3, invoice_number=327900, order_date=date(2025, 1, 20), customer_code="1234",
             customer_name="JANE ROE", salesperson="MIKE", tax_amount=None, total_amount=102.5)
ITEM = dict(order_id=11, line_number=10, product_code="P225", description="225/65R17", quantity=2,
            unit_parts=50, unit_labor=None, unit_fet=0, total_cost=60, fallback_unit_cost=0, is_tire=1)


def test_page_maps_orders_and_items():
    conn = ScriptedConn([[ORDER], [ITEM]])
    pool = OnePool(conn)
    source = StagingOrderSource(pool, start_date=date(2025, 1, 1), end_date=date(2025, 12, 31))

    (order,) = source.page(0, 100)

    assert order.natural_key == "3-327900"
    assert order.tax_amount == 0.0
    (item,) = order.items
    assert item.quantity == 2.0
    assert item.unit_labor == 0.0
    assert item.is_tire is True
    sql, params = conn.executed[0]
    assert "order_date >= %s AND order_date <= %s" in sql
    assert params == [date(2025, 1, 1), date(2025, 12, 31), 100, 0]
    assert pool.returned == 1


def test_empty_page_skips_item_query():
    conn = ScriptedConn([[]])
    assert StagingOrderSource(OnePool(conn)).page(500, 100) == []
    assert len(conn.executed) == 1
    assert "WHERE" not in conn.executed[0][0]
