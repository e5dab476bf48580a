from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2.extras import execute_values

"""DB batch insert / upsert helpers.

psycopg2.extras.execute_values を用いたバッチ INSERT。conflict_columns を渡すと
INSERT ... ON CONFLICT (...) DO UPDATE SET ... の upsert になる (line item の置換で使用)。
"""

__all__ = [
    "BatchInsertError",
    "BatchMetrics",
    "InsertResult",
    "batch_insert",
]


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Metrics data for a single batch insert operation."""
    batch_size: int  # Number of rows in this batch
    elapsed_seconds: float  # Time spent on execute_values call
    start_time: float  # Start timestamp (time.time())
    end_time: float  # End timestamp (time.time())


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    returned_values: list[tuple[Any, ...]] | None = None


def _build_sql(
    table: str,
    columns: Sequence[str],
    conflict_columns: Sequence[str] | None,
    update_columns: Sequence[str] | None,
    returning: bool,
) -> str:
    cols_sql = ",".join(f'"{c}"' for c in columns)
    sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s"
    if conflict_columns:
        target = ",".join(f'"{c}"' for c in conflict_columns)
        updates = [c for c in (update_columns or columns) if c not in conflict_columns]
        if updates:
            assignments = ",".join(f'"{c}" = EXCLUDED."{c}"' for c in updates)
            sql += f" ON CONFLICT ({target}) DO UPDATE SET {assignments}"
        else:
            sql += f" ON CONFLICT ({target}) DO NOTHING"
    if returning:
        sql += " RETURNING *"
    return sql


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    returning: bool = False,
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
    conflict_columns: Sequence[str] | None = None,
    update_columns: Sequence[str] | None = None,
) -> InsertResult:
    """Perform batched INSERT (or upsert) using psycopg2.extras.execute_values.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: 対象テーブル名 (サニタイズ済み想定)
    columns: 挿入列
    rows: 行シーケンス
    returning: True の場合 RETURNING * を付与
    page_size: execute_values の page_size (性能調整)
    metrics_callback: Optional callback receiving BatchMetrics for timing instrumentation.
        Not invoked when ``rows`` is empty (the function returns early).
    conflict_columns: upsert の衝突判定列 (例: ("invoice_id", "line_number"))
    update_columns: 衝突時に更新する列 (省略時は conflict_columns 以外の全列)
    """
    rows_list = list(rows)
    if not rows_list:
        return InsertResult(inserted_rows=0, returned_values=[] if returning else None)

    sql = _build_sql(table, columns, conflict_columns, update_columns, returning)

    returned: list[tuple[Any, ...]] | None = None
    start_time = time.time()
    try:
        # fetch=True は全ページ分の RETURNING 行を集約して返す
        fetched = execute_values(cursor, sql, rows_list, page_size=page_size, fetch=returning)
        if returning:
            returned = list(fetched or [])
    except Exception as e:
        raise BatchInsertError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics = BatchMetrics(
                batch_size=len(rows_list),
                elapsed_seconds=end_time - start_time,
                start_time=start_time,
                end_time=end_time,
            )
            metrics_callback(metrics)

    return InsertResult(inserted_rows=len(rows_list), returned_values=returned)
