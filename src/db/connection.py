from __future__ import annotations

import os

from psycopg2.pool import ThreadedConnectionPool

from ..config.loader import DatabaseConfig

"""PostgreSQL connection settings resolution and pool creation.

接続情報の最終的な解決優先順位 (.env を最優先):
    1. `.env` で読み込まれた環境変数 (CLI 冒頭で強制上書き済み)
    2. 既にプロセスに存在していた環境変数 (上書きモードなので 1 と同列)
         - DATABASE_URL / PGDSN があれば DSN 全体をそのまま使用
         - 個別 PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
    3. config/import.yml の database セクション (不足分のフォールバック)
"""

__all__ = [
    "resolve_dsn",
    "create_pool",
]


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    dsn_env = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn_env:
        return dsn_env
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


def create_pool(db_cfg: DatabaseConfig, max_connections: int) -> ThreadedConnectionPool:
    """Open a thread safe pool sized for the sync worker count (+1 for the pager)."""
    return ThreadedConnectionPool(1, max(2, max_connections + 1), dsn=resolve_dsn(db_cfg))
