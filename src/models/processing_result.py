from __future__ import annotations

import statistics
from dataclasses import dataclass
from datetime import datetime

"""Processing result models for the report import and live sync runs.

This module defines the models for aggregating processing results and metrics that are
rendered into the SUMMARY output line.
"""

__all__ = [
    "FileStat",
    "ProcessingResult",
    "SyncResult",
    "TimingStatsAccumulator",
]


@dataclass(frozen=True)
class FileStat:
    """Per-file processing statistics (internal helper for ProcessingResult).

    Includes per-invoice reconcile timing statistics for performance analysis.
    """
    file_name: str  # ファイル名
    status: str  # success/failed/skipped
    invoices: int  # 取込成功 invoice 数
    line_items: int  # 取込成功 line item 数
    failed_invoices: int  # 失敗 invoice 数
    elapsed_seconds: float  # ファイル処理時間
    batch_id: int | None = None
    skipped_rows: int = 0  # Ignore 分類行数
    duplicate_invoices: tuple[str, ...] = ()
    total_invoices_timed: int = 0
    avg_invoice_seconds: float = 0.0
    p95_invoice_seconds: float = 0.0


@dataclass(frozen=True)
class ProcessingResult:
    """Aggregated results of one report import run (SUMMARY line source)."""
    success_files: int  # 成功ファイル数
    failed_files: int  # 失敗ファイル数
    skipped_files: int  # 取込済みのためスキップ
    total_invoices: int  # 取込 invoice 合計
    total_line_items: int  # 取込 line item 合計
    failed_invoices: int  # 失敗 invoice 合計
    skipped_rows: int  # Ignore 行合計
    start_time: datetime  # 全体開始
    end_time: datetime  # 全体終了
    elapsed_seconds: float  # end - start
    throughput_invoices_per_sec: float  # total_invoices / elapsed
    file_stats: list[FileStat] | None = None  # ファイル詳細

    @property
    def total_files(self) -> int:
        return self.success_files + self.failed_files + self.skipped_files

    @property
    def has_failures(self) -> bool:
        return self.failed_files > 0 or self.failed_invoices > 0


@dataclass(frozen=True)
class SyncResult:
    """Aggregated results of one live sync run."""
    processed: int  # 同期 (insert/update) した order 数
    skipped: int  # 既存かつ正常のため skip
    failed: int  # order 単位の失敗
    pages: int  # 取得ページ数 (空ページ除く)
    fetch_retries: int  # ページ取得失敗 → 再試行回数
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    batch_id: int | None = None

    @property
    def has_failures(self) -> bool:
        return self.failed > 0


class TimingStatsAccumulator:
    """Helper class to accumulate timing statistics for FileStat.

    Collects individual timing measurements and calculates summary statistics.
    """

    def __init__(self) -> None:
        self.samples: list[float] = []

    def add(self, elapsed_seconds: float) -> None:
        self.samples.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Calculate statistics.

        Returns:
            tuple: (count, avg_seconds, p95_seconds)
        """
        if not self.samples:
            return (0, 0.0, 0.0)

        count = len(self.samples)
        avg_seconds = statistics.mean(self.samples)

        if count == 1:
            p95_seconds = self.samples[0]
        else:
            p95_seconds = statistics.quantiles(
                self.samples, n=20, method='inclusive'
            )[18]  # 95th percentile (19th out of 20 quantiles, 0-indexed)

        return (count, avg_seconds, p95_seconds)
