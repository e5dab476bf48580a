from __future__ import annotations

from ..models.processing_result import ProcessingResult, SyncResult

"""Summary line rendering service.

Import runs:
SUMMARY files={total}/{total} success={s} failed={f} skipped={k} invoices={i}
line_items={l} failed_invoices={fi} elapsed_sec={e} throughput_ips={t}

Live sync runs:
SUMMARY sync processed={p} skipped={k} failed={f} pages={n} elapsed_sec={e}
"""

__all__ = [
    "format_metric",
    "render_summary_line",
    "render_sync_summary_line",
]


def format_metric(value: float) -> str:
    """Render a float without trailing noise (2.0 -> "2", tiny values without exponent)."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        # 指数表記を避ける
        return f"{value:.6f}".rstrip('0').rstrip('.')
    return str(round(value, 3))


def render_summary_line(total_files: int, result: ProcessingResult) -> str:
    """Render the SUMMARY line of a report import run.

    Args:
        total_files: Number of report files detected
        result: ProcessingResult containing aggregated metrics

    Examples:
        >>> from datetime import datetime, timezone
        >>> start = datetime(2025, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
        >>> end = datetime(2025, 1, 1, 10, 0, 2, tzinfo=timezone.utc)
        >>> result = ProcessingResult(
        ...     success_files=1, failed_files=0, skipped_files=0, total_invoices=10,
        ...     total_line_items=42, failed_invoices=0, skipped_rows=3, start_time=start,
        ...     end_time=end, elapsed_seconds=2.0, throughput_invoices_per_sec=5.0
        ... )
        >>> render_summary_line(1, result)  # doctest: +ELLIPSIS
        'SUMMARY files=1/1 success=1 failed=0 skipped=0 invoices=10 line_items=42 ...'
    """
    return (
        f"SUMMARY files={total_files}/{total_files} "
        f"success={result.success_files} "
        f"failed={result.failed_files} "
        f"skipped={result.skipped_files} "
        f"invoices={result.total_invoices} "
        f"line_items={result.total_line_items} "
        f"failed_invoices={result.failed_invoices} "
        f"elapsed_sec={format_metric(result.elapsed_seconds)} "
        f"throughput_ips={format_metric(result.throughput_invoices_per_sec)}"
    )


def render_sync_summary_line(result: SyncResult) -> str:
    return (
        f"SUMMARY sync processed={result.processed} "
        f"skipped={result.skipped} "
        f"failed={result.failed} "
        f"pages={result.pages} "
        f"elapsed_sec={format_metric(result.elapsed_seconds)}"
    )
