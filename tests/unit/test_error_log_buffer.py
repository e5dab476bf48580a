from __future__ import annotations

import json
import threading
from pathlib import Path

from src.logging.error_log import ErrorLogBuffer, ErrorRecord

KEYS = {"timestamp", "source", "row", "invoice", "error_type", "message"}


def _rec(row: int, error_type: str = "ORPHAN_LINE_ITEM") -> ErrorRecord:
    return ErrorRecord.create("report.csv", row, error_type, f"row {row}", invoice="3-1")


def test_error_log_buffer_flush(temp_workdir: Path):
    buf = ErrorLogBuffer()
    buf.append(_rec(1))
    buf.append(_rec(2, "HEADER_EXTRACTION_FAILED"))
    path = buf.flush()
    assert path.exists()
    assert path.parent == Path("logs")
    assert path.name.startswith("errors-")
    # ファイル内容検証
    lines = path.read_text(encoding="utf-8").strip().splitlines()
    assert len(lines) == 2
    for raw in lines:
        assert set(json.loads(raw).keys()) == KEYS
    # flush 後バッファクリア
    assert len(buf) == 0


def test_error_log_buffer_multiple_flushes(temp_workdir: Path):
    buf = ErrorLogBuffer()
    buf.append(_rec(1))
    path = buf.flush()
    size1 = path.stat().st_size
    buf.append(_rec(2))
    path2 = buf.flush()
    assert path == path2
    assert path2.stat().st_size > size1


def test_flush_without_records_creates_no_file(tmp_path: Path):
    buf = ErrorLogBuffer(logs_dir=tmp_path / "logs")
    assert buf.flush() is None
    assert not (tmp_path / "logs").exists()


def test_append_from_threads(tmp_path: Path):
    buf = ErrorLogBuffer(logs_dir=tmp_path)

    def worker(base: int) -> None:
        for i in range(50):
            buf.append(_rec(base + i, "SYNC_RECORD_ERROR"))

    threads = [threading.Thread(target=worker, args=(n * 100,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert buf.total_appended == 200
    path = buf.flush()
    assert len(path.read_text(encoding="utf-8").splitlines()) == 200
