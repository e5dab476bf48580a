from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from typing import Any

import pandas as pd

from ..models.row import RawRow
from .tokenizer import tokenize_line

"""Report file reader.

.csv / .txt: 1 物理行 = 1 行。Line Tokenizer で分割、空行はスキップ、行番号は物理行番号 (1-based)。
.xlsx: pandas (openpyxl) でヘッダなし生読みし、全セルを文字列化して同じ RawRow 形に揃える。
"""

__all__ = [
    "ReportReadError",
    "TEXT_SUFFIXES",
    "EXCEL_SUFFIXES",
    "SUPPORTED_SUFFIXES",
    "read_report_rows",
    "read_text_rows",
    "read_excel_rows",
]

TEXT_SUFFIXES = frozenset({".csv", ".txt"})
EXCEL_SUFFIXES = frozenset({".xlsx"})
SUPPORTED_SUFFIXES = TEXT_SUFFIXES | EXCEL_SUFFIXES


class ReportReadError(Exception):
    """Raised when a report file cannot be opened or decoded at all."""


def read_text_rows(path: Path) -> list[RawRow]:
    try:
        # BOM 許容、デコード不能バイトは置換
        text = path.read_text(encoding="utf-8-sig", errors="replace")
    except OSError as e:
        raise ReportReadError(f"cannot read {path.name}: {e}") from e
    rows: list[RawRow] = []
    # splitlines() は \x0b \x0c \x85 \u2028 等でも分割するので "\n" のみで区切る (\r は tokenizer が除去)
    for idx, line in enumerate(text.split("\n"), start=1):
        if not line.strip():
            continue
        rows.append(RawRow(row_number=idx, fields=tuple(tokenize_line(line))))
    return rows


def _cell_to_str(value: Any) -> str:
    if value is None or value is pd.NaT:
        return ""
    if isinstance(value, float):
        if pd.isna(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, (pd.Timestamp, datetime)):
        return f"{value.month}/{value.day}/{value.year}"
    if isinstance(value, date):
        return f"{value.month}/{value.day}/{value.year}"
    if pd.isna(value):
        return ""
    return str(value)


def read_excel_rows(path: Path, sheet_name: str | int | None = None) -> list[RawRow]:
    """Read one worksheet (default: the first) as string rows."""
    try:
        df = pd.read_excel(
            path,
            sheet_name=0 if sheet_name is None else sheet_name,
            header=None,
            dtype=object,
            engine="openpyxl",
        )
    except Exception as e:
        raise ReportReadError(f"cannot read {path.name}: {e}") from e
    rows: list[RawRow] = []
    for idx, raw in enumerate(df.itertuples(index=False, name=None), start=1):
        fields = [_cell_to_str(v) for v in raw]
        # 末尾の空セルは落とす (テキスト出力と同じ列数感覚にする)
        while fields and fields[-1] == "":
            fields.pop()
        if not any(f.strip() for f in fields):
            continue
        rows.append(RawRow(row_number=idx, fields=tuple(fields)))
    return rows


def read_report_rows(path: Path, sheet_name: str | int | None = None) -> list[RawRow]:
    """Read a report export into RawRows, dispatching on the file suffix."""
    suffix = path.suffix.lower()
    if suffix in TEXT_SUFFIXES:
        return read_text_rows(path)
    if suffix in EXCEL_SUFFIXES:
        return read_excel_rows(path, sheet_name=sheet_name)
    raise ReportReadError(f"unsupported report file type: {path.name}")
