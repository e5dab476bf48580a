from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

"""Row level models for the Invoice Detail Report parser.

RawRow は 1 物理行をトークン化しただけのもの (意味付けなし)。
ClassifiedRow は RowKind を付与したもの。分類は内容のみで決まり、ファイル内の位置には依存しない。
"""

__all__ = [
    "RawRow",
    "RowKind",
    "ClassifiedRow",
]


@dataclass(frozen=True)
class RawRow:
    """One tokenized physical line.

    Attributes:
        row_number: 1-based physical line (or worksheet row) number in the source file
        fields: ordered string fields, no semantic meaning yet
    """
    row_number: int
    fields: tuple[str, ...]

    def field(self, index: int) -> str:
        """Return the field at ``index`` or an empty string when the row is shorter."""
        if 0 <= index < len(self.fields):
            return self.fields[index]
        return ""


class RowKind(Enum):
    """Semantic type of a report row.

    HEADER_DETAIL は "Customer Name:" 等のラベルだけを持つ継続ヘッダ行 (Invoice # なし)。
    """
    INVOICE_START = "invoice_start"
    INVOICE_END = "invoice_end"
    LINE_ITEM = "line_item"
    LINE_ITEM_EMBEDDED = "line_item_embedded"
    HEADER_DETAIL = "header_detail"
    IGNORE = "ignore"


@dataclass(frozen=True)
class ClassifiedRow:
    row: RawRow
    kind: RowKind

    @property
    def row_number(self) -> int:
        return self.row.row_number

    @property
    def fields(self) -> tuple[str, ...]:
        return self.row.fields
