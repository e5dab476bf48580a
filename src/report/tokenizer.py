from __future__ import annotations

"""Line tokenizer for the comma delimited Invoice Detail Report export.

A double quote toggles the "inside quoted field" state; a delimiter inside quotes is part
of the field. Quote characters themselves are not part of the value and a doubled quote is
not an escape (two toggles). Malformed quoting never raises: an unterminated quote simply
runs to the end of the line.
"""

__all__ = [
    "DELIMITER",
    "QUOTE",
    "tokenize_line",
]

DELIMITER = ","
QUOTE = '"'


def tokenize_line(line: str, delimiter: str = DELIMITER) -> list[str]:
    """Split one physical line into ordered string fields.

    >>> tokenize_line('"Invoice #","3-327551"')
    ['Invoice #', '3-327551']
    >>> tokenize_line('A,"B, C",,D')
    ['A', 'B, C', '', 'D']
    """
    line = line.rstrip("\r\n")
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    for ch in line:
        if ch == QUOTE:
            in_quotes = not in_quotes
        elif ch == delimiter and not in_quotes:
            fields.append("".join(current))
            current = []
        else:
            current.append(ch)
    fields.append("".join(current))
    return fields
