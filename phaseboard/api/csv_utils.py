from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence


def csv_escape(value: str) -> str:
    if any(ch in value for ch in [",", "\"", "\n", "\r"]):
        return '"' + value.replace('"', '""') + '"'
    return value


def csv_cell(value: Any) -> str:
    return "" if value is None else str(value)


def csv_text_from_rows(columns: Sequence[str], rows: Iterable[Mapping[str, Any]]) -> str:
    lines = [",".join(csv_escape(column) for column in columns)]
    for row in rows:
        lines.append(",".join(csv_escape(csv_cell(row.get(column))) for column in columns))
    return "\n".join(lines) + "\n"
