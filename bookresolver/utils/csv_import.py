"""CSV row parsing for catalog imports.

The catalog export has the columns
``id,title,master_mother_id,great_grandmother_id,misspelled,deleted_at``
(older exports spell the flag column ``mispelled``).  Each row is validated
independently; a bad row is reported and skipped, never fatal for the
whole file.
"""

from __future__ import annotations

import csv
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

_TRUE_VALUES = frozenset({"true", "1", "yes", "y", "t"})


class RowError(ValueError):
    """A single CSV row failed validation."""


def _parse_id(value: Any, column: str) -> int | None:
    text = str(value).strip() if value is not None else ""
    if not text:
        return None
    if not text.isdigit() or int(text) <= 0:
        raise RowError(f"Invalid {column} (expected positive integer): {value!r}")
    return int(text)


def _parse_date(value: Any) -> str | None:
    text = str(value).strip() if value is not None else ""
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise RowError(f"Invalid deleted_at date: {value!r}") from exc
    return parsed.isoformat()


def _parse_bool(value: Any) -> bool:
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_VALUES


def parse_book_row(row: dict[str, Any]) -> dict[str, Any]:
    """Validate one CSV row and return the column values to insert.

    ``id`` may be ``None`` (the store assigns one).  Raises
    :class:`RowError` when the row is unusable.
    """
    title = (row.get("title") or "").strip()
    if not title:
        raise RowError("Title is required and must be a non-empty string")

    flag = row.get("misspelled")
    if flag in (None, ""):
        flag = row.get("mispelled")

    return {
        "id": _parse_id(row.get("id"), "id"),
        "title": title,
        "master_mother_id": _parse_id(row.get("master_mother_id"), "master_mother_id"),
        "great_grandmother_id": _parse_id(row.get("great_grandmother_id"), "great_grandmother_id"),
        "misspelled": _parse_bool(flag),
        "deleted_at": _parse_date(row.get("deleted_at")),
    }


def read_book_rows(path: str | Path) -> tuple[list[dict[str, Any]], list[str]]:
    """Parse every row of a catalog CSV file.

    Returns ``(rows, errors)`` where *errors* holds one message per
    rejected row, numbered from 1 as in a spreadsheet (header excluded).
    """
    with open(path, newline="", encoding="utf-8-sig") as f:
        return parse_book_rows(csv.DictReader(f))


def parse_book_rows(records: Iterable[dict[str, Any]]) -> tuple[list[dict[str, Any]], list[str]]:
    rows: list[dict[str, Any]] = []
    errors: list[str] = []
    for index, record in enumerate(records, start=1):
        try:
            rows.append(parse_book_row(record))
        except RowError as exc:
            errors.append(f"row {index}: {exc}")
    return rows, errors
