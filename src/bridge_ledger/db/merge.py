"""Merge-upsert primitive shared by every repository write path.

Producers observe entities partially and out of order, so a write never
replaces a stored row wholesale. Instead:

1. Every non-null incoming field overwrites the stored value.
2. Every null/omitted incoming field keeps the stored value.
3. Monotone fields (observation flags, ``processed``) are OR-combined and can
   therefore only move from false to true.

``merge_record`` is the pure rule; ``merge_upsert`` applies it to one row
inside the caller's transaction. Applying the same partial twice yields the
same stored row as applying it once.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Collection, Mapping, Sequence
from typing import Any


def merge_record(
    existing: Mapping[str, Any] | None,
    incoming: Mapping[str, Any],
    *,
    monotone: Collection[str] = (),
) -> dict[str, Any]:
    """Merge ``incoming`` over ``existing`` and return the row to persist.

    Total for any mapping input; never raises.
    """
    merged: dict[str, Any] = dict(existing or {})
    for column, value in incoming.items():
        if column in monotone:
            merged[column] = bool(merged.get(column)) or bool(value)
        elif value is not None:
            merged[column] = value
        else:
            merged.setdefault(column, None)
    for column in monotone:
        merged[column] = bool(merged.get(column))
    return merged


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def fetch_row(
    connection: sqlite3.Connection,
    *,
    table: str,
    key: Mapping[str, Any],
) -> dict[str, Any] | None:
    """Return the stored row for ``key`` as a dict, or None."""
    where = " AND ".join(f"{_quote(column)} = ?" for column in key)
    row = connection.execute(
        f"SELECT * FROM {_quote(table)} WHERE {where}",  # nosec B608
        tuple(key.values()),
    ).fetchone()
    return dict(row) if row is not None else None


def merge_upsert(
    connection: sqlite3.Connection,
    *,
    table: str,
    key_columns: Sequence[str],
    incoming: Mapping[str, Any],
    monotone: Collection[str] = (),
    exclude: Collection[str] = ("seq",),
) -> dict[str, Any]:
    """Merge ``incoming`` into the stored row sharing its key and persist it.

    Uses ``INSERT ... ON CONFLICT DO UPDATE`` so an existing row keeps its
    rowid (insertion order stays stable for readers that sort on it).

    Args:
        connection: Connection already inside a write transaction.
        table: Target table.
        key_columns: Columns of the table's unique key; all must be present in
            ``incoming`` with non-null values.
        incoming: Partial row.
        monotone: Columns combined with logical OR.
        exclude: Stored columns never written back (surrogate keys).

    Returns:
        The merged row as persisted.
    """
    key = {column: incoming[column] for column in key_columns}
    existing = fetch_row(connection, table=table, key=key)
    merged = merge_record(existing, incoming, monotone=monotone)
    for column in exclude:
        merged.pop(column, None)

    columns = list(merged)
    column_sql = ", ".join(_quote(column) for column in columns)
    placeholders = ", ".join("?" for _ in columns)
    conflict_sql = ", ".join(_quote(column) for column in key_columns)
    updates = [column for column in columns if column not in key_columns]
    if updates:
        update_sql = ", ".join(f"{_quote(column)} = excluded.{_quote(column)}" for column in updates)
        action = f"DO UPDATE SET {update_sql}"
    else:
        action = "DO NOTHING"

    connection.execute(
        f"INSERT INTO {_quote(table)} ({column_sql}) VALUES ({placeholders}) "  # nosec B608
        f"ON CONFLICT({conflict_sql}) {action}",
        tuple(int(value) if isinstance(value, bool) else value for value in merged.values()),
    )
    return merged
