"""Root message persistence.

Two producers feed this table: the spoke listener reports roots as they are
sent, and the hub listener reports them as processed. Both write through the
same merge so either may arrive first; ``processed`` only ever turns on.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from bridge_ledger.db.arguments import fields_conform, is_key, normalize_batch, resolve_limit, resolve_order
from bridge_ledger.db.connection import Store
from bridge_ledger.db.errors import raise_read_error, raise_write_error
from bridge_ledger.db.merge import merge_upsert
from bridge_ledger.entities import RootMessage

logger = logging.getLogger(__name__)

_ROOT_MESSAGE_COLUMNS = (
    "id",
    "spoke_domain",
    "hub_domain",
    "root",
    "caller",
    "transaction_hash",
    "timestamp",
    "gas_price",
    "gas_limit",
    "block_number",
    "count",
)
_ROOT_MESSAGE_KINDS = {
    **{column: str for column in _ROOT_MESSAGE_COLUMNS},
    "timestamp": int,
    "block_number": int,
    "count": int,
    "processed": bool,
}


def _is_well_formed_root_message(message: RootMessage) -> bool:
    return is_key(message.id) and fields_conform(message, _ROOT_MESSAGE_KINDS)


def _row_to_root_message(row: sqlite3.Row) -> RootMessage:
    return RootMessage(
        **{column: row[column] for column in _ROOT_MESSAGE_COLUMNS},
        processed=bool(row["processed"]),
    )


def _save_root_messages(store: Store, messages: object, *, processed: bool, operation: str) -> int:
    items = normalize_batch(
        messages,
        entity_type=RootMessage,
        is_valid=_is_well_formed_root_message,
        operation=operation,
    )
    if not items:
        return 0
    try:
        with store.scope(write=True) as conn:
            for message in items:
                incoming: dict[str, Any] = {column: getattr(message, column) for column in _ROOT_MESSAGE_COLUMNS}
                incoming["processed"] = processed
                merge_upsert(
                    conn,
                    table="root_messages",
                    key_columns=("id",),
                    incoming=incoming,
                    monotone=("processed",),
                )
    except Exception as exc:
        raise_write_error(operation, exc, details=f"batch_size={len(items)}")
    logger.debug("%s: merged %d root messages", operation, len(items))
    return len(items)


def save_sent_root_messages(store: Store, messages: object) -> int:
    """Record roots sent by a spoke.

    The incoming ``processed`` value is ignored: a sent observation never
    marks a root processed, and never clears a processed root either.
    """
    return _save_root_messages(
        store,
        messages,
        processed=False,
        operation="root_messages.save_sent_root_messages",
    )


def save_processed_root_messages(store: Store, messages: object) -> int:
    """Record roots processed on the hub; always sets ``processed``."""
    return _save_root_messages(
        store,
        messages,
        processed=True,
        operation="root_messages.save_processed_root_messages",
    )


def get_root_message(store: Store, message_id: str | None) -> RootMessage | None:
    if not is_key(message_id):
        return None
    try:
        with store.scope() as conn:
            row = conn.execute("SELECT * FROM root_messages WHERE id = ?", (message_id,)).fetchone()
        return _row_to_root_message(row) if row else None
    except Exception as exc:
        raise_read_error("root_messages.get_root_message", exc, details=f"id={message_id!r}")


def get_root_messages(
    store: Store,
    processed: bool | None = None,
    limit: int | None = None,
    order: str | None = "ASC",
) -> list[RootMessage]:
    """Return root messages ordered by block number, then insertion.

    ``processed`` filters when it is a bool; ``None`` returns both states.
    """
    direction = resolve_order(order)
    params: list[Any] = []
    processed_sql = ""
    if isinstance(processed, bool):
        processed_sql = "WHERE processed = ?"
        params.append(int(processed))
    params.append(resolve_limit(store, limit))
    try:
        with store.scope() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM root_messages
                {processed_sql}
                ORDER BY block_number {direction}, seq {direction}
                LIMIT ?
                """,  # nosec B608
                tuple(params),
            ).fetchall()
        return [_row_to_root_message(row) for row in rows]
    except Exception as exc:
        raise_read_error("root_messages.get_root_messages", exc, details=f"processed={processed!r}")
