"""Dispatched message persistence.

Messages are keyed by leaf. The dispatch listener supplies the origin half
(index, root, message body); the processing listener flips ``processed`` and
may attach return data. ``processed`` is monotone.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from bridge_ledger.db.arguments import fields_conform, is_key, normalize_batch, resolve_limit, resolve_order
from bridge_ledger.db.connection import Store
from bridge_ledger.db.errors import raise_read_error, raise_write_error
from bridge_ledger.db.merge import merge_upsert
from bridge_ledger.entities import XMessage, XMessageDestination, XMessageOrigin

logger = logging.getLogger(__name__)

_MESSAGE_KINDS = {
    "origin_domain": str,
    "destination_domain": str,
    "transfer_id": str,
    "origin": XMessageOrigin,
    "destination": XMessageDestination,
}


def _is_well_formed_message(message: XMessage) -> bool:
    """Check a batch entry's shape down to its scalar fields."""
    if not is_key(message.leaf) or not fields_conform(message, _MESSAGE_KINDS):
        return False
    if message.origin is not None and not fields_conform(
        message.origin, {"index": int, "root": str, "message": str}
    ):
        return False
    return message.destination is None or fields_conform(
        message.destination, {"processed": bool, "return_data": str}
    )


def _message_to_row(message: XMessage) -> dict[str, Any]:
    row: dict[str, Any] = {
        "leaf": message.leaf,
        "origin_domain": message.origin_domain,
        "destination_domain": message.destination_domain,
        "transfer_id": message.transfer_id,
        "processed": bool(message.destination and message.destination.processed),
    }
    if message.origin is not None:
        row.update(
            {
                "origin_index": message.origin.index,
                "root": message.origin.root,
                "message": message.origin.message,
            }
        )
    if message.destination is not None:
        row["return_data"] = message.destination.return_data
    return row


def _row_to_message(row: sqlite3.Row) -> XMessage:
    origin = None
    if row["origin_index"] is not None or row["root"] is not None or row["message"] is not None:
        origin = XMessageOrigin(index=row["origin_index"], root=row["root"], message=row["message"])
    return XMessage(
        leaf=row["leaf"],
        origin_domain=row["origin_domain"],
        destination_domain=row["destination_domain"],
        transfer_id=row["transfer_id"],
        origin=origin,
        destination=XMessageDestination(processed=bool(row["processed"]), return_data=row["return_data"]),
    )


def save_messages(store: Store, messages: object) -> int:
    """Merge a batch of message observations; returns the number applied."""
    items = normalize_batch(
        messages,
        entity_type=XMessage,
        is_valid=_is_well_formed_message,
        operation="messages.save_messages",
    )
    if not items:
        return 0
    try:
        with store.scope(write=True) as conn:
            for message in items:
                merge_upsert(
                    conn,
                    table="messages",
                    key_columns=("leaf",),
                    incoming=_message_to_row(message),
                    monotone=("processed",),
                )
    except Exception as exc:
        raise_write_error("messages.save_messages", exc, details=f"batch_size={len(items)}")
    logger.debug("Merged %d messages", len(items))
    return len(items)


def get_message(store: Store, leaf: str | None) -> XMessage | None:
    if not is_key(leaf):
        return None
    try:
        with store.scope() as conn:
            row = conn.execute("SELECT * FROM messages WHERE leaf = ?", (leaf,)).fetchone()
        return _row_to_message(row) if row else None
    except Exception as exc:
        raise_read_error("messages.get_message", exc, details=f"leaf={leaf!r}")


def get_pending_messages(
    store: Store,
    origin_domain: str | None = None,
    limit: int | None = None,
    order: str | None = "ASC",
) -> list[XMessage]:
    """Return unprocessed messages ordered by origin index.

    Args:
        store: Ledger store.
        origin_domain: Restrict to messages dispatched from this domain; any
            unusable value means all domains.
        limit: Page size, clamped to the store bounds.
        order: ``ASC`` (default) or ``DESC`` on origin index.
    """
    direction = resolve_order(order)
    params: list[Any] = []
    domain_sql = ""
    if is_key(origin_domain):
        domain_sql = "AND origin_domain = ?"
        params.append(origin_domain)
    params.append(resolve_limit(store, limit))
    try:
        with store.scope() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM messages
                WHERE processed = 0 {domain_sql}
                ORDER BY origin_index {direction}, leaf {direction}
                LIMIT ?
                """,  # nosec B608
                tuple(params),
            ).fetchall()
        return [_row_to_message(row) for row in rows]
    except Exception as exc:
        raise_read_error("messages.get_pending_messages", exc, details=f"origin_domain={origin_domain!r}")
