"""Transfer reconciliation repository.

A transfer is written by two independent producers: the origin-side listener
(xcall data) and the destination-side listener (execute/reconcile data). Each
write carries the transfer id, whatever ``xparams`` the producer knows and one
side. Rows are merged column by column, so neither side can erase the other
and the observation flags never revert.

Status is never stored: reads derive it with ``XTransfer.status`` and filters
call the same projection through the ``transfer_status`` SQL function.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from bridge_ledger.db.arguments import (
    fields_conform,
    is_key,
    normalize_batch,
    resolve_limit,
    resolve_offset,
    resolve_order,
)
from bridge_ledger.db.connection import Store
from bridge_ledger.db.errors import raise_read_error, raise_write_error
from bridge_ledger.db.merge import merge_upsert
from bridge_ledger.entities import (
    ChainCall,
    XParams,
    XTransfer,
    XTransferDestination,
    XTransferOrigin,
)
from bridge_ledger.status import XTransferStatus, parse_transfer_status

logger = logging.getLogger(__name__)

_MONOTONE_COLUMNS = ("origin_observed", "destination_observed")
_CALL_FIELDS = (
    "caller",
    "transaction_hash",
    "timestamp",
    "block_number",
    "gas_price",
    "gas_limit",
    "tx_origin",
)


def _call_columns(prefix: str) -> tuple[str, ...]:
    return tuple(f"{prefix}_{name}" for name in _CALL_FIELDS)


def _present_sql(prefix: str) -> str:
    return "(" + " OR ".join(f"{column} IS NOT NULL" for column in _call_columns(prefix)) + ")"


STATUS_SQL = (
    "transfer_status(origin_observed, destination_observed, "
    f"{_present_sql('reconcile')}, {_present_sql('execute')}, routers)"
)

_CALL_KINDS = {
    "caller": str,
    "transaction_hash": str,
    "timestamp": int,
    "block_number": int,
    "gas_price": str,
    "gas_limit": str,
    "tx_origin": str,
}
_XPARAMS_KINDS = {
    "origin_domain": str,
    "destination_domain": str,
    "canonical_domain": str,
    "to": str,
    "delegate": str,
    "receive_local": bool,
    "call_data": str,
    "slippage": str,
    "origin_sender": str,
    "bridged_amt": str,
    "normalized_in": str,
    "nonce": int,
    "canonical_id": str,
}
_ORIGIN_KINDS = {"chain_id": int, "message_hash": str, "asset": str, "amount": str, "xcall": ChainCall}
_DESTINATION_KINDS = {
    "chain_id": int,
    "status": str,
    "routers": list,
    "asset": str,
    "amount": str,
    "execute": ChainCall,
    "reconcile": ChainCall,
}


# ============================================================================
# VALIDATION
# ============================================================================


def _is_well_formed_call(call: ChainCall | None) -> bool:
    return call is None or fields_conform(call, _CALL_KINDS)


def _is_well_formed_transfer(transfer: XTransfer) -> bool:
    """Check a batch entry's shape down to its scalar fields."""
    if not is_key(transfer.transfer_id):
        return False
    if not fields_conform(
        transfer,
        {"xparams": XParams, "origin": XTransferOrigin, "destination": XTransferDestination},
    ):
        return False
    if transfer.xparams is not None and not fields_conform(transfer.xparams, _XPARAMS_KINDS):
        return False
    origin = transfer.origin
    if origin is not None and not (fields_conform(origin, _ORIGIN_KINDS) and _is_well_formed_call(origin.xcall)):
        return False
    destination = transfer.destination
    if destination is None:
        return True
    return (
        fields_conform(destination, _DESTINATION_KINDS)
        and all(isinstance(router, str) for router in destination.routers or ())
        and _is_well_formed_call(destination.execute)
        and _is_well_formed_call(destination.reconcile)
    )


# ============================================================================
# ROW MAPPING
# ============================================================================


def _call_to_columns(prefix: str, call: ChainCall | None) -> dict[str, Any]:
    if call is None:
        return {}
    return {f"{prefix}_{name}": getattr(call, name) for name in _CALL_FIELDS}


def _columns_to_call(prefix: str, row: sqlite3.Row) -> ChainCall | None:
    values = {name: row[f"{prefix}_{name}"] for name in _CALL_FIELDS}
    if all(value is None for value in values.values()):
        return None
    return ChainCall(**values)


def _transfer_to_row(transfer: XTransfer) -> dict[str, Any]:
    """Flatten a partial transfer into the columns it actually observed."""
    row: dict[str, Any] = {
        "transfer_id": transfer.transfer_id,
        "origin_observed": transfer.origin is not None,
        "destination_observed": transfer.destination is not None,
    }

    xparams = transfer.xparams
    if xparams is not None:
        row.update(
            {
                "origin_domain": xparams.origin_domain,
                "destination_domain": xparams.destination_domain,
                "canonical_domain": xparams.canonical_domain,
                "to_address": xparams.to,
                "delegate": xparams.delegate,
                "receive_local": xparams.receive_local,
                "call_data": xparams.call_data,
                "slippage": xparams.slippage,
                "origin_sender": xparams.origin_sender,
                "bridged_amt": xparams.bridged_amt,
                "normalized_in": xparams.normalized_in,
                "nonce": xparams.nonce,
                "canonical_id": xparams.canonical_id,
            }
        )

    origin = transfer.origin
    if origin is not None:
        row.update(
            {
                "origin_chain": origin.chain_id,
                "origin_message_hash": origin.message_hash,
                "origin_asset": origin.asset,
                "origin_amount": origin.amount,
            }
        )
        row.update(_call_to_columns("xcall", origin.xcall))

    destination = transfer.destination
    if destination is not None:
        status = destination.status
        row.update(
            {
                "destination_chain": destination.chain_id,
                "status": status.value if isinstance(status, XTransferStatus) else status,
                "routers": json.dumps(destination.routers) if destination.routers is not None else None,
                "destination_asset": destination.asset,
                "destination_amount": destination.amount,
            }
        )
        row.update(_call_to_columns("execute", destination.execute))
        row.update(_call_to_columns("reconcile", destination.reconcile))

    return row


def _row_to_transfer(row: sqlite3.Row) -> XTransfer:
    xparams = XParams(
        origin_domain=row["origin_domain"],
        destination_domain=row["destination_domain"],
        canonical_domain=row["canonical_domain"],
        to=row["to_address"],
        delegate=row["delegate"],
        receive_local=bool(row["receive_local"]),
        call_data=row["call_data"],
        slippage=row["slippage"],
        origin_sender=row["origin_sender"],
        bridged_amt=row["bridged_amt"],
        normalized_in=row["normalized_in"],
        nonce=row["nonce"],
        canonical_id=row["canonical_id"],
    )

    origin = None
    if row["origin_observed"]:
        origin = XTransferOrigin(
            chain_id=row["origin_chain"],
            message_hash=row["origin_message_hash"],
            asset=row["origin_asset"],
            amount=row["origin_amount"],
            xcall=_columns_to_call("xcall", row),
        )

    destination = None
    if row["destination_observed"]:
        raw_status = row["status"]
        destination = XTransferDestination(
            chain_id=row["destination_chain"],
            status=parse_transfer_status(raw_status) or raw_status,
            routers=json.loads(row["routers"]) if row["routers"] is not None else None,
            asset=row["destination_asset"],
            amount=row["destination_amount"],
            execute=_columns_to_call("execute", row),
            reconcile=_columns_to_call("reconcile", row),
        )

    return XTransfer(
        transfer_id=row["transfer_id"],
        xparams=xparams,
        origin=origin,
        destination=destination,
    )


# ============================================================================
# WRITES
# ============================================================================


def save_transfers(store: Store, transfers: object) -> int:
    """Merge a batch of partial transfers in one transaction.

    Returns:
        Number of transfers applied; 0 when the batch was empty or dropped as
        malformed.
    """
    items = normalize_batch(
        transfers,
        entity_type=XTransfer,
        is_valid=_is_well_formed_transfer,
        operation="transfers.save_transfers",
    )
    if not items:
        return 0
    try:
        with store.scope(write=True) as conn:
            for transfer in items:
                merge_upsert(
                    conn,
                    table="transfers",
                    key_columns=("transfer_id",),
                    incoming=_transfer_to_row(transfer),
                    monotone=_MONOTONE_COLUMNS,
                )
    except Exception as exc:
        raise_write_error("transfers.save_transfers", exc, details=f"batch_size={len(items)}")
    logger.debug("Merged %d transfers", len(items))
    return len(items)


# ============================================================================
# READS
# ============================================================================


def get_transfer_by_transfer_id(store: Store, transfer_id: str | None) -> XTransfer | None:
    """Return the merged transfer, or None when unknown or the id is unusable."""
    if not is_key(transfer_id):
        return None
    try:
        with store.scope() as conn:
            row = conn.execute(
                "SELECT * FROM transfers WHERE transfer_id = ?",
                (transfer_id,),
            ).fetchone()
        return _row_to_transfer(row) if row else None
    except Exception as exc:
        raise_read_error("transfers.get_transfer_by_transfer_id", exc, details=f"transfer_id={transfer_id!r}")


def get_transfers_by_status(
    store: Store,
    status: XTransferStatus | str | None,
    limit: int | None = None,
    offset: int | None = 0,
    order: str | None = "ASC",
) -> list[XTransfer]:
    """Return one page of transfers whose derived status equals ``status``.

    Pages sort by nonce then transfer id, both in ``order``. An unset or
    unknown status yields an empty page.
    """
    wanted = parse_transfer_status(status)
    if wanted is None:
        return []
    direction = resolve_order(order)
    try:
        with store.scope() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM transfers
                WHERE {STATUS_SQL} = ?
                ORDER BY nonce {direction}, transfer_id {direction}
                LIMIT ? OFFSET ?
                """,  # nosec B608
                (wanted.value, resolve_limit(store, limit), resolve_offset(offset)),
            ).fetchall()
        return [_row_to_transfer(row) for row in rows]
    except Exception as exc:
        raise_read_error("transfers.get_transfers_by_status", exc, details=f"status={wanted.value!r}")


def _pending_transfer_ids(
    store: Store,
    *,
    operation: str,
    domain_column: str,
    observed_column: str,
    missing_column: str,
    domain: str | None,
    limit: int | None,
    order: str | None,
) -> list[str]:
    if not is_key(domain):
        return []
    direction = resolve_order(order)
    try:
        with store.scope() as conn:
            rows = conn.execute(
                f"""
                SELECT transfer_id FROM transfers
                WHERE {domain_column} = ?
                  AND {observed_column} = 1
                  AND {missing_column} = 0
                ORDER BY nonce {direction}, transfer_id {direction}
                LIMIT ?
                """,  # nosec B608
                (domain, resolve_limit(store, limit)),
            ).fetchall()
        return [str(row["transfer_id"]) for row in rows]
    except Exception as exc:
        raise_read_error(operation, exc, details=f"domain={domain!r}")


def get_transfers_with_origin_pending(
    store: Store,
    domain: str | None,
    limit: int | None = None,
    order: str | None = "ASC",
) -> list[str]:
    """Ids of transfers from origin ``domain`` seen on the destination only.

    These await an origin-side backfill.
    """
    return _pending_transfer_ids(
        store,
        operation="transfers.get_transfers_with_origin_pending",
        domain_column="origin_domain",
        observed_column="destination_observed",
        missing_column="origin_observed",
        domain=domain,
        limit=limit,
        order=order,
    )


def get_transfers_with_destination_pending(
    store: Store,
    domain: str | None,
    limit: int | None = None,
    order: str | None = "ASC",
) -> list[str]:
    """Ids of transfers bound for ``domain`` seen on the origin only."""
    return _pending_transfer_ids(
        store,
        operation="transfers.get_transfers_with_destination_pending",
        domain_column="destination_domain",
        observed_column="origin_observed",
        missing_column="destination_observed",
        domain=domain,
        limit=limit,
        order=order,
    )
