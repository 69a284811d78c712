"""Router and router balance ledger.

Balances reach the store through two paths:

- ``save_router_balances``: an authoritative external snapshot. Stored
  amounts are replaced, not adjusted, so replaying a snapshot is harmless.
- ``apply_liquidity_delta``: a signed adjustment from a liquidity
  added/removed event. A removal that would take the balance below zero
  follows ``Store.underflow_policy``.

The read side is the ``routers_with_balances`` view, grouped per router.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable, Mapping
from typing import Any

from bridge_ledger.db.arguments import fields_conform, is_key, normalize_batch
from bridge_ledger.db.connection import Store
from bridge_ledger.db.errors import (
    InvalidArgumentError,
    InvalidStateError,
    raise_read_error,
    raise_write_error,
)
from bridge_ledger.db.merge import fetch_row, merge_upsert
from bridge_ledger.entities import AssetBalance, Router, RouterBalance, parse_amount

logger = logging.getLogger(__name__)

_ROUTER_KINDS = {
    "is_active": bool,
    "owner": str,
    "recipient": str,
    "proposed_owner": str,
    "proposed_timestamp": int,
}
_ASSET_METADATA_KINDS = {
    "key": str,
    "id": str,
    "local_asset": str,
    "adopted_asset": str,
    "canonical_domain": str,
    "block_number": str,
}


def _is_valid_router(router: Router) -> bool:
    return is_key(router.address) and fields_conform(router, _ROUTER_KINDS)


def _is_valid_balance(asset: AssetBalance) -> bool:
    if not isinstance(asset, AssetBalance) or not is_key(asset.canonical_id) or not is_key(asset.domain):
        return False
    if not fields_conform(asset, _ASSET_METADATA_KINDS):
        return False
    try:
        return parse_amount(asset.balance, field_name="balance") >= 0
    except InvalidArgumentError:
        return False


def _is_valid_router_balance(entry: RouterBalance) -> bool:
    return is_key(entry.router) and isinstance(entry.assets, list) and all(
        _is_valid_balance(asset) for asset in entry.assets
    )


def _router_to_row(router: Router) -> dict[str, Any]:
    return {
        "address": router.address,
        "is_active": router.is_active,
        "owner": router.owner,
        "recipient": router.recipient,
        "proposed_owner": router.proposed_owner,
        "proposed_timestamp": router.proposed_timestamp,
    }


def _row_to_router(row: Mapping[str, Any]) -> Router:
    is_active = row["is_active"]
    return Router(
        address=row["address"],
        is_active=bool(is_active) if is_active is not None else None,
        owner=row["owner"],
        recipient=row["recipient"],
        proposed_owner=row["proposed_owner"],
        proposed_timestamp=row["proposed_timestamp"],
    )


# ============================================================================
# ROUTERS
# ============================================================================


def save_routers(store: Store, routers: object) -> int:
    """Merge router records; returns the number applied."""
    items = normalize_batch(
        routers,
        entity_type=Router,
        is_valid=_is_valid_router,
        operation="routers.save_routers",
    )
    if not items:
        return 0
    try:
        with store.scope(write=True) as conn:
            for router in items:
                merge_upsert(conn, table="routers", key_columns=("address",), incoming=_router_to_row(router))
    except Exception as exc:
        raise_write_error("routers.save_routers", exc, details=f"batch_size={len(items)}")
    return len(items)


def get_router(store: Store, address: str | None) -> Router | None:
    if not is_key(address):
        return None
    try:
        with store.scope() as conn:
            row = conn.execute("SELECT * FROM routers WHERE address = ?", (address,)).fetchone()
        return _row_to_router(row) if row else None
    except Exception as exc:
        raise_read_error("routers.get_router", exc, details=f"address={address!r}")


def accept_router_owner(store: Store, address: str, new_owner: str) -> bool:
    """Complete an ownership transfer.

    Sets ``owner`` and clears the pending proposal. Merge writes can never
    clear a field, so this is the one explicit-clear path for routers.

    Returns:
        True if the router exists and was updated.
    """
    if not is_key(address) or not is_key(new_owner):
        raise InvalidArgumentError(
            f"router address and new owner are required, got {address!r} and {new_owner!r}"
        )
    try:
        with store.scope(write=True) as conn:
            cursor = conn.execute(
                """
                UPDATE routers
                SET owner = ?, proposed_owner = NULL, proposed_timestamp = NULL
                WHERE address = ?
                """,
                (new_owner, address),
            )
            return cursor.rowcount > 0
    except Exception as exc:
        raise_write_error("routers.accept_router_owner", exc, details=f"address={address!r}")


# ============================================================================
# BALANCES
# ============================================================================


def save_router_balances(store: Store, balances: object) -> int:
    """Apply an authoritative balance snapshot.

    Each asset entry upserts its asset metadata and replaces the stored
    balance for ``(router, domain, canonical_id)``. Routers are created as
    needed and otherwise left untouched.

    Returns:
        Number of router entries applied.
    """
    items = normalize_batch(
        balances,
        entity_type=RouterBalance,
        is_valid=_is_valid_router_balance,
        operation="routers.save_router_balances",
    )
    if not items:
        return 0
    try:
        with store.scope(write=True) as conn:
            for entry in items:
                merge_upsert(conn, table="routers", key_columns=("address",), incoming={"address": entry.router})
                for asset in entry.assets:
                    merge_upsert(
                        conn,
                        table="assets",
                        key_columns=("canonical_id", "domain"),
                        incoming={
                            "canonical_id": asset.canonical_id,
                            "domain": asset.domain,
                            "key": asset.key,
                            "id": asset.id,
                            "local": asset.local_asset,
                            "adopted": asset.adopted_asset,
                            "canonical_domain": asset.canonical_domain,
                            "block_number": asset.block_number,
                        },
                    )
                    merge_upsert(
                        conn,
                        table="asset_balances",
                        key_columns=("router_address", "asset_domain", "asset_canonical_id"),
                        incoming={
                            "router_address": entry.router,
                            "asset_domain": asset.domain,
                            "asset_canonical_id": asset.canonical_id,
                            "balance": str(parse_amount(asset.balance, field_name="balance")),
                        },
                    )
    except Exception as exc:
        raise_write_error("routers.save_router_balances", exc, details=f"batch_size={len(items)}")
    logger.debug("Applied balance snapshot for %d routers", len(items))
    return len(items)


def rows_to_router_balances(rows: Iterable[Mapping[str, Any]]) -> list[RouterBalance]:
    """Group sorted ``routers_with_balances`` rows into one entry per router.

    Rows must already be ordered by router address; a router whose row has no
    balance columns yields an entry with no assets.
    """
    grouped: list[RouterBalance] = []
    for row in rows:
        if not grouped or grouped[-1].router != row["address"]:
            grouped.append(RouterBalance(router=row["address"]))
        if row["canonical_id"] is None:
            continue
        grouped[-1].assets.append(
            AssetBalance(
                canonical_id=row["canonical_id"],
                domain=row["domain"],
                balance=row["balance"],
                key=row["key"],
                id=row["id"],
                local_asset=row["local"],
                adopted_asset=row["adopted"],
                canonical_domain=row["canonical_domain"],
                block_number=row["block_number"],
            )
        )
    return grouped


def get_router_balances(store: Store) -> list[RouterBalance]:
    """Return every router with its balances.

    Sorted by router address, then domain, then canonical id.
    """
    try:
        with store.scope() as conn:
            rows = conn.execute(
                """
                SELECT * FROM routers_with_balances
                ORDER BY address ASC, domain ASC, canonical_id ASC
                """
            ).fetchall()
        return rows_to_router_balances(rows)
    except Exception as exc:
        raise_read_error("routers.get_router_balances", exc)


def _resolve_underflow(
    store: Store,
    *,
    router: str,
    domain: str,
    canonical_id: str,
    current: int,
    delta: int,
) -> int:
    updated = current + delta
    if updated >= 0:
        return updated
    if store.underflow_policy == "clamp":
        logger.warning(
            "Clamping balance underflow to 0 for router=%s domain=%s canonical_id=%s (balance=%d delta=%d)",
            router,
            domain,
            canonical_id,
            current,
            delta,
        )
        return 0
    raise InvalidStateError(
        f"balance for router={router} domain={domain} canonical_id={canonical_id} "
        f"would drop below zero ({current} + {delta})"
    )


def apply_liquidity_delta(
    store: Store,
    *,
    router: str,
    domain: str,
    canonical_id: str,
    delta: int | str,
) -> str:
    """Adjust one router balance by a signed ``delta`` and return the new amount.

    A router seen for the first time is created as active with a zero
    balance.

    Raises:
        InvalidArgumentError: Missing key or non-integer delta.
        InvalidStateError: The result would be negative under the ``fail``
            underflow policy.
    """
    if not (is_key(router) and is_key(domain) and is_key(canonical_id)):
        raise InvalidArgumentError(
            f"router, domain and canonical_id are required, got {router!r}, {domain!r}, {canonical_id!r}"
        )
    amount = parse_amount(delta, field_name="delta")
    try:
        with store.scope(write=True) as conn:
            if fetch_row(conn, table="routers", key={"address": router}) is None:
                merge_upsert(
                    conn,
                    table="routers",
                    key_columns=("address",),
                    incoming={"address": router, "is_active": True},
                )
            key = {"router_address": router, "asset_domain": domain, "asset_canonical_id": canonical_id}
            existing = fetch_row(conn, table="asset_balances", key=key)
            current = int(existing["balance"]) if existing else 0
            updated = _resolve_underflow(
                store,
                router=router,
                domain=domain,
                canonical_id=canonical_id,
                current=current,
                delta=amount,
            )
            merge_upsert(
                conn,
                table="asset_balances",
                key_columns=tuple(key),
                incoming={**key, "balance": str(updated)},
            )
    except Exception as exc:
        raise_write_error(
            "routers.apply_liquidity_delta",
            exc,
            details=f"router={router!r} domain={domain!r} canonical_id={canonical_id!r}",
        )
    return str(updated)


def _require_non_negative(amount: int | str) -> int:
    value = parse_amount(amount)
    if value < 0:
        raise InvalidArgumentError(f"liquidity amount must be non-negative, got {amount!r}")
    return value


def record_liquidity_added(store: Store, *, router: str, domain: str, canonical_id: str, amount: int | str) -> str:
    """Credit ``amount`` to a router balance."""
    return apply_liquidity_delta(
        store,
        router=router,
        domain=domain,
        canonical_id=canonical_id,
        delta=_require_non_negative(amount),
    )


def record_liquidity_removed(store: Store, *, router: str, domain: str, canonical_id: str, amount: int | str) -> str:
    """Debit ``amount`` from a router balance."""
    return apply_liquidity_delta(
        store,
        router=router,
        domain=domain,
        canonical_id=canonical_id,
        delta=-_require_non_negative(amount),
    )
