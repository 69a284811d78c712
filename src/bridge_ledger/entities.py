"""Typed entity records exchanged with the reconciliation store.

Every field except an entity's key is optional: producers hand the store
partial records, and ``None`` always means "not observed by this producer"
rather than "erase". Monetary amounts are decimal strings holding
arbitrary-precision integers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from bridge_ledger.db.errors import InvalidArgumentError
from bridge_ledger.status import XTransferStatus, derive_transfer_status

_AMOUNT_RE = re.compile(r"^-?\d+$")


def parse_amount(value: object, *, field_name: str = "amount") -> int:
    """Parse a decimal-string (or int) amount into a Python int.

    Floats and booleans are rejected so precision is never silently lost.
    """
    if isinstance(value, bool):
        raise InvalidArgumentError(f"{field_name} must be an integer amount, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _AMOUNT_RE.fullmatch(value.strip()):
        return int(value.strip())
    raise InvalidArgumentError(f"{field_name} must be a decimal integer string, got {value!r}")


def _opt_str(payload: Mapping[str, Any], key: str) -> str | None:
    value = payload.get(key)
    return str(value) if value is not None else None


def _opt_int(payload: Mapping[str, Any], key: str) -> int | None:
    value = payload.get(key)
    return int(value) if value is not None else None


def _opt_bool(payload: Mapping[str, Any], key: str) -> bool | None:
    value = payload.get(key)
    return bool(value) if value is not None else None


# ============================================================================
# TRANSFERS
# ============================================================================


@dataclass(slots=True)
class ChainCall:
    """On-chain call metadata shared by xcall, execute and reconcile events."""

    caller: str | None = None
    transaction_hash: str | None = None
    timestamp: int | None = None
    block_number: int | None = None
    gas_price: str | None = None
    gas_limit: str | None = None
    tx_origin: str | None = None


@dataclass(slots=True)
class XParams:
    """Origin-determined transfer parameters.

    Set once by whichever side is observed first and never erased by a later
    write that omits them. ``receive_local`` reads back as False when no write
    ever supplied it.
    """

    origin_domain: str | None = None
    destination_domain: str | None = None
    canonical_domain: str | None = None
    to: str | None = None
    delegate: str | None = None
    receive_local: bool | None = None
    call_data: str | None = None
    slippage: str | None = None
    origin_sender: str | None = None
    bridged_amt: str | None = None
    normalized_in: str | None = None
    nonce: int | None = None
    canonical_id: str | None = None


@dataclass(slots=True)
class XTransferOrigin:
    chain_id: int | None = None
    message_hash: str | None = None
    asset: str | None = None
    amount: str | None = None
    xcall: ChainCall | None = None


@dataclass(slots=True)
class XTransferDestination:
    """Destination-side observations.

    ``status`` is the producer's own label and is stored verbatim; the
    authoritative status is ``XTransfer.status``. ``routers`` non-empty marks
    the fast (router-fronted) path.
    """

    chain_id: int | None = None
    status: XTransferStatus | str | None = None
    routers: list[str] | None = None
    asset: str | None = None
    amount: str | None = None
    execute: ChainCall | None = None
    reconcile: ChainCall | None = None


@dataclass(slots=True)
class XTransfer:
    transfer_id: str
    xparams: XParams | None = None
    origin: XTransferOrigin | None = None
    destination: XTransferDestination | None = None

    @property
    def status(self) -> XTransferStatus | None:
        """Status derived from which sides of the transfer are present."""
        destination = self.destination
        return derive_transfer_status(
            origin_present=self.origin is not None,
            destination_present=destination is not None,
            reconcile_present=destination is not None and destination.reconcile is not None,
            execute_present=destination is not None and destination.execute is not None,
            fast_path=destination is not None and bool(destination.routers),
        )


# ============================================================================
# MESSAGES
# ============================================================================


@dataclass(slots=True)
class XMessageOrigin:
    index: int | None = None
    root: str | None = None
    message: str | None = None


@dataclass(slots=True)
class XMessageDestination:
    processed: bool = False
    return_data: str | None = None


@dataclass(slots=True)
class XMessage:
    """A dispatched message keyed by its leaf hash.

    Reads always carry a destination record; ``processed`` is False until a
    processing observation arrives and never reverts afterwards.
    """

    leaf: str
    origin_domain: str | None = None
    destination_domain: str | None = None
    transfer_id: str | None = None
    origin: XMessageOrigin | None = None
    destination: XMessageDestination | None = None


@dataclass(slots=True)
class RootMessage:
    """An aggregate root propagated from a spoke domain to the hub.

    ``id`` defaults to ``"{spoke_domain}-{hub_domain}-{root}"`` when the
    producer does not supply one.
    """

    id: str | None = None
    spoke_domain: str | None = None
    hub_domain: str | None = None
    root: str | None = None
    caller: str | None = None
    transaction_hash: str | None = None
    timestamp: int | None = None
    gas_price: str | None = None
    gas_limit: str | None = None
    block_number: int | None = None
    count: int | None = None
    processed: bool = False

    def __post_init__(self) -> None:
        if not self.id and self.spoke_domain and self.hub_domain and self.root:
            self.id = f"{self.spoke_domain}-{self.hub_domain}-{self.root}"


# ============================================================================
# ROUTERS
# ============================================================================


@dataclass(slots=True)
class Router:
    address: str
    is_active: bool | None = None
    owner: str | None = None
    recipient: str | None = None
    proposed_owner: str | None = None
    proposed_timestamp: int | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "Router":
        return cls(
            address=str(payload.get("address") or payload.get("router") or ""),
            is_active=_opt_bool(payload, "is_active"),
            owner=_opt_str(payload, "owner"),
            recipient=_opt_str(payload, "recipient"),
            proposed_owner=_opt_str(payload, "proposed_owner"),
            proposed_timestamp=_opt_int(payload, "proposed_timestamp"),
        )


@dataclass(slots=True)
class AssetBalance:
    """One router balance for an asset on a domain, with asset metadata."""

    canonical_id: str
    domain: str
    balance: str
    key: str | None = None
    id: str | None = None
    local_asset: str | None = None
    adopted_asset: str | None = None
    canonical_domain: str | None = None
    block_number: str | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "AssetBalance":
        balance = payload.get("balance")
        return cls(
            canonical_id=str(payload.get("canonical_id") or ""),
            domain=str(payload.get("domain") or ""),
            balance=str(parse_amount(balance, field_name="balance")) if balance is not None else "",
            key=_opt_str(payload, "key"),
            id=_opt_str(payload, "id"),
            local_asset=_opt_str(payload, "local_asset"),
            adopted_asset=_opt_str(payload, "adopted_asset"),
            canonical_domain=_opt_str(payload, "canonical_domain"),
            block_number=_opt_str(payload, "block_number"),
        )


@dataclass(slots=True)
class RouterBalance:
    router: str
    assets: list[AssetBalance] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "RouterBalance":
        raw_assets = payload.get("assets") if isinstance(payload.get("assets"), list) else []
        return cls(
            router=str(payload.get("router") or ""),
            assets=[AssetBalance.from_mapping(item) for item in raw_assets if isinstance(item, Mapping)],
        )
