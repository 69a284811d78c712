"""Transfer status projection.

A transfer's status is never stored as independent truth. It is a pure
function of which sides of the transfer have been observed, recomputed on
every read and registered with SQLite so status filters run in SQL against the
same logic.
"""

from __future__ import annotations

import json
from enum import Enum


class XTransferStatus(str, Enum):
    XCALLED = "XCalled"
    EXECUTED = "Executed"
    RECONCILED = "Reconciled"
    COMPLETED_FAST = "CompletedFast"
    COMPLETED_SLOW = "CompletedSlow"


def parse_transfer_status(value: object) -> XTransferStatus | None:
    """Return the status named by ``value`` or None when it names none."""
    if isinstance(value, XTransferStatus):
        return value
    if not isinstance(value, str):
        return None
    try:
        return XTransferStatus(value)
    except ValueError:
        return None


def derive_transfer_status(
    *,
    origin_present: bool,
    destination_present: bool,
    reconcile_present: bool,
    execute_present: bool,
    fast_path: bool,
) -> XTransferStatus | None:
    """Project observed transfer sides onto a status.

    ===========  ===========  =========  =======  ==============
    origin       destination  reconcile  execute  status
    ===========  ===========  =========  =======  ==============
    yes          no           -          -        XCalled
    any          yes          yes        no       Reconciled
    any          yes          no         fast     CompletedFast
    any          yes          no         slow     CompletedSlow
    any          yes          yes        yes      Executed
    ===========  ===========  =========  =======  ==============

    A destination side carrying neither execution nor reconciliation adds
    nothing to the origin side. Nothing observed at all yields None.
    """
    if destination_present:
        if reconcile_present and execute_present:
            return XTransferStatus.EXECUTED
        if reconcile_present:
            return XTransferStatus.RECONCILED
        if execute_present:
            return XTransferStatus.COMPLETED_FAST if fast_path else XTransferStatus.COMPLETED_SLOW
    if origin_present:
        return XTransferStatus.XCALLED
    return None


def sql_transfer_status(
    origin_observed: int | None,
    destination_observed: int | None,
    reconcile_present: int | None,
    execute_present: int | None,
    routers_json: str | None,
) -> str | None:
    """SQLite adapter for ``derive_transfer_status`` over raw column values."""
    routers = json.loads(routers_json) if routers_json else []
    status = derive_transfer_status(
        origin_present=bool(origin_observed),
        destination_present=bool(destination_observed),
        reconcile_present=bool(reconcile_present),
        execute_present=bool(execute_present),
        fast_path=bool(routers),
    )
    return status.value if status is not None else None
