"""Focused tests for ``bridge_ledger.db.transfers_repo``."""

from __future__ import annotations

import logging
from dataclasses import replace

import pytest

from bridge_ledger.db import transfers_repo
from bridge_ledger.entities import XParams, XTransfer, XTransferDestination
from bridge_ledger.status import XTransferStatus
from tests.factories import (
    DESTINATION_DOMAIN,
    ORIGIN_DOMAIN,
    mk_call,
    mk_destination,
    mk_origin,
    mk_transfer,
    mk_xparams,
)


def _origin_half(transfer: XTransfer) -> XTransfer:
    return replace(transfer, destination=None)


def _destination_half(transfer: XTransfer) -> XTransfer:
    return replace(transfer, origin=None)


# ============================================================================
# WRITES
# ============================================================================


@pytest.mark.unit
@pytest.mark.db
def test_save_and_read_single_transfer(store):
    transfer = mk_transfer(XTransferStatus.EXECUTED)

    assert transfers_repo.save_transfers(store, [transfer]) == 1

    stored = transfers_repo.get_transfer_by_transfer_id(store, transfer.transfer_id)
    assert stored == transfer
    assert stored.status is XTransferStatus.EXECUTED


@pytest.mark.unit
@pytest.mark.db
def test_save_transfer_with_null_destination_domain(store):
    transfer = mk_transfer(XTransferStatus.EXECUTED, xparams=mk_xparams(destination_domain=None))

    transfers_repo.save_transfers(store, [transfer])

    stored = transfers_repo.get_transfer_by_transfer_id(store, transfer.transfer_id)
    assert stored.xparams.destination_domain is None


@pytest.mark.unit
@pytest.mark.db
def test_upsert_overwrites_supplied_fields(store):
    transfer = mk_transfer(XTransferStatus.EXECUTED)
    transfers_repo.save_transfers(store, [transfer])

    updated = replace(transfer, destination=replace(transfer.destination, amount="1"))
    transfers_repo.save_transfers(store, [updated])

    assert transfers_repo.get_transfer_by_transfer_id(store, transfer.transfer_id).destination.amount == "1"


@pytest.mark.unit
@pytest.mark.db
def test_upsert_is_idempotent(store):
    transfer = mk_transfer(XTransferStatus.COMPLETED_FAST)

    for _ in range(3):
        transfers_repo.save_transfers(store, [transfer])

    assert transfers_repo.get_transfer_by_transfer_id(store, transfer.transfer_id) == transfer
    with store.scope() as conn:
        assert conn.execute("SELECT COUNT(*) FROM transfers").fetchone()[0] == 1


@pytest.mark.unit
@pytest.mark.db
@pytest.mark.parametrize("origin_first", [True, False])
def test_sides_merge_in_either_order(store, origin_first):
    transfer = mk_transfer(XTransferStatus.COMPLETED_FAST)
    halves = [_origin_half(transfer), _destination_half(transfer)]
    if not origin_first:
        halves.reverse()

    transfers_repo.save_transfers(store, [halves[0]])
    transfers_repo.save_transfers(store, [halves[1]])

    stored = transfers_repo.get_transfer_by_transfer_id(store, transfer.transfer_id)
    assert stored.origin == transfer.origin
    assert stored.destination == transfer.destination
    assert stored.status is XTransferStatus.COMPLETED_FAST


@pytest.mark.unit
@pytest.mark.db
def test_write_without_xparams_keeps_stored_xparams(store):
    transfer = mk_transfer(XTransferStatus.XCALLED)
    transfers_repo.save_transfers(store, [transfer])

    transfers_repo.save_transfers(
        store,
        [XTransfer(transfer_id=transfer.transfer_id, destination=mk_destination(XTransferStatus.RECONCILED))],
    )

    stored = transfers_repo.get_transfer_by_transfer_id(store, transfer.transfer_id)
    assert stored.xparams == transfer.xparams
    assert stored.origin == transfer.origin
    assert stored.status is XTransferStatus.RECONCILED


@pytest.mark.unit
@pytest.mark.db
def test_execute_then_reconcile_becomes_executed(store):
    transfer = mk_transfer(XTransferStatus.EXECUTED)
    executed_only = replace(transfer, destination=replace(transfer.destination, reconcile=None))
    reconciled_only = replace(transfer, destination=replace(transfer.destination, execute=None))

    transfers_repo.save_transfers(store, [executed_only])
    assert transfers_repo.get_transfer_by_transfer_id(store, transfer.transfer_id).status is (
        XTransferStatus.COMPLETED_FAST
    )

    transfers_repo.save_transfers(store, [reconciled_only])
    assert transfers_repo.get_transfer_by_transfer_id(store, transfer.transfer_id).status is (
        XTransferStatus.EXECUTED
    )


@pytest.mark.unit
@pytest.mark.db
def test_save_multiple_transfers(store):
    transfers = [mk_transfer(XTransferStatus.EXECUTED) for _ in range(10)]

    assert transfers_repo.save_transfers(store, transfers) == 10

    for transfer in transfers:
        assert transfers_repo.get_transfer_by_transfer_id(store, transfer.transfer_id) == transfer


@pytest.mark.unit
@pytest.mark.db
def test_boolean_fields_round_trip_and_default(store):
    local = mk_transfer(XTransferStatus.XCALLED, xparams=mk_xparams(receive_local=True))
    missing = mk_transfer(XTransferStatus.XCALLED, xparams=mk_xparams(receive_local=None))

    transfers_repo.save_transfers(store, [local, missing])

    assert transfers_repo.get_transfer_by_transfer_id(store, local.transfer_id).xparams.receive_local is True
    assert transfers_repo.get_transfer_by_transfer_id(store, missing.transfer_id).xparams.receive_local is False


@pytest.mark.unit
@pytest.mark.db
def test_empty_and_missing_batches_are_no_ops(store):
    assert transfers_repo.save_transfers(store, None) == 0
    assert transfers_repo.save_transfers(store, []) == 0

    with store.scope() as conn:
        assert conn.execute("SELECT COUNT(*) FROM transfers").fetchone()[0] == 0


@pytest.mark.unit
@pytest.mark.db
def test_malformed_batch_is_dropped_whole(store, caplog):
    good = mk_transfer(XTransferStatus.XCALLED)

    with caplog.at_level(logging.WARNING):
        assert transfers_repo.save_transfers(store, [good, XTransfer(transfer_id="")]) == 0
        assert transfers_repo.save_transfers(store, [good, {"transfer_id": "0x01"}]) == 0

    assert transfers_repo.get_transfer_by_transfer_id(store, good.transfer_id) is None
    assert "transfers.save_transfers" in caplog.text


@pytest.mark.unit
@pytest.mark.db
@pytest.mark.parametrize(
    "malformed",
    [
        XTransfer(transfer_id="0xbad", xparams={"nonce": 1}),
        XTransfer(transfer_id="0xbad", xparams=mk_xparams(nonce="7")),
        XTransfer(transfer_id="0xbad", xparams=mk_xparams(receive_local=1)),
        XTransfer(transfer_id="0xbad", origin="0xorigin"),
        XTransfer(transfer_id="0xbad", origin=mk_origin(xcall=mk_call(timestamp={"x": 1}))),
        XTransfer(transfer_id="0xbad", origin=mk_origin(chain_id=True)),
        XTransfer(transfer_id="0xbad", destination=mk_destination(reconcile={"block_number": 1})),
    ],
    ids=["xparams-dict", "nonce-str", "receive-local-int", "origin-str", "xcall-dict", "chain-bool", "reconcile-dict"],
)
def test_malformed_nested_fields_drop_the_batch(store, malformed):
    existing = mk_transfer(XTransferStatus.XCALLED)
    transfers_repo.save_transfers(store, [existing])

    update = _destination_half(replace(existing, destination=mk_destination(XTransferStatus.EXECUTED)))
    assert transfers_repo.save_transfers(store, [update, malformed]) == 0

    assert transfers_repo.get_transfer_by_transfer_id(store, existing.transfer_id) == existing
    assert transfers_repo.get_transfer_by_transfer_id(store, "0xbad") is None


@pytest.mark.unit
@pytest.mark.db
@pytest.mark.parametrize("routers", ["0x" + "ab" * 20, [1], ["0xabc", None]])
def test_routers_must_be_a_list_of_addresses(store, routers):
    transfer = mk_transfer(
        XTransferStatus.XCALLED,
        destination=XTransferDestination(routers=routers, execute=mk_call()),
    )

    assert transfers_repo.save_transfers(store, [transfer]) == 0
    assert transfers_repo.get_transfer_by_transfer_id(store, transfer.transfer_id) is None
    assert transfers_repo.get_transfers_by_status(store, XTransferStatus.COMPLETED_FAST) == []


# ============================================================================
# READS
# ============================================================================


@pytest.mark.unit
@pytest.mark.db
def test_unknown_or_unusable_id_reads_none(store):
    assert transfers_repo.get_transfer_by_transfer_id(store, "0xmissing") is None
    assert transfers_repo.get_transfer_by_transfer_id(store, None) is None
    assert transfers_repo.get_transfer_by_transfer_id(store, "") is None


@pytest.mark.unit
@pytest.mark.db
def test_get_transfers_by_status_filters_on_derived_status(store):
    fast = mk_transfer(XTransferStatus.COMPLETED_FAST)
    slow = mk_transfer(XTransferStatus.COMPLETED_SLOW)
    xcalled = mk_transfer(XTransferStatus.XCALLED)
    transfers_repo.save_transfers(store, [fast, slow, xcalled])

    assert transfers_repo.get_transfers_by_status(store, XTransferStatus.COMPLETED_FAST) == [fast]
    assert transfers_repo.get_transfers_by_status(store, "CompletedSlow") == [slow]
    assert transfers_repo.get_transfers_by_status(store, XTransferStatus.XCALLED) == [xcalled]
    assert transfers_repo.get_transfers_by_status(store, XTransferStatus.EXECUTED) == []


@pytest.mark.unit
@pytest.mark.db
def test_producer_status_label_does_not_drive_filters(store):
    transfer = mk_transfer(XTransferStatus.RECONCILED)
    transfer.destination.status = XTransferStatus.EXECUTED
    transfers_repo.save_transfers(store, [transfer])

    assert transfers_repo.get_transfers_by_status(store, XTransferStatus.EXECUTED) == []
    assert [t.transfer_id for t in transfers_repo.get_transfers_by_status(store, "Reconciled")] == [
        transfer.transfer_id
    ]


@pytest.mark.unit
@pytest.mark.db
@pytest.mark.parametrize("status", [None, "", "Bogus", 12])
def test_unset_or_invalid_status_yields_empty(store, status):
    transfers_repo.save_transfers(store, [mk_transfer(XTransferStatus.EXECUTED)])

    assert transfers_repo.get_transfers_by_status(store, status) == []


class TestPagination:
    """Ten executed transfers with nonces 1..10, saved out of order."""

    @pytest.fixture
    def nonces(self, store):
        transfers = [
            mk_transfer(XTransferStatus.EXECUTED, xparams=mk_xparams(nonce=nonce)) for nonce in range(1, 11)
        ]
        transfers_repo.save_transfers(store, list(reversed(transfers)))
        return store

    @staticmethod
    def _page(store, *args):
        return [t.xparams.nonce for t in transfers_repo.get_transfers_by_status(store, XTransferStatus.EXECUTED, *args)]

    @pytest.mark.unit
    @pytest.mark.db
    def test_ascending_limit(self, nonces):
        assert self._page(nonces, 4, 0, "ASC") == [1, 2, 3, 4]

    @pytest.mark.unit
    @pytest.mark.db
    def test_descending_limit(self, nonces):
        assert self._page(nonces, 4, 0, "DESC") == [10, 9, 8, 7]

    @pytest.mark.unit
    @pytest.mark.db
    def test_limit_from_offset(self, nonces):
        assert self._page(nonces, 1, 9, "DESC") == [1]
        assert self._page(nonces, 3, 2, "ASC") == [3, 4, 5]

    @pytest.mark.unit
    @pytest.mark.db
    def test_defaults_return_everything_ascending(self, nonces):
        assert self._page(nonces) == list(range(1, 11))

    @pytest.mark.unit
    @pytest.mark.db
    def test_limit_is_clamped_to_store_maximum(self, nonces):
        nonces.max_limit = 3
        assert self._page(nonces, 500) == [1, 2, 3]


@pytest.mark.unit
@pytest.mark.db
def test_same_nonce_ties_break_on_transfer_id(store):
    first = mk_transfer(XTransferStatus.EXECUTED, transfer_id="0x01", xparams=mk_xparams(nonce=5))
    second = mk_transfer(XTransferStatus.EXECUTED, transfer_id="0x02", xparams=mk_xparams(nonce=5))
    transfers_repo.save_transfers(store, [second, first])

    ids = [t.transfer_id for t in transfers_repo.get_transfers_by_status(store, XTransferStatus.EXECUTED)]
    assert ids == ["0x01", "0x02"]
    ids = [t.transfer_id for t in transfers_repo.get_transfers_by_status(store, XTransferStatus.EXECUTED, order="DESC")]
    assert ids == ["0x02", "0x01"]


# ============================================================================
# PENDING QUERIES
# ============================================================================


@pytest.mark.unit
@pytest.mark.db
def test_transfers_missing_origin_data(store):
    complete_a = mk_transfer(XTransferStatus.EXECUTED)
    complete_b = mk_transfer(XTransferStatus.EXECUTED)
    destination_only = _destination_half(mk_transfer(XTransferStatus.RECONCILED))
    other_domain = _destination_half(
        mk_transfer(XTransferStatus.EXECUTED, xparams=mk_xparams(origin_domain="9999"))
    )
    transfers_repo.save_transfers(store, [complete_a, complete_b, destination_only, other_domain])

    assert transfers_repo.get_transfers_with_origin_pending(store, ORIGIN_DOMAIN) == [
        destination_only.transfer_id
    ]
    assert transfers_repo.get_transfers_with_destination_pending(store, DESTINATION_DOMAIN) == []


@pytest.mark.unit
@pytest.mark.db
def test_transfers_missing_destination_data(store):
    complete = mk_transfer(XTransferStatus.EXECUTED)
    origin_only = mk_transfer(XTransferStatus.XCALLED)
    transfers_repo.save_transfers(store, [complete, origin_only])

    assert transfers_repo.get_transfers_with_destination_pending(store, DESTINATION_DOMAIN) == [
        origin_only.transfer_id
    ]
    assert transfers_repo.get_transfers_with_destination_pending(store, "9999") == []
    assert transfers_repo.get_transfers_with_origin_pending(store, ORIGIN_DOMAIN) == []


@pytest.mark.unit
@pytest.mark.db
def test_pending_clears_once_both_sides_arrive(store):
    transfer = mk_transfer(XTransferStatus.COMPLETED_SLOW)
    transfers_repo.save_transfers(store, [_origin_half(transfer)])
    assert transfers_repo.get_transfers_with_destination_pending(store, DESTINATION_DOMAIN) == [
        transfer.transfer_id
    ]

    transfers_repo.save_transfers(store, [_destination_half(transfer)])

    assert transfers_repo.get_transfers_with_destination_pending(store, DESTINATION_DOMAIN) == []
    assert transfers_repo.get_transfers_with_origin_pending(store, ORIGIN_DOMAIN) == []


@pytest.mark.unit
@pytest.mark.db
def test_pending_queries_page_by_nonce(store):
    transfers = [mk_transfer(XTransferStatus.XCALLED, xparams=mk_xparams(nonce=n)) for n in (3, 1, 2)]
    transfers_repo.save_transfers(store, transfers)
    by_nonce = {t.xparams.nonce: t.transfer_id for t in transfers}

    assert transfers_repo.get_transfers_with_destination_pending(store, DESTINATION_DOMAIN, 2) == [
        by_nonce[1],
        by_nonce[2],
    ]
    assert transfers_repo.get_transfers_with_destination_pending(store, DESTINATION_DOMAIN, 1, "DESC") == [
        by_nonce[3]
    ]


@pytest.mark.unit
@pytest.mark.db
def test_pending_queries_with_no_data(store):
    assert transfers_repo.get_transfers_with_origin_pending(store, ORIGIN_DOMAIN) == []
    assert transfers_repo.get_transfers_with_destination_pending(store, DESTINATION_DOMAIN) == []
    assert transfers_repo.get_transfers_with_origin_pending(store, None) == []
    assert transfers_repo.get_transfers_with_destination_pending(store, "") == []


@pytest.mark.unit
@pytest.mark.db
def test_xparams_only_write_is_not_pending_anywhere(store):
    transfers_repo.save_transfers(store, [XTransfer(transfer_id="0xabc", xparams=XParams(origin_domain=ORIGIN_DOMAIN))])

    stored = transfers_repo.get_transfer_by_transfer_id(store, "0xabc")
    assert stored.origin is None and stored.destination is None
    assert stored.status is None
    assert transfers_repo.get_transfers_with_origin_pending(store, ORIGIN_DOMAIN) == []
