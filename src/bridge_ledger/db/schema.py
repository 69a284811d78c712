"""Schema creation for the SQLite backend.

The schema layer is isolated from repository code so schema changes are
reviewable without wading through merge and query logic.
"""

from __future__ import annotations

import logging

from bridge_ledger.db.connection import Store

logger = logging.getLogger(__name__)

# Hot-path index rationale:
# 1. pending-origin/pending-destination backfill polls filter on one domain
#    plus both observation flags and page by nonce.
# 2. status pages sort by nonce then transfer id.
# 3. pending message polls scan unprocessed rows per origin domain by index.
# 4. root message reads filter on processed and sort by block then insertion.
HOT_PATH_INDEX_STATEMENTS = (
    (
        "CREATE INDEX IF NOT EXISTS idx_transfers_origin_pending "
        "ON transfers(origin_domain, origin_observed, destination_observed, nonce)"
    ),
    (
        "CREATE INDEX IF NOT EXISTS idx_transfers_destination_pending "
        "ON transfers(destination_domain, destination_observed, origin_observed, nonce)"
    ),
    "CREATE INDEX IF NOT EXISTS idx_transfers_nonce ON transfers(nonce, transfer_id)",
    (
        "CREATE INDEX IF NOT EXISTS idx_messages_pending "
        "ON messages(processed, origin_domain, origin_index)"
    ),
    (
        "CREATE INDEX IF NOT EXISTS idx_root_messages_processed_block "
        "ON root_messages(processed, block_number, seq)"
    ),
)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS checkpoints (
        check_name TEXT PRIMARY KEY,
        check_point INTEGER NOT NULL DEFAULT 0 CHECK (check_point >= 0)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transfers (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        transfer_id TEXT NOT NULL UNIQUE,

        origin_domain TEXT,
        destination_domain TEXT,
        canonical_domain TEXT,
        to_address TEXT,
        delegate TEXT,
        receive_local INTEGER,
        call_data TEXT,
        slippage TEXT,
        origin_sender TEXT,
        bridged_amt TEXT,
        normalized_in TEXT,
        nonce INTEGER,
        canonical_id TEXT,

        origin_observed INTEGER NOT NULL DEFAULT 0,
        origin_chain INTEGER,
        origin_message_hash TEXT,
        origin_asset TEXT,
        origin_amount TEXT,
        xcall_caller TEXT,
        xcall_transaction_hash TEXT,
        xcall_timestamp INTEGER,
        xcall_block_number INTEGER,
        xcall_gas_price TEXT,
        xcall_gas_limit TEXT,
        xcall_tx_origin TEXT,

        destination_observed INTEGER NOT NULL DEFAULT 0,
        destination_chain INTEGER,
        status TEXT,
        routers TEXT,
        destination_asset TEXT,
        destination_amount TEXT,
        execute_caller TEXT,
        execute_transaction_hash TEXT,
        execute_timestamp INTEGER,
        execute_block_number INTEGER,
        execute_gas_price TEXT,
        execute_gas_limit TEXT,
        execute_tx_origin TEXT,
        reconcile_caller TEXT,
        reconcile_transaction_hash TEXT,
        reconcile_timestamp INTEGER,
        reconcile_block_number INTEGER,
        reconcile_gas_price TEXT,
        reconcile_gas_limit TEXT,
        reconcile_tx_origin TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        leaf TEXT PRIMARY KEY,
        origin_domain TEXT,
        destination_domain TEXT,
        transfer_id TEXT,
        origin_index INTEGER,
        root TEXT,
        message TEXT,
        processed INTEGER NOT NULL DEFAULT 0,
        return_data TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS root_messages (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        spoke_domain TEXT,
        hub_domain TEXT,
        root TEXT,
        caller TEXT,
        transaction_hash TEXT,
        timestamp INTEGER,
        gas_price TEXT,
        gas_limit TEXT,
        block_number INTEGER,
        count INTEGER,
        processed INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS routers (
        address TEXT PRIMARY KEY,
        is_active INTEGER,
        owner TEXT,
        recipient TEXT,
        proposed_owner TEXT,
        proposed_timestamp INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS assets (
        canonical_id TEXT NOT NULL,
        domain TEXT NOT NULL,
        "key" TEXT,
        id TEXT,
        local TEXT,
        adopted TEXT,
        canonical_domain TEXT,
        block_number TEXT,
        PRIMARY KEY (canonical_id, domain)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS asset_balances (
        router_address TEXT NOT NULL REFERENCES routers(address) ON DELETE CASCADE,
        asset_domain TEXT NOT NULL,
        asset_canonical_id TEXT NOT NULL,
        balance TEXT NOT NULL DEFAULT '0',
        PRIMARY KEY (router_address, asset_domain, asset_canonical_id)
    )
    """,
    """
    CREATE VIEW IF NOT EXISTS routers_with_balances AS
    SELECT
        r.address AS address,
        r.is_active AS is_active,
        r.owner AS owner,
        r.recipient AS recipient,
        r.proposed_owner AS proposed_owner,
        r.proposed_timestamp AS proposed_timestamp,
        ab.asset_canonical_id AS canonical_id,
        ab.asset_domain AS domain,
        ab.balance AS balance,
        a."key" AS "key",
        a.id AS id,
        a.local AS local,
        a.adopted AS adopted,
        a.canonical_domain AS canonical_domain,
        a.block_number AS block_number
    FROM routers r
    LEFT JOIN asset_balances ab ON ab.router_address = r.address
    LEFT JOIN assets a
        ON a.canonical_id = ab.asset_canonical_id AND a.domain = ab.asset_domain
    """,
)


def init_schema(store: Store) -> None:
    """Create tables, hot-path indexes and the router balance view.

    Idempotent: safe to call on every process start. Switches the database to
    WAL so readers keep a consistent snapshot while a batch is being written.
    """
    connection = store.connect()
    try:
        connection.execute("PRAGMA journal_mode = WAL")
        connection.execute("BEGIN IMMEDIATE")
        for statement in SCHEMA_STATEMENTS:
            connection.execute(statement)
        for statement in HOT_PATH_INDEX_STATEMENTS:
            connection.execute(statement)
        connection.execute("COMMIT")
    except Exception:
        if connection.in_transaction:
            connection.execute("ROLLBACK")
        raise
    finally:
        connection.close()
    logger.debug("Schema initialized at %s", store.path)
