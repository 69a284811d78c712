"""SQLite persistence for the bridge ledger.

Repositories take an explicit :class:`~bridge_ledger.db.connection.Store`
handle on every call; there is no ambient current store.

Public surface
--------------
- :mod:`bridge_ledger.db.connection`: ``Store`` handle and transaction scopes.
- :mod:`bridge_ledger.db.schema`: ``init_schema``.
- :mod:`bridge_ledger.db.merge`: the merge-upsert primitive.
- :mod:`bridge_ledger.db.checkpoints_repo`: named ingestion checkpoints.
- :mod:`bridge_ledger.db.transfers_repo`: transfer reconciliation.
- :mod:`bridge_ledger.db.messages_repo`: dispatched/processed messages.
- :mod:`bridge_ledger.db.root_messages_repo`: root propagation records.
- :mod:`bridge_ledger.db.routers_repo`: routers and liquidity ledger.
- :mod:`bridge_ledger.db.errors`: typed error hierarchy.
- :mod:`bridge_ledger.db.arguments`: lenient batch and paging arguments.
"""
