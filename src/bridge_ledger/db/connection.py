"""SQLite connection primitives for the bridge ledger DB layer.

This module owns the ``Store`` handle: connection creation, low-level SQLite
runtime pragmas and transaction scopes, so repository code can stay focused
on queries and merge intent.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from bridge_ledger.config import LedgerConfig, UnderflowPolicy
from bridge_ledger.db.errors import DatabaseOperationContext, StoreUnavailableError
from bridge_ledger.status import sql_transfer_status


@dataclass(slots=True)
class Store:
    """Explicit handle to one SQLite ledger database.

    Attributes:
        path: SQLite database file.
        busy_timeout_ms: How long a writer waits for a competing writer.
        default_limit: Page size used when a read omits ``limit``.
        max_limit: Upper bound applied to any requested ``limit``.
        underflow_policy: ``fail`` or ``clamp`` for liquidity removals that
            would take a balance below zero.
    """

    path: Path
    busy_timeout_ms: int = 5000
    default_limit: int = 100
    max_limit: int = 1000
    underflow_policy: UnderflowPolicy = "fail"

    @classmethod
    def from_config(cls, cfg: LedgerConfig, *, path: Path | str | None = None) -> "Store":
        """Build a store from configuration, optionally overriding the path."""
        return cls(
            path=Path(path) if path is not None else cfg.database.absolute_path,
            busy_timeout_ms=cfg.database.busy_timeout_ms,
            default_limit=cfg.queries.default_limit,
            max_limit=cfg.queries.max_limit,
            underflow_policy=cfg.balances.underflow_policy,
        )

    def connect(self) -> sqlite3.Connection:
        """Create and configure a new connection.

        Raises:
            StoreUnavailableError: When the database file cannot be opened.
        """
        try:
            connection = sqlite3.connect(str(self.path), isolation_level=None)
            return configure_connection(connection, busy_timeout_ms=self.busy_timeout_ms)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(
                context=DatabaseOperationContext(operation="store.connect", details=f"path={str(self.path)!r}"),
                cause=exc,
            ) from exc

    @contextmanager
    def scope(self, *, write: bool = False) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside one transaction.

        Args:
            write: When True, take the write lock up front (``BEGIN
                IMMEDIATE``). SQLite locks the whole database, so write
                batches serialize even when their keys are disjoint.

        Behavior:
            - Reads run in a deferred transaction: every statement in the
              block sees the same snapshot.
            - Commits at the end of a successful block.
            - Attempts rollback before re-raising failures.
            - Always closes the connection in ``finally``.
        """
        connection = self.connect()
        try:
            connection.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            yield connection
            connection.execute("COMMIT")
        except Exception:
            if connection.in_transaction:
                try:
                    connection.execute("ROLLBACK")
                except sqlite3.Error:
                    # Preserve the original exception while best-effort rolling back.
                    pass
            raise
        finally:
            connection.close()


def configure_connection(connection: sqlite3.Connection, *, busy_timeout_ms: int = 5000) -> sqlite3.Connection:
    """Apply connection-level settings required by the repositories.

    Notes:
        - ``foreign_keys=ON`` because SQLite does not enforce them by default.
        - ``busy_timeout`` lets overlapping batch writers wait for the lock
          instead of failing immediately.
        - Rows are returned as ``sqlite3.Row`` so merges can work on mappings.
        - ``transfer_status`` exposes the pure status projection to SQL.
    """
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA foreign_keys = ON")
    connection.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
    connection.create_function("transfer_status", 5, sql_transfer_status, deterministic=True)
    return connection
