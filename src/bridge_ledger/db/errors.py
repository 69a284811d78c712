"""Typed database/domain exceptions for the DB package.

This module defines a small, explicit exception hierarchy used by repository
modules to signal caller mistakes, invariant violations and infrastructure
failures without collapsing them into boolean or empty return values.

Design intent:
    - "Row not found" is a domain outcome, represented by ``None``/``[]``.
    - Caller mistakes raise ``InvalidArgumentError`` (also a ``ValueError``).
    - Monotonicity and non-negative balance violations raise
      ``InvalidStateError``.
    - An unreachable store raises ``StoreUnavailableError``; it is surfaced,
      never retried here.
    - Every other SQLite failure inside a repository is wrapped in
      ``DatabaseReadError``/``DatabaseWriteError`` with the cause chained.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NoReturn


@dataclass(slots=True)
class DatabaseOperationContext:
    """Structured operation metadata carried by repository exceptions.

    Attributes:
        operation: Stable operation identifier (for example
            ``"transfers.save_transfers"``).
        details: Optional human-readable context for logs and debugging.
    """

    operation: str
    details: str | None = None


class DatabaseError(RuntimeError):
    """Base exception for DB-layer failures."""


class InvalidArgumentError(DatabaseError, ValueError):
    """A caller supplied a malformed key, name or amount."""


class InvalidStateError(DatabaseError):
    """An update would violate a monotonicity or non-negative invariant."""


class DatabaseOperationError(DatabaseError):
    """Base exception for repository operation failures.

    Args:
        context: Structured operation metadata.
        cause: Optional underlying exception.
    """

    def __init__(
        self,
        *,
        context: DatabaseOperationContext,
        cause: Exception | None = None,
    ) -> None:
        message = context.operation
        if context.details:
            message = f"{message}: {context.details}"
        super().__init__(message)
        self.context = context
        self.cause = cause


class StoreUnavailableError(DatabaseOperationError):
    """The underlying SQLite store could not be opened or configured."""


class DatabaseReadError(DatabaseOperationError):
    """Repository read/query failure."""


class DatabaseWriteError(DatabaseOperationError):
    """Repository mutation/transaction failure."""


def raise_read_error(operation: str, exc: Exception, *, details: str | None = None) -> NoReturn:
    """Raise a typed repository read error while preserving chained cause."""
    if isinstance(exc, DatabaseError):
        raise exc
    raise DatabaseReadError(
        context=DatabaseOperationContext(operation=operation, details=details),
        cause=exc,
    ) from exc


def raise_write_error(operation: str, exc: Exception, *, details: str | None = None) -> NoReturn:
    """Raise a typed repository write error while preserving chained cause."""
    if isinstance(exc, DatabaseError):
        raise exc
    raise DatabaseWriteError(
        context=DatabaseOperationContext(operation=operation, details=details),
        cause=exc,
    ) from exc
