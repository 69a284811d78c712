"""Checkpoint ledger: named high-water marks for incremental ingestion.

Writes are a plain overwrite. The ingestion driver that owns a checkpoint name
is responsible for only ever saving a higher value; the store does not guess
a stricter contract on its behalf.
"""

from __future__ import annotations

import re

from bridge_ledger.db.connection import Store
from bridge_ledger.db.errors import InvalidArgumentError, raise_read_error, raise_write_error
from bridge_ledger.db.merge import merge_upsert

_CHECKPOINT_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.:\-]*$")


def _validate_name(name: object) -> str:
    if not isinstance(name, str) or not _CHECKPOINT_NAME_RE.fullmatch(name):
        raise InvalidArgumentError(f"checkpoint name must be an identifier, got {name!r}")
    return name


def get_checkpoint(store: Store, name: str | None) -> int:
    """Return the stored checkpoint for ``name``, or 0 when none exists.

    An absent name (``None`` or ``""``) reads as 0. A name that is present but
    not an identifier raises ``InvalidArgumentError``.
    """
    if name is None or name == "":
        return 0
    check_name = _validate_name(name)
    try:
        with store.scope() as conn:
            row = conn.execute(
                "SELECT check_point FROM checkpoints WHERE check_name = ?",
                (check_name,),
            ).fetchone()
        return int(row[0]) if row else 0
    except Exception as exc:
        raise_read_error("checkpoints.get_checkpoint", exc, details=f"name={name!r}")


def save_checkpoint(store: Store, name: str | None, value: int | None) -> None:
    """Store ``value`` under ``name``, replacing any previous value.

    A call missing either argument is a no-op. Negative or non-integer values
    raise ``InvalidArgumentError``.
    """
    if name is None or name == "" or value is None:
        return
    check_name = _validate_name(name)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidArgumentError(f"checkpoint value must be a non-negative integer, got {value!r}")
    try:
        with store.scope(write=True) as conn:
            merge_upsert(
                conn,
                table="checkpoints",
                key_columns=("check_name",),
                incoming={"check_name": check_name, "check_point": value},
            )
    except Exception as exc:
        raise_write_error("checkpoints.save_checkpoint", exc, details=f"name={name!r}")
