"""Lenient argument handling shared by repository entry points.

Producers and consumers call the store while they are still partially
initialized, so batch writes and read parameters degrade to safe defaults
instead of raising.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Literal, TypeVar

from bridge_ledger.db.connection import Store

logger = logging.getLogger(__name__)

T = TypeVar("T")

Order = Literal["ASC", "DESC"]


def normalize_batch(
    batch: object,
    *,
    entity_type: type[T],
    is_valid: Callable[[T], bool],
    operation: str,
) -> list[T]:
    """Return the batch as a list, or ``[]`` when it must be treated as a no-op.

    A batch is dropped whole when it is missing, not a sequence, or holds any
    entry that is not a valid ``entity_type``; applying part of it would break
    all-or-nothing batch semantics.
    """
    if batch is None:
        return []
    if isinstance(batch, (str, bytes)) or not isinstance(batch, Sequence):
        logger.warning("%s: ignoring non-sequence batch of type %s", operation, type(batch).__name__)
        return []
    items = list(batch)
    for position, item in enumerate(items):
        if not isinstance(item, entity_type) or not is_valid(item):
            logger.warning(
                "%s: ignoring batch of %d, malformed entry at position %d",
                operation,
                len(items),
                position,
            )
            return []
    return items


def resolve_order(order: object) -> Order:
    """Map an ordering token to ``ASC``/``DESC``; anything else is ``ASC``."""
    if isinstance(order, str) and order.strip().upper() == "DESC":
        return "DESC"
    return "ASC"


def resolve_limit(store: Store, limit: object) -> int:
    """Clamp ``limit`` into ``[0, store.max_limit]``; missing means default."""
    if isinstance(limit, bool) or not isinstance(limit, int):
        return store.default_limit
    return max(0, min(limit, store.max_limit))


def resolve_offset(offset: object) -> int:
    if isinstance(offset, bool) or not isinstance(offset, int):
        return 0
    return max(0, offset)


def is_key(value: object) -> bool:
    """True for a usable entity key: a non-empty string."""
    return isinstance(value, str) and value.strip() != ""


FieldKinds = Mapping[str, type | tuple[type, ...]]


def is_optional_instance(value: object, kind: type | tuple[type, ...]) -> bool:
    """True when ``value`` is None or an instance of ``kind``.

    ``bool`` is only accepted where ``kind`` names it explicitly, so a flag
    never passes for an integer column.
    """
    if value is None:
        return True
    kinds = kind if isinstance(kind, tuple) else (kind,)
    if isinstance(value, bool) and bool not in kinds:
        return False
    return isinstance(value, kinds)


def fields_conform(record: object, kinds: FieldKinds) -> bool:
    """True when every named attribute of ``record`` is None or of its kind."""
    return all(is_optional_instance(getattr(record, name, None), kind) for name, kind in kinds.items())
