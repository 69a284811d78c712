"""Bridge Ledger: reconciliation store for cross-domain activity.

Transfers, messages and root messages are observed independently on the
origin and destination sides of a bridge, in any order and any number of
times. This package merges those partial observations into one logical record
per entity and keeps router liquidity and ingestion checkpoints alongside.

Version Management
------------------
``__version__`` is read from the installed package metadata at import time.
The single source of truth is the ``version`` field in ``pyproject.toml``.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__: str = version("bridge-ledger")
except PackageNotFoundError:
    __version__ = "0.3.0"
