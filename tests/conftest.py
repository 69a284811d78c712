"""
Shared pytest fixtures for the bridge ledger test suite.

Every test that needs storage gets its own SQLite file under ``tmp_path`` and
an explicit ``Store`` handle, so tests never share state or need teardown.
"""

from pathlib import Path

import pytest

from bridge_ledger.db.connection import Store
from bridge_ledger.db.schema import init_schema

# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture(scope="function")
def db_path(tmp_path: Path) -> Path:
    """Path of a per-test database file (not yet created)."""
    return tmp_path / "ledger.db"


@pytest.fixture(scope="function")
def store(db_path: Path) -> Store:
    """
    Fresh store with the schema initialized.

    Uses small query limits so clamping is observable in tests.
    """
    ledger = Store(path=db_path, default_limit=50, max_limit=200)
    init_schema(ledger)
    return ledger


@pytest.fixture(scope="function")
def clamping_store(db_path: Path) -> Store:
    """Store whose liquidity removals clamp at zero instead of failing."""
    ledger = Store(path=db_path, underflow_policy="clamp")
    init_schema(ledger)
    return ledger
