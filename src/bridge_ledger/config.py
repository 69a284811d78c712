"""
Ledger configuration management.

This module handles loading and accessing configuration from multiple sources
with a clear priority order:

    1. Environment variables (highest priority) - for containerized deployments
    2. Config file (config/ledger.ini) - for static deployments
    3. Built-in defaults (lowest priority) - sensible fallbacks

Configuration is loaded once at module import time and cached. Repository
functions never read it directly; they receive an explicit ``Store`` handle
built with ``Store.from_config``. The singleton only feeds the CLI.

Usage:
    from bridge_ledger.config import config

    print(config.database.absolute_path)
    print(config.balances.underflow_policy)

Environment Variable Mapping:
    BRIDGE_LEDGER_DB_PATH            -> database.path
    BRIDGE_LEDGER_BUSY_TIMEOUT_MS    -> database.busy_timeout_ms
    BRIDGE_LEDGER_LOG_LEVEL          -> logging.level
    BRIDGE_LEDGER_DEFAULT_LIMIT      -> queries.default_limit
    BRIDGE_LEDGER_MAX_LIMIT          -> queries.max_limit
    BRIDGE_LEDGER_UNDERFLOW_POLICY   -> balances.underflow_policy
"""

import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

# =============================================================================
# PATH CONFIGURATION
# =============================================================================

# Project root directory (contains src/, config/, data/)
PROJECT_ROOT = Path(__file__).parent.parent.parent

CONFIG_DIR = PROJECT_ROOT / "config"
CONFIG_FILE = CONFIG_DIR / "ledger.ini"
CONFIG_EXAMPLE = CONFIG_DIR / "ledger.example.ini"

UnderflowPolicy = Literal["fail", "clamp"]


# =============================================================================
# CONFIGURATION DATACLASSES
# =============================================================================


@dataclass
class DatabaseSettings:
    """Database configuration."""

    path: str = "data/ledger.db"
    busy_timeout_ms: int = 5000

    @property
    def absolute_path(self) -> Path:
        """Get absolute path to database file."""
        p = Path(self.path)
        if p.is_absolute():
            return p
        return PROJECT_ROOT / p


@dataclass
class LoggingSettings:
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["simple", "detailed"] = "detailed"


@dataclass
class QuerySettings:
    """Pagination bounds applied when callers omit or overshoot a limit."""

    default_limit: int = 100
    max_limit: int = 1000


@dataclass
class BalanceSettings:
    """Router liquidity ledger policy.

    ``underflow_policy`` decides what a liquidity removal larger than the
    stored balance does: ``fail`` raises ``InvalidStateError``, ``clamp``
    stores zero and logs a warning.
    """

    underflow_policy: UnderflowPolicy = "fail"


@dataclass
class LedgerConfig:
    """
    Complete ledger configuration.

    Aggregates all settings sections. Access via the module-level `config`
    singleton or build one explicitly with ``load_config``.
    """

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    queries: QuerySettings = field(default_factory=QuerySettings)
    balances: BalanceSettings = field(default_factory=BalanceSettings)


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================


def _parse_underflow_policy(value: str) -> UnderflowPolicy | None:
    """Return a recognised underflow policy or None for unknown values."""
    val = value.strip().lower()
    if val in ("fail", "clamp"):
        return val  # type: ignore[return-value]
    return None


def _load_from_ini(parser: configparser.ConfigParser, cfg: LedgerConfig) -> None:
    """Load configuration from parsed INI file into LedgerConfig."""
    # Database section
    if parser.has_section("database"):
        if parser.has_option("database", "path"):
            cfg.database.path = parser.get("database", "path")
        if parser.has_option("database", "busy_timeout_ms"):
            cfg.database.busy_timeout_ms = parser.getint("database", "busy_timeout_ms")

    # Logging section
    if parser.has_section("logging"):
        if parser.has_option("logging", "level"):
            cfg.logging.level = parser.get("logging", "level").upper()
        if parser.has_option("logging", "format"):
            val = parser.get("logging", "format").lower()
            if val in ("simple", "detailed"):
                cfg.logging.format = val  # type: ignore[assignment]

    # Queries section
    if parser.has_section("queries"):
        if parser.has_option("queries", "default_limit"):
            cfg.queries.default_limit = parser.getint("queries", "default_limit")
        if parser.has_option("queries", "max_limit"):
            cfg.queries.max_limit = parser.getint("queries", "max_limit")

    # Balances section
    if parser.has_section("balances"):
        if parser.has_option("balances", "underflow_policy"):
            policy = _parse_underflow_policy(parser.get("balances", "underflow_policy"))
            if policy is not None:
                cfg.balances.underflow_policy = policy


def _apply_env_overrides(cfg: LedgerConfig) -> None:
    """Apply environment variable overrides to configuration."""
    if env_db := os.getenv("BRIDGE_LEDGER_DB_PATH"):
        cfg.database.path = env_db
    if env_timeout := os.getenv("BRIDGE_LEDGER_BUSY_TIMEOUT_MS"):
        cfg.database.busy_timeout_ms = int(env_timeout)

    if env_log := os.getenv("BRIDGE_LEDGER_LOG_LEVEL"):
        cfg.logging.level = env_log.upper()

    if env_default_limit := os.getenv("BRIDGE_LEDGER_DEFAULT_LIMIT"):
        cfg.queries.default_limit = int(env_default_limit)
    if env_max_limit := os.getenv("BRIDGE_LEDGER_MAX_LIMIT"):
        cfg.queries.max_limit = int(env_max_limit)

    if env_policy := os.getenv("BRIDGE_LEDGER_UNDERFLOW_POLICY"):
        policy = _parse_underflow_policy(env_policy)
        if policy is not None:
            cfg.balances.underflow_policy = policy


def load_config(config_file: Path | None = None) -> LedgerConfig:
    """
    Load configuration from all sources with proper priority.

    Priority (highest wins):
        1. Environment variables
        2. ``config_file`` when given, else config/ledger.ini
        3. config/ledger.example.ini (fallback for development)
        4. Built-in defaults

    Returns:
        LedgerConfig: Fully populated configuration object.
    """
    cfg = LedgerConfig()

    if config_file is None:
        if CONFIG_FILE.exists():
            config_file = CONFIG_FILE
        elif CONFIG_EXAMPLE.exists():
            config_file = CONFIG_EXAMPLE

    if config_file and Path(config_file).exists():
        parser = configparser.ConfigParser()
        parser.read(config_file)
        _load_from_ini(parser, cfg)

    _apply_env_overrides(cfg)

    return cfg


def reload_config() -> "LedgerConfig":
    """
    Reload configuration from disk and environment.

    Updates the module-level `config` singleton. Stores that were already
    built keep the settings they were created with.

    Returns:
        LedgerConfig: The newly loaded configuration.
    """
    global config
    config = load_config()
    return config


# =============================================================================
# MODULE-LEVEL SINGLETON
# =============================================================================

config = load_config()


def get_config_status() -> dict:
    """
    Get configuration status for diagnostics.

    Returns a dictionary with configuration source information.
    """
    return {
        "config_file_exists": CONFIG_FILE.exists(),
        "config_file_path": str(CONFIG_FILE),
        "using_example": not CONFIG_FILE.exists() and CONFIG_EXAMPLE.exists(),
        "database_path": str(config.database.absolute_path),
        "underflow_policy": config.balances.underflow_policy,
    }
