"""
Configuration management for the Kolam server.

All configuration is done via environment variables.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local use
    - The bridge key format is a wire contract and is not configurable
    - An in-memory database (":memory:") is accepted for tests and demos

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep environment variable names stable; the CLI and server share them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = os.path.join(os.path.expanduser("~"), ".kolam", "kolam_ikan.db")


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        db_path: SQLite database file (or ":memory:")
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        lock_timeout_ms: Maximum wait for the shared connection lock
        seed_tutorial: Create the welcome stream on an empty database
    """

    db_path: str = DEFAULT_DB_PATH
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    lock_timeout_ms: int = 10000
    seed_tutorial: bool = True

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            db_path=os.getenv("KOLAM_DB_PATH", DEFAULT_DB_PATH),
            wal_mode=os.getenv("KOLAM_SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("KOLAM_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            lock_timeout_ms=int(os.getenv("KOLAM_LOCK_TIMEOUT_MS", "10000")),
            seed_tutorial=os.getenv("KOLAM_SEED_TUTORIAL", "true").lower() == "true",
        )


@dataclass(frozen=True)
class BridgeConfig:
    """Bridge export configuration.

    Attributes:
        token_limit: Maximum estimated tokens for one exported prompt
        search_limit: Maximum entries returned by substring search
    """

    token_limit: int = 128000
    search_limit: int = 50

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Load configuration from environment variables."""
        return cls(
            token_limit=int(os.getenv("KOLAM_TOKEN_LIMIT", "128000")),
            search_limit=int(os.getenv("KOLAM_SEARCH_LIMIT", "50")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("KOLAM_LOG_LEVEL", "INFO"),
            log_format=os.getenv("KOLAM_LOG_FORMAT", "text"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        storage: Local storage configuration
        bridge: Bridge export configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            bridge=BridgeConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.db_path:
            raise ValueError("KOLAM_DB_PATH must not be empty")
        if self.storage.lock_timeout_ms <= 0:
            raise ValueError("KOLAM_LOCK_TIMEOUT_MS must be positive")
        if self.bridge.token_limit <= 0:
            raise ValueError("KOLAM_TOKEN_LIMIT must be positive")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid KOLAM_LOG_FORMAT '{self.observability.log_format}'. "
                "Must be one of: json, text"
            )

        if self.storage.db_path != ":memory:":
            parent = os.path.dirname(self.storage.db_path)
            if parent and not os.path.exists(parent):
                logger.warning(
                    f"Database directory does not exist: {parent}. "
                    "It will be created on first open."
                )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "db_path": self.storage.db_path,
                "wal_mode": self.storage.wal_mode,
                "lock_timeout_ms": self.storage.lock_timeout_ms,
                "token_limit": self.bridge.token_limit,
                "log_level": self.observability.log_level,
            },
        )
