"""
Shared SQLite database for the Kolam stores.

This module owns the single connection every store operates on:
- Schema creation and version tracking
- Serialized access through one lock held for the whole operation
- Explicit transactions for multi-statement writes
- Clock and id generation for new records
- Tolerant JSON decoding of structured columns

Invariants:
    - One connection per Database, never shared with another Database
    - At most one store operation runs at a time (the session lock)
    - Malformed JSON in a stored column decodes to the column default
    - Foreign keys are enforced, so deleting a stream removes its entries,
      versions and pending blocks, and deleting an entry removes its versions

How to change safely:
    - Schema changes must be backward compatible (add columns with defaults)
    - Bump SCHEMA_VERSION and record the migration in _create_schema
    - Keep JSON encoding inside the store modules

Table schema:
    streams:
        - id TEXT PRIMARY KEY
        - title TEXT, description TEXT, color TEXT
        - tags TEXT (JSON list)
        - pinned INTEGER
        - next_sequence_id INTEGER (counter, never decreases)
        - created_at, updated_at INTEGER (Unix ms)

    entries:
        - id TEXT PRIMARY KEY
        - stream_id TEXT -> streams(id) ON DELETE CASCADE
        - role TEXT ('user' | 'ai')
        - content TEXT (JSON document)
        - sequence_id INTEGER
        - version_head INTEGER
        - is_staged INTEGER
        - parent_context_ids TEXT (JSON list, nullable)
        - ai_metadata TEXT (JSON object, nullable)
        - created_at, updated_at INTEGER

    entry_versions:
        - id TEXT PRIMARY KEY
        - entry_id TEXT -> entries(id) ON DELETE CASCADE
        - version_number INTEGER, UNIQUE (entry_id, version_number)
        - content_snapshot TEXT (JSON document)
        - commit_message TEXT
        - committed_at INTEGER

    pending_blocks:
        - id TEXT PRIMARY KEY
        - stream_id TEXT -> streams(id) ON DELETE CASCADE
        - bridge_key TEXT
        - staged_context_ids TEXT (JSON list)
        - directive TEXT
        - created_at INTEGER
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
import uuid
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import Any

from ..config import StorageConfig
from ..errors import LockUnavailableError

logger = logging.getLogger(__name__)


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


def _uuid4() -> str:
    return str(uuid.uuid4())


class Database:
    """Single-connection SQLite database guarded by one lock.

    Every store method runs inside ``session()``, which holds the lock for
    the full duration of the call. Lock acquisition gives up after
    ``lock_timeout_ms`` and raises LockUnavailableError instead of retrying.

    Example:
        >>> db = Database(":memory:")
        >>> await db.initialize()
        >>> async with db.session() as conn:
        ...     conn.execute("SELECT COUNT(*) FROM streams").fetchone()
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        lock_timeout_ms: int = 10000,
        clock: Callable[[], int] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        """Initialize the database handle.

        Args:
            db_path: SQLite database file or ":memory:"
            wal_mode: Enable SQLite WAL mode (ignored for ":memory:")
            busy_timeout_ms: SQLite busy timeout
            lock_timeout_ms: Maximum wait for the session lock
            clock: Returns the current time in Unix ms
            id_factory: Returns a new unique record id
        """
        self.db_path = db_path
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.lock_timeout_ms = lock_timeout_ms
        self._clock = clock or _wall_clock_ms
        self._id_factory = id_factory or _uuid4
        self._conn: sqlite3.Connection | None = None
        self._closed = False
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: StorageConfig) -> Database:
        return cls(
            config.db_path,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
            lock_timeout_ms=config.lock_timeout_ms,
        )

    @property
    def is_memory(self) -> bool:
        return self.db_path == ":memory:"

    @property
    def closed(self) -> bool:
        return self._closed

    def now_ms(self) -> int:
        """Current time in Unix milliseconds."""
        return self._clock()

    def new_id(self) -> str:
        """New unique record identifier."""
        return self._id_factory()

    async def initialize(self) -> None:
        """Open the connection and create the schema if needed."""
        async with self._lock:
            if self._conn is not None:
                return
            if self._closed:
                raise LockUnavailableError(f"Database is closed: {self.db_path}")

            if not self.is_memory:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            conn = sqlite3.connect(
                self.db_path,
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row

            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode and not self.is_memory:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            self._create_schema(conn)
            self._conn = conn

        logger.info(f"Opened database: {self.db_path}")

    async def close(self) -> None:
        """Close the connection. Later sessions raise LockUnavailableError."""
        async with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            self._closed = True
        logger.info(f"Closed database: {self.db_path}")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[sqlite3.Connection]:
        """Hold the connection exclusively for one store operation.

        Yields:
            The shared SQLite connection

        Raises:
            LockUnavailableError: If the lock times out or the database is closed
        """
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self.lock_timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            raise LockUnavailableError(
                f"Timed out after {self.lock_timeout_ms}ms waiting for database lock"
            ) from None

        try:
            if self._closed or self._conn is None:
                raise LockUnavailableError(
                    f"Database is not open: {self.db_path}"
                    if not self._closed
                    else f"Database is closed: {self.db_path}"
                )
            yield self._conn
        finally:
            self._lock.release()

    @staticmethod
    @contextmanager
    def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements in one IMMEDIATE transaction."""
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            -- Schema version tracking
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            -- Streams
            CREATE TABLE IF NOT EXISTS streams (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT,
                tags TEXT NOT NULL DEFAULT '[]',
                color TEXT,
                pinned INTEGER NOT NULL DEFAULT 0,
                next_sequence_id INTEGER NOT NULL DEFAULT 1,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            -- Entries
            CREATE TABLE IF NOT EXISTS entries (
                id TEXT PRIMARY KEY,
                stream_id TEXT NOT NULL,
                role TEXT NOT NULL CHECK (role IN ('user', 'ai')),
                content TEXT NOT NULL,
                sequence_id INTEGER NOT NULL,
                version_head INTEGER NOT NULL DEFAULT 0,
                is_staged INTEGER NOT NULL DEFAULT 0,
                parent_context_ids TEXT,
                ai_metadata TEXT,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                FOREIGN KEY (stream_id) REFERENCES streams(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_entries_stream_id ON entries(stream_id);
            CREATE INDEX IF NOT EXISTS idx_entries_sequence ON entries(stream_id, sequence_id);

            -- Versions
            CREATE TABLE IF NOT EXISTS entry_versions (
                id TEXT PRIMARY KEY,
                entry_id TEXT NOT NULL,
                version_number INTEGER NOT NULL,
                content_snapshot TEXT NOT NULL,
                commit_message TEXT,
                committed_at INTEGER NOT NULL,
                UNIQUE (entry_id, version_number),
                FOREIGN KEY (entry_id) REFERENCES entries(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_entry_versions_entry_id ON entry_versions(entry_id);

            -- Pending blocks awaiting a pasted response
            CREATE TABLE IF NOT EXISTS pending_blocks (
                id TEXT PRIMARY KEY,
                stream_id TEXT NOT NULL,
                bridge_key TEXT NOT NULL,
                staged_context_ids TEXT NOT NULL,
                directive TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                FOREIGN KEY (stream_id) REFERENCES streams(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_pending_blocks_stream
                ON pending_blocks(stream_id, created_at DESC);

            -- Record schema version
            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)


def encode_json(value: Any) -> str:
    """Encode a structured value for storage."""
    return json.dumps(value, ensure_ascii=False)


def decode_json(
    raw: str | None,
    default: Any,
    *,
    column: str,
    record_id: str,
    expected_type: type | None = None,
) -> Any:
    """Decode a stored JSON column, falling back to ``default``.

    A corrupt side-channel column must never block access to the row, so
    decode failures (and values of the wrong shape) are logged and replaced.

    Args:
        raw: Stored text, possibly None
        default: Value returned for NULL, malformed or mistyped data
        column: Column name for the log message
        record_id: Row id for the log message
        expected_type: Required Python type of the decoded value

    Returns:
        Decoded value or default
    """
    if raw is None:
        return default
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Malformed JSON in {column} for {record_id}, using default: {e}")
        return default
    if expected_type is not None and not isinstance(value, expected_type):
        logger.warning(
            f"Unexpected JSON type in {column} for {record_id}: "
            f"{type(value).__name__}, using default"
        )
        return default
    return value
