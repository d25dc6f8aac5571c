"""
Pending block ledger for Kolam bridge exports.

A pending block records one export that is waiting for a pasted response:
the stream, the entry ids staged at export time, the directive and the
bridge key embedded in the prompt.

Invariants:
    - staged_context_ids are stored verbatim and never follow later staging
    - Several blocks may exist per stream; the newest is the active one
    - A block is either outstanding or deleted; "matched" is decided by the
      caller and not stored
    - Blocks never expire on their own
"""

from __future__ import annotations

import logging
import sqlite3

from ..errors import StreamNotFoundError
from .database import Database, decode_json, encode_json
from .models import PendingBlock

logger = logging.getLogger(__name__)

PENDING_COLUMNS = "id, stream_id, bridge_key, staged_context_ids, directive, created_at"


def row_to_pending_block(row: sqlite3.Row) -> PendingBlock:
    ids = decode_json(
        row["staged_context_ids"],
        [],
        column="staged_context_ids",
        record_id=row["id"],
        expected_type=list,
    )
    return PendingBlock(
        id=row["id"],
        stream_id=row["stream_id"],
        bridge_key=row["bridge_key"],
        staged_context_ids=tuple(str(i) for i in ids),
        directive=row["directive"],
        created_at=row["created_at"],
    )


class PendingBlockLedger:
    """Outstanding exports per stream.

    Example:
        >>> ledger = PendingBlockLedger(db)
        >>> block = await ledger.create(stream.id, "k3y9", [e1.id, e2.id], "CRITIQUE")
        >>> (await ledger.latest(stream.id)).bridge_key
        'k3y9'
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(
        self,
        stream_id: str,
        bridge_key: str,
        staged_context_ids: list[str],
        directive: str,
        created_at: int | None = None,
    ) -> PendingBlock:
        """Record an outstanding export.

        Args:
            stream_id: Stream the export was made from
            bridge_key: Key embedded in the exported prompt
            staged_context_ids: Entry ids staged at export time
            directive: Directive label
            created_at: Optional creation timestamp

        Returns:
            Created PendingBlock

        Raises:
            StreamNotFoundError: If the stream does not exist
        """
        block_id = self.db.new_id()
        now = created_at if created_at is not None else self.db.now_ms()
        ids = tuple(staged_context_ids)

        async with self.db.session() as conn:
            try:
                conn.execute(
                    f"""
                    INSERT INTO pending_blocks ({PENDING_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (block_id, stream_id, bridge_key, encode_json(list(ids)), directive, now),
                )
            except sqlite3.IntegrityError:
                raise StreamNotFoundError(stream_id) from None

        logger.info(
            "Created pending block",
            extra={
                "stream_id": stream_id,
                "pending_block_id": block_id,
                "directive": directive,
                "staged_count": len(ids),
            },
        )

        return PendingBlock(
            id=block_id,
            stream_id=stream_id,
            bridge_key=bridge_key,
            staged_context_ids=ids,
            directive=directive,
            created_at=now,
        )

    async def latest(self, stream_id: str) -> PendingBlock | None:
        """The active block: greatest created_at, last inserted on ties."""
        async with self.db.session() as conn:
            row = conn.execute(
                f"""
                SELECT {PENDING_COLUMNS} FROM pending_blocks
                WHERE stream_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT 1
                """,
                (stream_id,),
            ).fetchone()
            return row_to_pending_block(row) if row else None

    async def get(self, pending_block_id: str) -> PendingBlock | None:
        """Get a block by ID, or None if not found."""
        async with self.db.session() as conn:
            row = conn.execute(
                f"SELECT {PENDING_COLUMNS} FROM pending_blocks WHERE id = ?",
                (pending_block_id,),
            ).fetchone()
            return row_to_pending_block(row) if row else None

    async def list_for_stream(self, stream_id: str) -> list[PendingBlock]:
        """All outstanding blocks of a stream, newest first."""
        async with self.db.session() as conn:
            cursor = conn.execute(
                f"""
                SELECT {PENDING_COLUMNS} FROM pending_blocks
                WHERE stream_id = ?
                ORDER BY created_at DESC, rowid DESC
                """,
                (stream_id,),
            )
            return [row_to_pending_block(row) for row in cursor.fetchall()]

    async def delete(self, pending_block_id: str) -> bool:
        """Remove a consumed or abandoned block.

        Returns:
            True if deleted, False if not found
        """
        async with self.db.session() as conn:
            cursor = conn.execute(
                "DELETE FROM pending_blocks WHERE id = ?",
                (pending_block_id,),
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted pending block: {pending_block_id}")
        return deleted
