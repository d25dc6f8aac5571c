"""
Staging set for Kolam exports.

Staging marks entries for inclusion in the next bridge export. The mark is
the is_staged column on entries; there is no separate table.

Invariants:
    - set_staged is idempotent
    - list_staged is ordered by sequence_id ascending; export packaging
      depends on that document order
"""

from __future__ import annotations

import logging

from ..errors import EntryNotFoundError
from .database import Database
from .models import Entry
from .streams import ENTRY_COLUMNS, row_to_entry

logger = logging.getLogger(__name__)


class StagingSet:
    """Per-stream set of entries staged for export."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def set_staged(self, entry_id: str, staged: bool) -> None:
        """Stage or unstage one entry.

        Raises:
            EntryNotFoundError: If the entry does not exist
        """
        async with self.db.session() as conn:
            cursor = conn.execute(
                "UPDATE entries SET is_staged = ? WHERE id = ?",
                (int(staged), entry_id),
            )
            if cursor.rowcount == 0:
                raise EntryNotFoundError(entry_id)

    async def set_many(self, entry_ids: list[str], staged: bool) -> int:
        """Stage or unstage several entries at once, skipping unknown ids.

        Returns:
            Number of entries updated
        """
        if not entry_ids:
            return 0
        placeholders = ",".join("?" for _ in entry_ids)
        async with self.db.session() as conn:
            cursor = conn.execute(
                f"UPDATE entries SET is_staged = ? WHERE id IN ({placeholders})",
                [int(staged), *entry_ids],
            )
            return cursor.rowcount

    async def clear_all(self, stream_id: str) -> int:
        """Unstage every entry in the stream in one statement.

        Returns:
            Number of entries that were staged
        """
        async with self.db.session() as conn:
            cursor = conn.execute(
                "UPDATE entries SET is_staged = 0 WHERE stream_id = ? AND is_staged = 1",
                (stream_id,),
            )
            cleared = cursor.rowcount

        logger.debug("Cleared staging", extra={"stream_id": stream_id, "count": cleared})
        return cleared

    async def list_staged(self, stream_id: str) -> list[Entry]:
        """Staged entries of the stream in sequence order."""
        async with self.db.session() as conn:
            cursor = conn.execute(
                f"""
                SELECT {ENTRY_COLUMNS} FROM entries
                WHERE stream_id = ? AND is_staged = 1
                ORDER BY sequence_id ASC
                """,
                (stream_id,),
            )
            return [row_to_entry(row) for row in cursor.fetchall()]

    async def staged_ids(self, stream_id: str) -> list[str]:
        """Ids of the staged entries in sequence order."""
        return [entry.id for entry in await self.list_staged(stream_id)]
