"""
Entry versioning engine for Kolam.

This module snapshots entry content as immutable, numbered versions:
- commit: append the next version from the entry's current content
- revert: restore an earlier snapshot into the current content
- list/latest/get: read the version ledger

Invariants:
    - For each entry, version numbers are exactly 1..N with no gaps
    - commit is the only writer of entries.version_head
    - version_head equals the highest version number after every commit
    - revert restores content only; it neither creates a version nor
      moves version_head
    - Versions are never updated; they disappear only with their entry

How to change safely:
    - Keep the version insert and the version_head update in one transaction
    - The stream timestamp touch after commit is advisory and may be
      skipped if the process dies between statements
"""

from __future__ import annotations

import logging
import sqlite3

from ..errors import EntryNotFoundError, VersionNotFoundError
from .database import Database, decode_json
from .models import EntryVersion
from .streams import touch_stream_for_entry

logger = logging.getLogger(__name__)

VERSION_COLUMNS = (
    "id, entry_id, version_number, content_snapshot, commit_message, committed_at"
)


def row_to_version(row: sqlite3.Row) -> EntryVersion:
    return EntryVersion(
        id=row["id"],
        entry_id=row["entry_id"],
        version_number=row["version_number"],
        content_snapshot=decode_json(
            row["content_snapshot"],
            {},
            column="content_snapshot",
            record_id=row["id"],
            expected_type=dict,
        ),
        commit_message=row["commit_message"],
        committed_at=row["committed_at"],
    )


class ContentStore:
    """Commit and revert entry content against its version ledger.

    Example:
        >>> versions = ContentStore(db)
        >>> v1 = await versions.commit(entry.id, "first draft")
        >>> v1.version_number
        1
        >>> await versions.revert(entry.id, 1)
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def commit(self, entry_id: str, message: str | None = None) -> EntryVersion:
        """Snapshot the entry's current content as the next version.

        Args:
            entry_id: Entry to snapshot
            message: Optional commit message

        Returns:
            The created EntryVersion

        Raises:
            EntryNotFoundError: If the entry does not exist
        """
        version_id = self.db.new_id()
        now = self.db.now_ms()

        async with self.db.session() as conn:
            with self.db.transaction(conn):
                row = conn.execute(
                    "SELECT content, version_head FROM entries WHERE id = ?",
                    (entry_id,),
                ).fetchone()
                if not row:
                    raise EntryNotFoundError(entry_id)

                content_text = row["content"]
                new_version = row["version_head"] + 1

                conn.execute(
                    f"""
                    INSERT INTO entry_versions ({VERSION_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (version_id, entry_id, new_version, content_text, message, now),
                )
                conn.execute(
                    "UPDATE entries SET version_head = ? WHERE id = ?",
                    (new_version, entry_id),
                )

            touch_stream_for_entry(conn, entry_id, now)

        logger.debug(
            "Committed entry version",
            extra={"entry_id": entry_id, "version_number": new_version},
        )

        return EntryVersion(
            id=version_id,
            entry_id=entry_id,
            version_number=new_version,
            content_snapshot=decode_json(
                content_text, {}, column="content", record_id=entry_id, expected_type=dict
            ),
            commit_message=message,
            committed_at=now,
        )

    async def revert(self, entry_id: str, version_number: int) -> None:
        """Restore an entry's content from one of its versions.

        version_head is left as it is and no version is created.

        Args:
            entry_id: Entry to restore
            version_number: Version whose snapshot becomes the current content

        Raises:
            VersionNotFoundError: If the entry has no such version
        """
        now = self.db.now_ms()

        async with self.db.session() as conn:
            with self.db.transaction(conn):
                row = conn.execute(
                    """
                    SELECT content_snapshot FROM entry_versions
                    WHERE entry_id = ? AND version_number = ?
                    """,
                    (entry_id, version_number),
                ).fetchone()
                if not row:
                    raise VersionNotFoundError(entry_id, version_number)

                conn.execute(
                    "UPDATE entries SET content = ?, updated_at = ? WHERE id = ?",
                    (row["content_snapshot"], now, entry_id),
                )

        logger.debug(
            "Reverted entry content",
            extra={"entry_id": entry_id, "version_number": version_number},
        )

    async def list_versions(self, entry_id: str) -> list[EntryVersion]:
        """All versions of an entry, newest first."""
        async with self.db.session() as conn:
            cursor = conn.execute(
                f"""
                SELECT {VERSION_COLUMNS} FROM entry_versions
                WHERE entry_id = ?
                ORDER BY version_number DESC
                """,
                (entry_id,),
            )
            return [row_to_version(row) for row in cursor.fetchall()]

    async def latest_version(self, entry_id: str) -> EntryVersion | None:
        """The highest-numbered version, or None if nothing was committed."""
        async with self.db.session() as conn:
            row = conn.execute(
                f"""
                SELECT {VERSION_COLUMNS} FROM entry_versions
                WHERE entry_id = ?
                ORDER BY version_number DESC
                LIMIT 1
                """,
                (entry_id,),
            ).fetchone()
            return row_to_version(row) if row else None

    async def get_version(self, entry_id: str, version_number: int) -> EntryVersion | None:
        """A specific version, or None if it does not exist."""
        async with self.db.session() as conn:
            row = conn.execute(
                f"""
                SELECT {VERSION_COLUMNS} FROM entry_versions
                WHERE entry_id = ? AND version_number = ?
                """,
                (entry_id, version_number),
            ).fetchone()
            return row_to_version(row) if row else None
