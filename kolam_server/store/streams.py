"""
Stream and entry store for Kolam.

This module manages the plain CRUD surface around the versioning engine:
- Stream create/list/update/delete
- Entry create/read/update/delete
- Substring search over entry content
- First-run tutorial stream

Invariants:
    - sequence_id comes from the stream's next_sequence_id counter, which
      only moves forward, so deleted entries never give their number back
    - update_entry_content never touches version bookkeeping
    - Writes to an entry advance its stream's updated_at
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from ..errors import EntryNotFoundError, InvalidInputError, StreamNotFoundError
from .database import Database, decode_json, encode_json
from .models import (
    ENTRY_ROLES,
    AiMetadata,
    Entry,
    Stream,
    StreamMetadata,
    StreamWithEntries,
)

logger = logging.getLogger(__name__)

ENTRY_COLUMNS = (
    "id, stream_id, role, content, sequence_id, version_head, is_staged, "
    "parent_context_ids, ai_metadata, created_at, updated_at"
)

TUTORIAL_TITLE = "Welcome to Kolam Ikan"


def row_to_entry(row: sqlite3.Row) -> Entry:
    """Build an Entry from a row selected with ENTRY_COLUMNS."""
    entry_id = row["id"]
    parent_ids = decode_json(
        row["parent_context_ids"],
        None,
        column="parent_context_ids",
        record_id=entry_id,
        expected_type=list,
    )
    metadata_raw = decode_json(
        row["ai_metadata"],
        None,
        column="ai_metadata",
        record_id=entry_id,
        expected_type=dict,
    )
    ai_metadata = None
    if metadata_raw is not None:
        try:
            ai_metadata = AiMetadata.from_dict(metadata_raw)
        except KeyError as e:
            logger.warning(f"Incomplete ai_metadata for {entry_id}, ignoring: missing {e}")

    return Entry(
        id=entry_id,
        stream_id=row["stream_id"],
        role=row["role"],
        content=decode_json(
            row["content"], {}, column="content", record_id=entry_id, expected_type=dict
        ),
        sequence_id=row["sequence_id"],
        version_head=row["version_head"],
        is_staged=bool(row["is_staged"]),
        parent_context_ids=parent_ids,
        ai_metadata=ai_metadata,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def touch_stream_for_entry(conn: sqlite3.Connection, entry_id: str, now: int) -> None:
    """Advance updated_at of the stream owning ``entry_id``."""
    conn.execute(
        """
        UPDATE streams SET updated_at = ?
        WHERE id = (SELECT stream_id FROM entries WHERE id = ?)
        """,
        (now, entry_id),
    )


class StreamStore:
    """Stream and entry CRUD over the shared database.

    Example:
        >>> streams = StreamStore(db)
        >>> stream = await streams.create_stream("Ideas")
        >>> entry = await streams.create_entry(stream.id, "user", {"type": "doc"})
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    async def create_stream(
        self,
        title: str,
        description: str | None = None,
        tags: list[str] | None = None,
        color: str | None = None,
        pinned: bool = False,
    ) -> Stream:
        """Create a new stream.

        Args:
            title: Display title
            description: Optional free text
            tags: Tag list
            color: Optional display color
            pinned: Whether the stream lists first

        Returns:
            Created Stream
        """
        stream_id = self.db.new_id()
        now = self.db.now_ms()
        tags = list(tags or [])

        async with self.db.session() as conn:
            conn.execute(
                """
                INSERT INTO streams (id, title, description, tags, color, pinned,
                                     created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (stream_id, title, description, encode_json(tags), color, int(pinned), now, now),
            )

        logger.debug("Created stream", extra={"stream_id": stream_id})

        return Stream(
            id=stream_id,
            title=title,
            description=description,
            tags=tags,
            color=color,
            pinned=pinned,
            created_at=now,
            updated_at=now,
        )

    async def list_streams(self) -> list[StreamMetadata]:
        """List all streams, pinned first, then most recently updated."""
        async with self.db.session() as conn:
            cursor = conn.execute(
                """
                SELECT s.id, s.title, s.pinned, s.color, s.tags, s.updated_at,
                       COUNT(e.id) AS entry_count
                FROM streams s
                LEFT JOIN entries e ON s.id = e.stream_id
                GROUP BY s.id
                ORDER BY s.pinned DESC, s.updated_at DESC
                """
            )
            return [
                StreamMetadata(
                    id=row["id"],
                    title=row["title"],
                    entry_count=row["entry_count"],
                    last_updated=row["updated_at"],
                    pinned=bool(row["pinned"]),
                    color=row["color"],
                    tags=decode_json(
                        row["tags"], [], column="tags", record_id=row["id"], expected_type=list
                    ),
                )
                for row in cursor.fetchall()
            ]

    async def get_stream(self, stream_id: str) -> Stream | None:
        """Get a stream by ID, or None if not found."""
        async with self.db.session() as conn:
            return self._fetch_stream(conn, stream_id)

    async def get_stream_details(self, stream_id: str) -> StreamWithEntries:
        """Get a stream with all its entries in sequence order.

        Raises:
            StreamNotFoundError: If the stream does not exist
        """
        async with self.db.session() as conn:
            stream = self._fetch_stream(conn, stream_id)
            if stream is None:
                raise StreamNotFoundError(stream_id)

            cursor = conn.execute(
                f"SELECT {ENTRY_COLUMNS} FROM entries WHERE stream_id = ? ORDER BY sequence_id ASC",
                (stream_id,),
            )
            entries = [row_to_entry(row) for row in cursor.fetchall()]

        return StreamWithEntries(stream=stream, entries=entries)

    async def update_stream(
        self,
        stream_id: str,
        title: str | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
        color: str | None = None,
        pinned: bool | None = None,
    ) -> Stream:
        """Update stream attributes. Only the given fields change.

        Raises:
            StreamNotFoundError: If the stream does not exist
        """
        now = self.db.now_ms()
        assignments: list[str] = []
        params: list[Any] = []

        if title is not None:
            assignments.append("title = ?")
            params.append(title)
        if description is not None:
            assignments.append("description = ?")
            params.append(description)
        if tags is not None:
            assignments.append("tags = ?")
            params.append(encode_json(list(tags)))
        if color is not None:
            assignments.append("color = ?")
            params.append(color)
        if pinned is not None:
            assignments.append("pinned = ?")
            params.append(int(pinned))

        async with self.db.session() as conn:
            if assignments:
                assignments.append("updated_at = ?")
                params.extend([now, stream_id])
                cursor = conn.execute(
                    f"UPDATE streams SET {', '.join(assignments)} WHERE id = ?",
                    params,
                )
                if cursor.rowcount == 0:
                    raise StreamNotFoundError(stream_id)

            stream = self._fetch_stream(conn, stream_id)
            if stream is None:
                raise StreamNotFoundError(stream_id)
            return stream

    async def delete_stream(self, stream_id: str) -> bool:
        """Delete a stream with its entries, versions and pending blocks.

        Returns:
            True if deleted, False if not found
        """
        async with self.db.session() as conn:
            cursor = conn.execute("DELETE FROM streams WHERE id = ?", (stream_id,))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted stream: {stream_id}")
        return deleted

    def _fetch_stream(self, conn: sqlite3.Connection, stream_id: str) -> Stream | None:
        cursor = conn.execute(
            """
            SELECT id, title, description, tags, color, pinned, created_at, updated_at
            FROM streams WHERE id = ?
            """,
            (stream_id,),
        )
        row = cursor.fetchone()
        if not row:
            return None

        return Stream(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            tags=decode_json(row["tags"], [], column="tags", record_id=row["id"], expected_type=list),
            color=row["color"],
            pinned=bool(row["pinned"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def create_entry(
        self,
        stream_id: str,
        role: str,
        content: dict[str, Any],
        ai_metadata: AiMetadata | None = None,
        parent_context_ids: list[str] | None = None,
    ) -> Entry:
        """Append a new entry to a stream.

        Args:
            stream_id: Owning stream
            role: 'user' or 'ai'
            content: Structured document
            ai_metadata: Provenance for AI entries
            parent_context_ids: Entries an AI response was generated from

        Returns:
            Created Entry with version_head 0 and not staged

        Raises:
            InvalidInputError: If role is not 'user' or 'ai'
            StreamNotFoundError: If the stream does not exist
        """
        if role not in ENTRY_ROLES:
            raise InvalidInputError(
                f"Invalid role '{role}'. Must be one of: {', '.join(ENTRY_ROLES)}",
                field_name="role",
            )

        entry_id = self.db.new_id()
        now = self.db.now_ms()
        parent_ids = list(parent_context_ids) if parent_context_ids is not None else None

        async with self.db.session() as conn:
            with self.db.transaction(conn):
                if self._fetch_stream(conn, stream_id) is None:
                    raise StreamNotFoundError(stream_id)

                row = conn.execute(
                    "SELECT next_sequence_id FROM streams WHERE id = ?", (stream_id,)
                ).fetchone()
                sequence_id = row[0]
                conn.execute(
                    "UPDATE streams SET next_sequence_id = ? WHERE id = ?",
                    (sequence_id + 1, stream_id),
                )

                conn.execute(
                    f"""
                    INSERT INTO entries ({ENTRY_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, 0, 0, ?, ?, ?, ?)
                    """,
                    (
                        entry_id,
                        stream_id,
                        role,
                        encode_json(content),
                        sequence_id,
                        encode_json(parent_ids) if parent_ids is not None else None,
                        encode_json(ai_metadata.to_dict()) if ai_metadata else None,
                        now,
                        now,
                    ),
                )

                conn.execute(
                    "UPDATE streams SET updated_at = ? WHERE id = ?",
                    (now, stream_id),
                )

        logger.debug(
            "Created entry",
            extra={"stream_id": stream_id, "entry_id": entry_id, "sequence_id": sequence_id},
        )

        return Entry(
            id=entry_id,
            stream_id=stream_id,
            role=role,
            content=content,
            sequence_id=sequence_id,
            version_head=0,
            is_staged=False,
            parent_context_ids=parent_ids,
            ai_metadata=ai_metadata,
            created_at=now,
            updated_at=now,
        )

    async def get_entry(self, entry_id: str) -> Entry | None:
        """Get an entry by ID, or None if not found."""
        async with self.db.session() as conn:
            row = conn.execute(
                f"SELECT {ENTRY_COLUMNS} FROM entries WHERE id = ?",
                (entry_id,),
            ).fetchone()
            return row_to_entry(row) if row else None

    async def update_entry_content(self, entry_id: str, content: dict[str, Any]) -> None:
        """Replace an entry's current content in place.

        No version is created and version_head is unchanged.

        Raises:
            EntryNotFoundError: If the entry does not exist
        """
        now = self.db.now_ms()
        async with self.db.session() as conn:
            cursor = conn.execute(
                "UPDATE entries SET content = ?, updated_at = ? WHERE id = ?",
                (encode_json(content), now, entry_id),
            )
            if cursor.rowcount == 0:
                raise EntryNotFoundError(entry_id)
            touch_stream_for_entry(conn, entry_id, now)

    async def delete_entry(self, entry_id: str) -> bool:
        """Delete an entry and its versions.

        Returns:
            True if deleted, False if not found
        """
        async with self.db.session() as conn:
            cursor = conn.execute("DELETE FROM entries WHERE id = ?", (entry_id,))
            return cursor.rowcount > 0

    async def search_entries(self, query: str, limit: int = 50) -> list[Entry]:
        """Find entries whose stored content contains ``query``.

        Matching is a case-insensitive (ASCII) substring test over the
        serialized document, most recently updated first.

        Args:
            query: Substring to look for
            limit: Maximum entries to return
        """
        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        async with self.db.session() as conn:
            cursor = conn.execute(
                f"""
                SELECT {ENTRY_COLUMNS} FROM entries
                WHERE content LIKE ? ESCAPE '\\'
                ORDER BY updated_at DESC
                LIMIT ?
                """,
                (f"%{escaped}%", limit),
            )
            return [row_to_entry(row) for row in cursor.fetchall()]

    # ------------------------------------------------------------------
    # First run
    # ------------------------------------------------------------------

    async def seed_tutorial_stream(self) -> Stream | None:
        """Create the welcome stream when the database has no streams.

        Returns:
            The created Stream, or None if streams already existed
        """
        async with self.db.session() as conn:
            count = conn.execute("SELECT COUNT(*) FROM streams").fetchone()[0]
        if count:
            return None

        stream = await self.create_stream(
            TUTORIAL_TITLE,
            description="Your first stream - feel free to experiment here!",
            tags=["tutorial"],
            pinned=True,
        )
        await self.create_entry(stream.id, "user", _tutorial_document())
        await self.create_entry(
            stream.id,
            "user",
            {"type": "doc", "content": [{"type": "paragraph", "content": []}]},
        )

        logger.info(f"Seeded tutorial stream: {stream.id}")
        return stream


def _text(text: str, bold: bool = False) -> dict[str, Any]:
    node: dict[str, Any] = {"type": "text", "text": text}
    if bold:
        node["marks"] = [{"type": "bold"}]
    return node


def _step(title: str, body: str) -> dict[str, Any]:
    return {
        "type": "listItem",
        "content": [{"type": "paragraph", "content": [_text(title, bold=True), _text(body)]}],
    }


def _tutorial_document() -> dict[str, Any]:
    return {
        "type": "doc",
        "content": [
            {"type": "heading", "attrs": {"level": 1}, "content": [_text("Welcome!")]},
            {
                "type": "paragraph",
                "content": [
                    _text("Kolam Ikan is your personal thinking space. Here's how it works:")
                ],
            },
            {
                "type": "orderedList",
                "content": [
                    _step("Write freely", " - Just start typing your thoughts."),
                    _step(
                        "Stage context",
                        " - Check the boxes next to entries you want to send to AI.",
                    ),
                    _step(
                        "Choose a directive",
                        " - DUMP (refactor), CRITIQUE (find gaps), or GENERATE (expand).",
                    ),
                    _step(
                        "Copy & paste",
                        " - Use the bridge buttons to connect with ChatGPT, Claude, or Gemini.",
                    ),
                ],
            },
        ],
    }
