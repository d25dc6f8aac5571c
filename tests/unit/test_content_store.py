"""
Unit tests for the entry versioning engine.

Tests cover:
- Commit numbering and snapshots
- Revert semantics (content only, history untouched)
- Version queries
- Missing entries and versions
"""

import itertools
import os
import tempfile

import pytest

from kolam_server.errors import EntryNotFoundError, VersionNotFoundError
from kolam_server.store import ContentStore, Database, StreamStore


def doc(text: str) -> dict:
    return {"type": "doc", "content": [{"type": "paragraph", "content": [{"type": "text", "text": text}]}]}


class TestContentStore:
    """Tests for ContentStore."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    async def db(self, data_dir):
        counter = itertools.count(1_700_000_000_000, 1000)
        db = Database(
            os.path.join(data_dir, "kolam.db"), wal_mode=False, clock=lambda: next(counter)
        )
        await db.initialize()
        yield db
        await db.close()

    @pytest.fixture
    def streams(self, db):
        return StreamStore(db)

    @pytest.fixture
    def content(self, db):
        return ContentStore(db)

    @pytest.fixture
    async def entry(self, streams):
        """Entry in a fresh stream with working content 'A'."""
        stream = await streams.create_stream("Versions")
        return await streams.create_entry(stream.id, "user", doc("A"))

    @pytest.mark.asyncio
    async def test_first_commit_is_version_one(self, content, streams, entry):
        """Committing an uncommitted entry creates version 1."""
        version = await content.commit(entry.id, "first")

        assert version.version_number == 1
        assert version.content_snapshot == doc("A")
        assert version.commit_message == "first"
        assert (await streams.get_entry(entry.id)).version_head == 1

    @pytest.mark.asyncio
    async def test_commits_are_contiguous(self, content, streams, entry):
        """Version numbers run 1..N with no gaps."""
        for text in ("B", "C", "D"):
            await content.commit(entry.id)
            await streams.update_entry_content(entry.id, doc(text))
        await content.commit(entry.id)

        versions = await content.list_versions(entry.id)
        assert [v.version_number for v in versions] == [4, 3, 2, 1]
        assert [v.content_snapshot for v in reversed(versions)] == [
            doc("A"),
            doc("B"),
            doc("C"),
            doc("D"),
        ]
        assert (await streams.get_entry(entry.id)).version_head == 4

    @pytest.mark.asyncio
    async def test_commit_without_changes_still_versions(self, content, entry):
        """Identical content still produces a new version."""
        first = await content.commit(entry.id)
        second = await content.commit(entry.id)
        assert (first.version_number, second.version_number) == (1, 2)
        assert first.content_snapshot == second.content_snapshot

    @pytest.mark.asyncio
    async def test_commit_touches_stream(self, content, streams, entry):
        before = await streams.get_stream(entry.stream_id)
        version = await content.commit(entry.id)
        after = await streams.get_stream(entry.stream_id)
        assert after.updated_at == version.committed_at
        assert after.updated_at > before.updated_at

    @pytest.mark.asyncio
    async def test_commit_missing_entry(self, content):
        with pytest.raises(EntryNotFoundError):
            await content.commit("missing")

    @pytest.mark.asyncio
    async def test_snapshot_is_isolated_from_later_edits(self, content, streams, entry):
        """Editing the entry after commit leaves the snapshot alone."""
        await content.commit(entry.id)
        await streams.update_entry_content(entry.id, doc("changed"))

        version = await content.get_version(entry.id, 1)
        assert version.content_snapshot == doc("A")

    @pytest.mark.asyncio
    async def test_revert_restores_content(self, content, streams, entry):
        await content.commit(entry.id)
        await streams.update_entry_content(entry.id, doc("B"))
        await content.commit(entry.id)

        await content.revert(entry.id, 1)

        assert (await streams.get_entry(entry.id)).content == doc("A")

    @pytest.mark.asyncio
    async def test_revert_does_not_move_version_head(self, content, streams, entry):
        """Regression: revert leaves version_head and history unchanged."""
        await content.commit(entry.id)
        await streams.update_entry_content(entry.id, doc("B"))
        await content.commit(entry.id)

        await content.revert(entry.id, 1)

        fetched = await streams.get_entry(entry.id)
        assert fetched.version_head == 2
        assert len(await content.list_versions(entry.id)) == 2

    @pytest.mark.asyncio
    async def test_commit_after_revert_continues_numbering(self, content, streams, entry):
        """A commit after revert snapshots the reverted content as N+1."""
        await content.commit(entry.id)
        await streams.update_entry_content(entry.id, doc("B"))
        await content.commit(entry.id)
        await content.revert(entry.id, 1)

        version = await content.commit(entry.id, "back to A")

        assert version.version_number == 3
        assert version.content_snapshot == doc("A")

    @pytest.mark.asyncio
    async def test_revert_missing_version(self, content, streams, entry):
        """Reverting to a version that does not exist changes nothing."""
        await content.commit(entry.id)
        await streams.update_entry_content(entry.id, doc("B"))

        with pytest.raises(VersionNotFoundError) as exc_info:
            await content.revert(entry.id, 7)

        assert exc_info.value.version_number == 7
        assert (await streams.get_entry(entry.id)).content == doc("B")

    @pytest.mark.asyncio
    async def test_revert_unknown_entry(self, content):
        with pytest.raises(VersionNotFoundError):
            await content.revert("missing", 1)

    @pytest.mark.asyncio
    async def test_latest_and_get_version(self, content, entry):
        assert await content.latest_version(entry.id) is None
        assert await content.list_versions(entry.id) == []

        await content.commit(entry.id, "one")
        await content.commit(entry.id, "two")

        latest = await content.latest_version(entry.id)
        assert latest.version_number == 2
        assert latest.commit_message == "two"
        assert (await content.get_version(entry.id, 1)).commit_message == "one"
        assert await content.get_version(entry.id, 3) is None

    @pytest.mark.asyncio
    async def test_versions_deleted_with_entry(self, content, streams, entry):
        await content.commit(entry.id)
        await streams.delete_entry(entry.id)
        assert await content.list_versions(entry.id) == []
