"""
Unit tests for the staging set.

Tests cover:
- Staging and unstaging single entries
- Bulk staging and clearing per stream
- Listing order
"""

import os
import tempfile

import pytest

from kolam_server.errors import EntryNotFoundError
from kolam_server.store import Database, StagingSet, StreamStore

EMPTY_DOC = {"type": "doc", "content": []}


class TestStagingSet:
    """Tests for StagingSet."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    async def db(self, data_dir):
        db = Database(os.path.join(data_dir, "kolam.db"), wal_mode=False)
        await db.initialize()
        yield db
        await db.close()

    @pytest.fixture
    def streams(self, db):
        return StreamStore(db)

    @pytest.fixture
    def staging(self, db):
        return StagingSet(db)

    @pytest.mark.asyncio
    async def test_stage_and_unstage(self, streams, staging):
        stream = await streams.create_stream("S")
        entry = await streams.create_entry(stream.id, "user", EMPTY_DOC)

        await staging.set_staged(entry.id, True)
        assert (await streams.get_entry(entry.id)).is_staged is True
        assert await staging.staged_ids(stream.id) == [entry.id]

        await staging.set_staged(entry.id, False)
        assert await staging.staged_ids(stream.id) == []

    @pytest.mark.asyncio
    async def test_set_staged_is_idempotent(self, streams, staging):
        stream = await streams.create_stream("S")
        entry = await streams.create_entry(stream.id, "user", EMPTY_DOC)

        await staging.set_staged(entry.id, True)
        await staging.set_staged(entry.id, True)

        assert await staging.staged_ids(stream.id) == [entry.id]

    @pytest.mark.asyncio
    async def test_set_staged_missing_entry(self, staging):
        with pytest.raises(EntryNotFoundError):
            await staging.set_staged("missing", True)

    @pytest.mark.asyncio
    async def test_list_staged_in_sequence_order(self, streams, staging):
        """Staging order does not matter; listing follows sequence ids."""
        stream = await streams.create_stream("S")
        entries = [await streams.create_entry(stream.id, "user", EMPTY_DOC) for _ in range(4)]

        for entry in (entries[3], entries[0], entries[2]):
            await staging.set_staged(entry.id, True)

        staged = await staging.list_staged(stream.id)
        assert [e.id for e in staged] == [entries[0].id, entries[2].id, entries[3].id]
        assert all(e.is_staged for e in staged)

    @pytest.mark.asyncio
    async def test_clear_all_is_per_stream(self, streams, staging):
        """clear_all unstages one stream and reports how many it touched."""
        stream = await streams.create_stream("S")
        other = await streams.create_stream("T")
        mine = [await streams.create_entry(stream.id, "user", EMPTY_DOC) for _ in range(3)]
        theirs = await streams.create_entry(other.id, "user", EMPTY_DOC)

        await staging.set_many([mine[0].id, mine[1].id, theirs.id], True)

        assert await staging.clear_all(stream.id) == 2
        assert await staging.staged_ids(stream.id) == []
        assert await staging.staged_ids(other.id) == [theirs.id]
        assert await staging.clear_all(stream.id) == 0
        for entry in mine:
            assert (await streams.get_entry(entry.id)).is_staged is False
        assert (await streams.get_entry(theirs.id)).is_staged is True

    @pytest.mark.asyncio
    async def test_set_many_skips_unknown_ids(self, streams, staging):
        stream = await streams.create_stream("S")
        entry = await streams.create_entry(stream.id, "user", EMPTY_DOC)

        assert await staging.set_many([entry.id, "deleted"], True) == 1
        assert await staging.set_many([], True) == 0
        assert await staging.staged_ids(stream.id) == [entry.id]
