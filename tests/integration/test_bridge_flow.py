"""
Integration tests for the bridge round trip.

Tests cover:
- Export: staging, pending block creation, staging cleared
- Import: key matching, new AI entry with provenance, committed version
- Import into an existing entry
- Rejections: nothing staged, token limit, wrong or missing key
- Cancel: staging restored
"""

import itertools
import os
import tempfile

import pytest

from kolam_server.bridge import BridgeKeyCodec, BridgeService
from kolam_server.config import BridgeConfig
from kolam_server.errors import (
    BridgeKeyMismatchError,
    EntryNotFoundError,
    InvalidInputError,
    PendingBlockNotFoundError,
)
from kolam_server.store import Database


def doc(text: str) -> dict:
    return {"type": "doc", "content": [{"type": "paragraph", "content": [{"type": "text", "text": text}]}]}


class FixedKeyCodec(BridgeKeyCodec):
    """Codec handing out predetermined keys."""

    def __init__(self, *keys: str) -> None:
        self._keys = iter(keys)

    def generate(self) -> str:
        return next(self._keys)


def answer(key: str, body: str = "Tighter version of the notes.") -> str:
    return (
        f'<kolam_response bridge="{key}" directive="CRITIQUE">\n'
        "<ai_model>Claude 3.5 Sonnet</ai_model>\n"
        "<summary>Tightened the notes</summary>\n"
        f"<content>\n{body}\n</content>\n"
        "</kolam_response>\n"
        f"<!-- bridge:{key} -->"
    )


class TestBridgeFlow:
    """End-to-end tests for BridgeService."""

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
    def service(self, db):
        return BridgeService(db, codec=FixedKeyCodec("k3y9", "m4n5", "p6q7"))

    @pytest.fixture
    async def staged_stream(self, service):
        """Stream with three entries, the first and third staged."""
        stream = await service.streams.create_stream("Thesis")
        entries = [
            await service.streams.create_entry(stream.id, "user", doc(text))
            for text in ("Intro idea", "Unrelated aside", "Method sketch")
        ]
        await service.staging.set_staged(entries[2].id, True)
        await service.staging.set_staged(entries[0].id, True)
        return stream, entries

    @pytest.mark.asyncio
    async def test_export_creates_pending_block(self, service, staged_stream):
        stream, entries = staged_stream

        export, block = await service.export(stream.id, "CRITIQUE")

        assert export.bridge_key == "k3y9"
        assert export.staged_entry_ids == (entries[0].id, entries[2].id)
        assert "Intro idea" in export.prompt
        assert "Unrelated aside" not in export.prompt
        assert export.prompt.endswith("<!-- bridge:k3y9 -->")

        assert block.bridge_key == "k3y9"
        assert block.directive == "CRITIQUE"
        assert block.staged_context_ids == (entries[0].id, entries[2].id)
        assert block.created_at == export.timestamp
        assert await service.pending(stream.id) == block

        assert await service.staging.staged_ids(stream.id) == []

    @pytest.mark.asyncio
    async def test_export_with_nothing_staged(self, service):
        stream = await service.streams.create_stream("Empty")
        with pytest.raises(InvalidInputError):
            await service.export(stream.id, "DUMP")
        assert await service.pending(stream.id) is None

    @pytest.mark.asyncio
    async def test_export_unknown_directive(self, service, staged_stream):
        stream, _ = staged_stream
        with pytest.raises(InvalidInputError):
            await service.export(stream.id, "SUMMARIZE")
        assert len(await service.staging.staged_ids(stream.id)) == 2

    @pytest.mark.asyncio
    async def test_export_over_token_limit(self, db, staged_stream):
        """An oversized prompt is rejected and staging is kept."""
        stream, _ = staged_stream
        service = BridgeService(db, codec=FixedKeyCodec("k3y9"), config=BridgeConfig(token_limit=10))

        with pytest.raises(InvalidInputError) as exc_info:
            await service.export(stream.id, "DUMP")

        assert "limit" in exc_info.value.message
        assert await service.pending(stream.id) is None
        assert len(await service.staging.staged_ids(stream.id)) == 2

    @pytest.mark.asyncio
    async def test_import_creates_ai_entry(self, service, staged_stream):
        """The matched answer becomes a committed AI entry with provenance."""
        stream, entries = staged_stream
        _, block = await service.export(stream.id, "CRITIQUE")

        entry, version = await service.import_response(stream.id, answer("k3y9"))

        assert entry.role == "ai"
        assert entry.stream_id == stream.id
        assert entry.sequence_id == 4
        assert entry.version_head == 1
        assert entry.parent_context_ids == [entries[0].id, entries[2].id]
        assert entry.ai_metadata.model == "Claude 3.5 Sonnet"
        assert entry.ai_metadata.provider == "anthropic"
        assert entry.ai_metadata.directive == "CRITIQUE"
        assert entry.ai_metadata.bridge_key == "k3y9"
        assert entry.ai_metadata.summary == "Tightened the notes"
        assert entry.content == doc("Tighter version of the notes.")

        assert version.version_number == 1
        assert version.commit_message == "bridge k3y9 (CRITIQUE)"
        assert version.content_snapshot == entry.content

        assert await service.pending(stream.id) is None

    @pytest.mark.asyncio
    async def test_import_into_existing_entry(self, service, staged_stream):
        stream, entries = staged_stream
        await service.content.commit(entries[0].id)
        await service.export(stream.id, "DUMP")

        entry, version = await service.import_response(
            stream.id, answer("k3y9", "Rewritten intro"), target_entry_id=entries[0].id
        )

        assert entry.id == entries[0].id
        assert entry.role == "user"
        assert entry.content == doc("Rewritten intro")
        assert version.version_number == 2
        details = await service.streams.get_stream_details(stream.id)
        assert len(details.entries) == 3

    @pytest.mark.asyncio
    async def test_import_target_in_other_stream(self, service, staged_stream):
        stream, _ = staged_stream
        other = await service.streams.create_stream("Other")
        foreign = await service.streams.create_entry(other.id, "user", doc("x"))
        await service.export(stream.id, "DUMP")

        with pytest.raises(EntryNotFoundError):
            await service.import_response(stream.id, answer("k3y9"), target_entry_id=foreign.id)
        assert await service.pending(stream.id) is not None

    @pytest.mark.asyncio
    async def test_import_wrong_key_keeps_block(self, service, staged_stream):
        """A mismatched paste changes nothing."""
        stream, _ = staged_stream
        _, block = await service.export(stream.id, "CRITIQUE")

        with pytest.raises(BridgeKeyMismatchError) as exc_info:
            await service.import_response(stream.id, answer("zzzz"))

        assert exc_info.value.expected == "k3y9"
        assert exc_info.value.found == "zzzz"
        assert await service.pending(stream.id) == block
        assert len((await service.streams.get_stream_details(stream.id)).entries) == 3

    @pytest.mark.asyncio
    async def test_import_missing_key(self, service, staged_stream):
        stream, _ = staged_stream
        await service.export(stream.id, "CRITIQUE")

        with pytest.raises(BridgeKeyMismatchError) as exc_info:
            await service.import_response(stream.id, "A reply with no marker")

        assert exc_info.value.found is None

    @pytest.mark.asyncio
    async def test_import_accepts_escaped_marker(self, service, staged_stream):
        stream, _ = staged_stream
        await service.export(stream.id, "DUMP")

        entry, _ = await service.import_response(
            stream.id, "Plain answer.\n&lt;!-- bridge:K3Y9 --&gt;"
        )

        assert entry.content == doc("Plain answer.")
        assert entry.ai_metadata.model == "Unknown AI"
        assert entry.ai_metadata.provider == "other"

    @pytest.mark.asyncio
    async def test_import_without_pending_block(self, service):
        stream = await service.streams.create_stream("Idle")
        with pytest.raises(PendingBlockNotFoundError):
            await service.import_response(stream.id, answer("k3y9"))

    @pytest.mark.asyncio
    async def test_import_empty_content(self, service, staged_stream):
        stream, _ = staged_stream
        await service.export(stream.id, "DUMP")

        with pytest.raises(InvalidInputError):
            await service.import_response(stream.id, "<!-- bridge:k3y9 -->")
        assert await service.pending(stream.id) is not None

    @pytest.mark.asyncio
    async def test_only_newest_block_is_matched(self, service, staged_stream):
        """After a second export, the first key no longer matches."""
        stream, entries = staged_stream
        await service.export(stream.id, "DUMP")
        await service.staging.set_staged(entries[1].id, True)
        await service.export(stream.id, "GENERATE")

        with pytest.raises(BridgeKeyMismatchError):
            await service.import_response(stream.id, answer("k3y9"))

        entry, version = await service.import_response(stream.id, answer("m4n5"))
        assert entry.parent_context_ids == [entries[1].id]
        assert version.commit_message == "bridge m4n5 (GENERATE)"

        # The older block becomes active again once the newer one is consumed
        assert (await service.pending(stream.id)).bridge_key == "k3y9"

    @pytest.mark.asyncio
    async def test_cancel_restores_staging(self, service, staged_stream):
        stream, entries = staged_stream
        await service.export(stream.id, "DUMP")

        block = await service.cancel(stream.id)

        assert block.bridge_key == "k3y9"
        assert await service.pending(stream.id) is None
        assert await service.staging.staged_ids(stream.id) == [entries[0].id, entries[2].id]

    @pytest.mark.asyncio
    async def test_cancel_skips_deleted_entries(self, service, staged_stream):
        stream, entries = staged_stream
        await service.export(stream.id, "DUMP")
        await service.streams.delete_entry(entries[0].id)

        await service.cancel(stream.id)

        assert await service.staging.staged_ids(stream.id) == [entries[2].id]

    @pytest.mark.asyncio
    async def test_cancel_without_pending_block(self, service):
        stream = await service.streams.create_stream("Idle")
        with pytest.raises(PendingBlockNotFoundError):
            await service.cancel(stream.id)
