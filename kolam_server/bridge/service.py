"""
Bridge orchestration: export staged context, accept the pasted answer.

The bridge is a manual round trip. export() packages the staged entries of
a stream, records a pending block and clears the staging marks. The user
copies the prompt to an external assistant and pastes the answer back;
import_response() checks the bridge key against the stream's newest pending
block and stores the answer as a committed entry version.

Invariants:
    - A pending block is created only for a non-empty, in-limit export
    - Staging is cleared only after the pending block exists
    - An import is accepted only when the pasted key equals the newest
      block's key; the block is deleted after the entry is committed
    - cancel() restores the staging marks captured at export time

How to change safely:
    - Keep the key check before any write in import_response()
    - The steps are separate store calls; a failure part way leaves the
      block in place so the paste can be retried
"""

from __future__ import annotations

import logging

from ..config import BridgeConfig
from ..errors import (
    BridgeKeyMismatchError,
    EntryNotFoundError,
    InvalidInputError,
    PendingBlockNotFoundError,
)
from ..store import (
    AiMetadata,
    ContentStore,
    Database,
    Entry,
    EntryVersion,
    PendingBlock,
    PendingBlockLedger,
    StagingSet,
    StreamStore,
)
from .codec import BridgeKeyCodec, default_codec
from .directives import Directive, get_directive
from .export import (
    BridgeExport,
    ParsedResponse,
    build_bridge_export,
    parse_ai_response,
    parse_model_string,
    text_to_document,
)

logger = logging.getLogger(__name__)

UNKNOWN_MODEL = "Unknown AI"


class BridgeService:
    """Export and import flow over the stores of one database.

    Example:
        >>> service = BridgeService(db)
        >>> export, block = await service.export(stream.id, "CRITIQUE")
        >>> entry, version = await service.import_response(stream.id, pasted)
    """

    def __init__(
        self,
        db: Database,
        codec: BridgeKeyCodec = default_codec,
        config: BridgeConfig | None = None,
    ) -> None:
        self.db = db
        self.codec = codec
        self.config = config or BridgeConfig()
        self.streams = StreamStore(db)
        self.content = ContentStore(db)
        self.staging = StagingSet(db)
        self.ledger = PendingBlockLedger(db)

    async def export(
        self, stream_id: str, directive: Directive | str
    ) -> tuple[BridgeExport, PendingBlock]:
        """Package the staged entries of a stream.

        Args:
            stream_id: Stream to export from
            directive: Directive enum or name

        Returns:
            Tuple of (BridgeExport, PendingBlock)

        Raises:
            InvalidInputError: If nothing is staged, the directive is unknown
                or the prompt exceeds the token limit
        """
        config = get_directive(directive)

        entries = await self.staging.list_staged(stream_id)
        if not entries:
            raise InvalidInputError("No entries are staged for export", field_name="stream_id")

        bridge_key = self.codec.generate()
        now = self.db.now_ms()
        export = build_bridge_export(entries, config.directive, bridge_key, now, codec=self.codec)

        if export.token_estimate > self.config.token_limit:
            raise InvalidInputError(
                f"Export is about {export.token_estimate} tokens, "
                f"over the limit of {self.config.token_limit}. Unstage some entries."
            )

        block = await self.ledger.create(
            stream_id,
            bridge_key,
            list(export.staged_entry_ids),
            export.directive,
            created_at=now,
        )
        await self.staging.clear_all(stream_id)

        logger.info(
            "Exported staged context",
            extra={
                "stream_id": stream_id,
                "directive": export.directive,
                "entry_count": len(entries),
                "token_estimate": export.token_estimate,
            },
        )
        return export, block

    async def pending(self, stream_id: str) -> PendingBlock | None:
        """The stream's newest outstanding export, if any."""
        return await self.ledger.latest(stream_id)

    async def cancel(self, stream_id: str) -> PendingBlock:
        """Abandon the newest export and re-stage its entries.

        Entries deleted since the export are skipped.

        Raises:
            PendingBlockNotFoundError: If the stream has no pending block
        """
        block = await self.ledger.latest(stream_id)
        if block is None:
            raise PendingBlockNotFoundError(stream_id)

        restaged = await self.staging.set_many(list(block.staged_context_ids), True)
        await self.ledger.delete(block.id)

        logger.info(
            "Cancelled export",
            extra={"stream_id": stream_id, "pending_block_id": block.id, "restaged": restaged},
        )
        return block

    async def import_response(
        self,
        stream_id: str,
        pasted_text: str,
        target_entry_id: str | None = None,
    ) -> tuple[Entry, EntryVersion]:
        """Store a pasted answer as a committed entry version.

        Args:
            stream_id: Stream the export was made from
            pasted_text: Raw text pasted by the user
            target_entry_id: Existing entry to overwrite; a new 'ai' entry
                is appended when omitted

        Returns:
            Tuple of (Entry, EntryVersion)

        Raises:
            PendingBlockNotFoundError: If the stream has no pending block
            BridgeKeyMismatchError: If the key is missing or belongs to
                another export
            EntryNotFoundError: If the target entry is not in the stream
            InvalidInputError: If the response has no content
        """
        block = await self.ledger.latest(stream_id)
        if block is None:
            raise PendingBlockNotFoundError(stream_id)

        parsed = parse_ai_response(pasted_text, codec=self.codec)
        if parsed.bridge_key != block.bridge_key.lower():
            logger.warning(
                "Rejected pasted response",
                extra={
                    "stream_id": stream_id,
                    "expected": block.bridge_key,
                    "found": parsed.bridge_key,
                },
            )
            raise BridgeKeyMismatchError(block.bridge_key, parsed.bridge_key)

        if not parsed.content:
            raise InvalidInputError("The pasted response has no content", field_name="pasted_text")

        for warning in parsed.warnings:
            logger.debug(f"Response parse warning: {warning}", extra={"stream_id": stream_id})

        document = text_to_document(parsed.content)
        message = f"bridge {block.bridge_key} ({block.directive})"

        if target_entry_id is not None:
            target = await self.streams.get_entry(target_entry_id)
            if target is None or target.stream_id != stream_id:
                raise EntryNotFoundError(target_entry_id)
            await self.streams.update_entry_content(target_entry_id, document)
            entry_id = target_entry_id
        else:
            created = await self.streams.create_entry(
                stream_id,
                "ai",
                document,
                ai_metadata=self._ai_metadata(parsed, block),
                parent_context_ids=list(block.staged_context_ids),
            )
            entry_id = created.id

        version = await self.content.commit(entry_id, message)
        await self.ledger.delete(block.id)

        entry = await self.streams.get_entry(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)

        logger.info(
            "Imported pasted response",
            extra={
                "stream_id": stream_id,
                "entry_id": entry_id,
                "version_number": version.version_number,
                "structured": parsed.is_structured,
            },
        )
        return entry, version

    @staticmethod
    def _ai_metadata(parsed: ParsedResponse, block: PendingBlock) -> AiMetadata:
        model = parsed.ai_model or UNKNOWN_MODEL
        return AiMetadata(
            model=model,
            provider=parse_model_string(model).provider,
            directive=block.directive,
            bridge_key=block.bridge_key,
            summary=parsed.summary,
        )
