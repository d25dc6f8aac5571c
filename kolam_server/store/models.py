"""
Record types returned by the Kolam stores.

All timestamps are Unix milliseconds. Structured fields (content, tags,
id lists, AI metadata) are plain Python values here; their JSON encoding
lives in the store modules only.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

ENTRY_ROLES = ("user", "ai")


@dataclass
class Stream:
    """A named container grouping an ordered sequence of entries.

    Attributes:
        id: Stream identifier (UUID)
        title: Display title
        description: Optional free text
        tags: Tag list
        color: Optional display color
        pinned: Pinned streams list first
        created_at: Creation timestamp (Unix ms)
        updated_at: Last modification timestamp (Unix ms)
    """

    id: str
    title: str
    description: str | None
    tags: list[str]
    color: str | None
    pinned: bool
    created_at: int
    updated_at: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StreamMetadata:
    """Stream listing row with its entry count."""

    id: str
    title: str
    entry_count: int
    last_updated: int
    pinned: bool
    color: str | None
    tags: list[str]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AiMetadata:
    """Provenance of an entry created from a pasted AI response.

    Attributes:
        model: Model display name reported by the response
        provider: Provider family (anthropic, openai, ...)
        directive: Directive of the export that was answered
        bridge_key: Bridge key of the export that was answered
        summary: Optional one-line summary from the response
    """

    model: str
    provider: str
    directive: str
    bridge_key: str
    summary: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AiMetadata:
        return cls(
            model=data["model"],
            provider=data["provider"],
            directive=data["directive"],
            bridge_key=data["bridge_key"],
            summary=data.get("summary"),
        )


@dataclass
class Entry:
    """A unit of content with its own version history and staging flag.

    Attributes:
        id: Entry identifier (UUID)
        stream_id: Owning stream
        role: 'user' or 'ai'
        content: Structured document (opaque to the stores)
        sequence_id: Display order within the stream, assigned once
        version_head: Number of the last committed version (0 if none)
        is_staged: Selected for the next export
        parent_context_ids: Entries an AI response was generated from
        ai_metadata: Provenance for AI entries
        created_at: Creation timestamp (Unix ms)
        updated_at: Last modification timestamp (Unix ms)
    """

    id: str
    stream_id: str
    role: str
    content: dict[str, Any]
    sequence_id: int
    version_head: int
    is_staged: bool
    created_at: int
    updated_at: int
    parent_context_ids: list[str] | None = None
    ai_metadata: AiMetadata | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StreamWithEntries:
    """A stream together with its entries in sequence order."""

    stream: Stream
    entries: list[Entry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stream": self.stream.to_dict(),
            "entries": [entry.to_dict() for entry in self.entries],
        }


@dataclass(frozen=True)
class EntryVersion:
    """An immutable, numbered snapshot of an entry's content.

    Attributes:
        id: Version identifier (UUID)
        entry_id: Owning entry
        version_number: 1-based, contiguous per entry
        content_snapshot: Copy of the entry content at commit time
        commit_message: Optional message
        committed_at: Commit timestamp (Unix ms)
    """

    id: str
    entry_id: str
    version_number: int
    content_snapshot: dict[str, Any]
    commit_message: str | None
    committed_at: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PendingBlock:
    """An export awaiting a pasted response.

    Attributes:
        id: Pending block identifier (UUID)
        stream_id: Owning stream
        bridge_key: Correlation key embedded in the exported prompt
        staged_context_ids: Entry ids staged at export time, frozen
        directive: Directive label of the export
        created_at: Creation timestamp (Unix ms)
    """

    id: str
    stream_id: str
    bridge_key: str
    staged_context_ids: tuple[str, ...]
    directive: str
    created_at: int

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["staged_context_ids"] = list(self.staged_context_ids)
        return data
