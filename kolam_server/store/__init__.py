"""
Store module for Kolam - SQLite persistence for streams, entries and exports.

This module handles:
- The shared, lock-guarded SQLite connection
- Stream and entry CRUD with substring search
- Entry versioning (commit / revert)
- Staging marks for the next export
- Pending blocks awaiting pasted responses

Invariants:
    - Every operation holds the database session lock for its full duration
    - Version numbers per entry are contiguous from 1
    - JSON columns are decoded only here, with defaults on corruption
"""

from .content_store import ContentStore
from .database import Database
from .models import (
    AiMetadata,
    Entry,
    EntryVersion,
    PendingBlock,
    Stream,
    StreamMetadata,
    StreamWithEntries,
)
from .pending_blocks import PendingBlockLedger
from .staging import StagingSet
from .streams import StreamStore

__all__ = [
    "AiMetadata",
    "ContentStore",
    "Database",
    "Entry",
    "EntryVersion",
    "PendingBlock",
    "PendingBlockLedger",
    "StagingSet",
    "Stream",
    "StreamMetadata",
    "StreamStore",
    "StreamWithEntries",
]
