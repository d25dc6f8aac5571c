"""
Kolam - streams of versioned writing with a manual bridge to AI assistants.

This package implements a local, single-user writing store:
- Streams hold ordered entries; each entry has a working document
- Committing an entry snapshots its document as the next numbered version
- Entries can be staged, packaged into a prompt and copied to an external
  assistant; the pasted answer is matched back by a short bridge key
- SQLite is the only storage; one connection is shared behind a lock

Architecture:
    ┌────────────┐     ┌──────────────┐     ┌──────────────────┐
    │ HTTP / CLI │────▶│ BridgeService│────▶│ Stores (SQLite)  │
    └────────────┘     └──────┬───────┘     │ streams, content │
                              │             │ staging, pending │
                              ▼             └──────────────────┘
                       ┌──────────────┐
                       │ codec/export │
                       └──────────────┘

Invariants:
    - Version numbers per entry are contiguous from 1 and never reused
    - Revert changes working content only, never history
    - A pasted answer is accepted only for the newest pending block's key
    - All database access is serialized through Database.session()

How to change safely:
    - Schema changes go through Database._create_schema and bump
      SCHEMA_VERSION
    - The bridge marker grammar is a wire contract; extend, don't change
"""

from ._version import __version__

__all__ = ["__version__"]
