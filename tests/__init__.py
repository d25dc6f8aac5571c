"""
Kolam Test Suite.

This package contains:
- unit/: Unit tests (stores, codec, packaging, config)
- integration/: Integration tests (bridge round trip, HTTP API, CLI)
"""
