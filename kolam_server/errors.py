"""
Error types for the Kolam server.

This module defines all exception types raised by the stores and services:
- KolamError: Base exception
- NotFoundError: A referenced stream, entry, version or pending block is missing
- InvalidInputError: A caller-supplied value is rejected
- BridgeKeyMismatchError: Pasted text does not answer the active pending block
- LockUnavailableError: The shared database connection cannot be acquired

Invariants:
    - All errors inherit from KolamError
    - Every error carries a stable code for the HTTP and CLI boundaries
    - Malformed stored JSON is never raised; readers substitute defaults
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class KolamError(Exception):
    """Base exception for all Kolam errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "KOLAM_ERROR"
        self.details = details or {}


class NotFoundError(KolamError):
    """A referenced record does not exist."""

    kind = "record"

    def __init__(self, record_id: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"{self.kind.capitalize()} not found: {record_id}",
            code="NOT_FOUND",
            details={"kind": self.kind, "id": record_id},
        )
        self.record_id = record_id


class StreamNotFoundError(NotFoundError):
    kind = "stream"


class EntryNotFoundError(NotFoundError):
    kind = "entry"


class VersionNotFoundError(NotFoundError):
    """No version with the given number exists for the entry."""

    kind = "version"

    def __init__(self, entry_id: str, version_number: Optional[int] = None) -> None:
        if version_number is None:
            message = f"No version has been committed for entry {entry_id}"
        else:
            message = f"Version {version_number} not found for entry {entry_id}"
        super().__init__(entry_id, message=message)
        self.entry_id = entry_id
        self.version_number = version_number
        if version_number is not None:
            self.details["version_number"] = version_number


class PendingBlockNotFoundError(NotFoundError):
    kind = "pending block"


class InvalidInputError(KolamError):
    """A caller-supplied value was rejected.

    Raised when:
    - Entry role is not 'user' or 'ai'
    - Directive name is unknown
    - An export is requested with nothing staged
    - A bridge prompt exceeds the token limit
    """

    def __init__(self, message: str, field_name: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="INVALID_INPUT",
            details={"field": field_name},
        )
        self.field_name = field_name


class BridgeKeyMismatchError(KolamError):
    """Pasted text carries no bridge marker, or one for another export."""

    def __init__(self, expected: str, found: Optional[str]) -> None:
        if found:
            message = f'Bridge key mismatch. Expected "{expected}" but found "{found}".'
        else:
            message = f'Bridge key missing in the AI response. Expected "{expected}".'
        super().__init__(
            message,
            code="BRIDGE_KEY_MISMATCH",
            details={"expected": expected, "found": found},
        )
        self.expected = expected
        self.found = found


class LockUnavailableError(KolamError):
    """The shared connection lock could not be acquired.

    Raised when:
    - The lock was not acquired within the configured timeout
    - The database has already been closed
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, code="LOCK_UNAVAILABLE")
