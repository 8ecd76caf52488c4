"""
Error types for archive building.

Invariants:
    - All archive errors inherit from ArchiveError
    - ArchiveAborted is a control signal, never reported to a client
    - WalkRootViolation is a logic fault, never recovered from
"""

from __future__ import annotations

from typing import Any


class ArchiveError(Exception):
    """Base exception for archive building.

    Attributes:
        message: Error message
        details: Additional error context
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ArchiveWriteError(ArchiveError):
    """The archive writer failed while serializing an entry or the directory."""


class ArchiveAborted(ArchiveError):
    """The archive was aborted, usually because the client went away."""

    def __init__(self, reason: str = "aborted") -> None:
        super().__init__(f"Archive aborted: {reason}", details={"reason": reason})
        self.reason = reason


class WalkRootViolation(ArchiveError):
    """A key or prefix fell outside the walk root."""

    def __init__(self, key: str, root: str) -> None:
        super().__init__(
            f"Key {key!r} is outside walk root {root!r}",
            details={"key": key, "root": root},
        )
        self.key = key
        self.root = root
