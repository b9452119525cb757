# src/gym_floor/services/errors.py
"""Error taxonomy for the equipment contention engine.

Every failure a caller can observe is a :class:`ContentionError` with a
machine-readable ``kind``. The API layer renders them as structured payloads
so clients branch on ``kind`` and ``hint`` rather than on message text.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

HINT_JOIN_QUEUE = "join_queue"
HINT_CLAIM = "claim"


class ErrorKind(str, Enum):
    """Machine-readable failure categories."""

    RESOURCE_NOT_FOUND = "resource_not_found"
    RESOURCE_UNAVAILABLE = "resource_unavailable"
    RESOURCE_IDLE = "resource_idle"
    ALREADY_ACTIVE = "already_active"
    ALREADY_QUEUED = "already_queued"
    QUEUE_FULL = "queue_full"
    QUEUE_ENTRY_NOT_FOUND = "queue_entry_not_found"
    SESSION_NOT_FOUND = "session_not_found"
    NOT_OWNER = "not_owner"
    INVALID_REQUEST = "invalid_request"
    STORE_UNAVAILABLE = "store_unavailable"


class ContentionError(Exception):
    """Base class for all contention engine failures."""

    kind: ErrorKind = ErrorKind.STORE_UNAVAILABLE
    default_hint: str | None = None

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint if hint is not None else self.default_hint
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        """Return the structured representation sent to callers."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "hint": self.hint,
            "details": self.details,
        }


class ResourceNotFound(ContentionError):
    kind = ErrorKind.RESOURCE_NOT_FOUND


class ResourceUnavailable(ContentionError):
    """The equipment cannot be claimed right now; the caller may queue instead."""

    kind = ErrorKind.RESOURCE_UNAVAILABLE
    default_hint = HINT_JOIN_QUEUE


class ResourceIdle(ContentionError):
    """The equipment is free; the caller should claim it rather than queue."""

    kind = ErrorKind.RESOURCE_IDLE
    default_hint = HINT_CLAIM


class AlreadyActive(ContentionError):
    kind = ErrorKind.ALREADY_ACTIVE


class AlreadyQueued(ContentionError):
    kind = ErrorKind.ALREADY_QUEUED


class QueueFull(ContentionError):
    kind = ErrorKind.QUEUE_FULL


class QueueEntryNotFound(ContentionError):
    kind = ErrorKind.QUEUE_ENTRY_NOT_FOUND


class SessionNotFound(ContentionError):
    kind = ErrorKind.SESSION_NOT_FOUND


class NotOwner(ContentionError):
    kind = ErrorKind.NOT_OWNER


class InvalidRequest(ContentionError):
    kind = ErrorKind.INVALID_REQUEST


class StoreUnavailable(ContentionError):
    """Transient infrastructure failure; callers decide whether to retry."""

    kind = ErrorKind.STORE_UNAVAILABLE
