"""Error taxonomy surfaced to callers at the event boundary."""

from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional


class GameError(Exception):
    """Base class for recoverable, caller-visible failures."""

    code = "ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_payload(self) -> dict:
        return {"message": self.message, "code": self.code}


class SessionNotFound(GameError):
    """Raised when a session code is unknown."""

    code = "NOT_FOUND"

    def __init__(self, session_code: str) -> None:
        self.session_code = session_code
        super().__init__(f"Session {session_code} not found")


class PermissionDenied(GameError):
    """Raised when a non-host mutates host-only state or a caller acts for a seat it does not hold."""

    code = "PERMISSION_DENIED"


class StateConflict(GameError):
    """Raised when an operation is illegal in the session's current lifecycle state."""

    code = "STATE_CONFLICT"


class TurnViolation(GameError):
    """Raised when a seat acts out of turn."""

    code = "TURN_VIOLATION"


class CapacityExceeded(GameError):
    code = "CAPACITY_EXCEEDED"


class CatalogLoadError(GameError):
    """The item catalog is empty or unreadable; fatal to any game start."""

    code = "LOAD_FAILURE"


class InvalidPayload(GameError):
    """Raised when inbound event data fails schema validation."""

    code = "INVALID_PAYLOAD"

    def __init__(self, event: str, errors: Optional[List[Any]] = None) -> None:
        self.event = event
        self.errors = errors or []
        super().__init__(f"Invalid payload for {event}")


class JoinFailure(str, Enum):
    """Reasons a join request can be refused."""

    NOT_FOUND = "NOT_FOUND"
    IN_PROGRESS = "IN_PROGRESS"
    FULL = "FULL"


_JOIN_MESSAGES = {
    JoinFailure.NOT_FOUND: "Session not found",
    JoinFailure.IN_PROGRESS: "Game already in progress",
    JoinFailure.FULL: "Session is full",
}

_JOIN_CODES = {
    JoinFailure.NOT_FOUND: SessionNotFound.code,
    JoinFailure.IN_PROGRESS: StateConflict.code,
    JoinFailure.FULL: CapacityExceeded.code,
}


class JoinError(GameError):
    """Raised by the registry when a join request is refused."""

    def __init__(self, reason: JoinFailure) -> None:
        self.reason = reason
        super().__init__(_JOIN_MESSAGES[reason])

    @property
    def code(self) -> str:  # type: ignore[override]
        return _JOIN_CODES[self.reason]

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["reason"] = self.reason.value
        return payload
