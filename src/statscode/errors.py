from __future__ import annotations

"""Exception taxonomy shared by the store, coordinator, and sync layers."""

from typing import Any


class StatsCodeError(Exception):
    """Structured error with a stable code for CLI and API responses."""

    code = "STATSCODE_ERROR"

    def __init__(self, message: str, *, code: str | None = None, **context: Any) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        for key, value in self.context.items():
            if value is not None:
                payload[key] = value
        return payload


class StoreNotInitializedError(StatsCodeError, RuntimeError):
    """The event store was used before `initialize()`; a programming error."""

    code = "STORE_NOT_INITIALIZED"


class UnknownSessionError(StatsCodeError, KeyError):
    """An interaction referenced a session id that is not in the store."""

    code = "UNKNOWN_SESSION"

    def __str__(self) -> str:
        return self.message


class SessionAlreadyEndedError(StatsCodeError, ValueError):
    code = "SESSION_ALREADY_ENDED"


class SyncError(StatsCodeError):
    """Network or HTTP failure talking to the leaderboard service."""

    code = "SYNC_FAILED"


class DataIntegrityWarning(UserWarning):
    """Category for outbound events dropped by the anomaly pre-check."""
