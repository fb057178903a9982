from __future__ import annotations

"""Cross-process session attachment through a persisted session handle.

Every host callback may run in a fresh process. The handle file records which
session is in progress; it is advisory only and is always re-checked against
the event store before an interaction is attributed to it.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from .config import save_json
from .errors import SessionAlreadyEndedError, UnknownSessionError
from .models import Session, iso, parse_iso, utc_now
from .store import EventStore


logger = logging.getLogger(__name__)

HANDLE_VERSION = 1
DEFAULT_HANDLE_TTL = timedelta(hours=2)


@dataclass(frozen=True)
class SessionHandle:
    session_id: str
    saved_at: datetime
    version: int = HANDLE_VERSION

    def expired(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.saved_at > ttl

    def to_dict(self) -> dict[str, Any]:
        return {"version": self.version, "sessionId": self.session_id, "savedAt": iso(self.saved_at)}

    @classmethod
    def from_dict(cls, payload: Any) -> "SessionHandle | None":
        """Parse a handle record; a cleared or foreign-version record reads as no handle."""

        if not isinstance(payload, dict):
            raise ValueError("session handle must be a JSON object")
        if payload.get("version", HANDLE_VERSION) != HANDLE_VERSION:
            return None
        session_id = payload.get("sessionId")
        saved_at = payload.get("savedAt")
        if not session_id:
            return None
        if not isinstance(session_id, str) or not isinstance(saved_at, str):
            raise ValueError("session handle fields have the wrong type")
        return cls(session_id=session_id, saved_at=parse_iso(saved_at))


class HandleFile:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def read(self) -> SessionHandle | None:
        if not self.path.exists():
            return None
        return SessionHandle.from_dict(json.loads(self.path.read_text(encoding="utf-8")))

    def write(self, handle: SessionHandle) -> None:
        save_json(self.path, handle.to_dict())

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


@dataclass(frozen=True)
class SessionRef:
    session_id: str
    tool: str
    created: bool = False


class SessionCoordinator:
    """Attach-before-create resolution of "the session in progress"."""

    def __init__(
        self,
        store: EventStore,
        handle_path: Path,
        *,
        ttl: timedelta = DEFAULT_HANDLE_TTL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.handle = HandleFile(handle_path)
        self.ttl = ttl
        self.clock = clock
        self._current: SessionRef | None = None

    def _open_session(self, session_id: str, tool: str) -> Session | None:
        session = self.store.get_session(session_id)
        if session is None or not session.is_open or session.tool != tool:
            return None
        return session

    def _read_handle(self) -> SessionHandle | None:
        try:
            return self.handle.read()
        except (OSError, ValueError) as exc:
            logger.warning("session handle unreadable, treating as no session: %s", exc)
            return None

    def _write_handle(self, session_id: str) -> None:
        try:
            self.handle.write(SessionHandle(session_id=session_id, saved_at=self.clock()))
        except OSError as exc:
            logger.warning("session handle write failed for %s: %s", session_id, exc)

    def _refresh_handle(self, session_id: str, tool: str) -> None:
        """Re-stamp the handle only while it still names `session_id`.

        Another process may have ended that session and pointed the handle at
        a new one since it was read; that handle must not be overwritten.
        """

        current = self._read_handle()
        if current is None or current.session_id != session_id:
            logger.debug("handle moved away from %s, not refreshing", session_id)
            return
        if self._open_session(session_id, tool) is None:
            return
        self._write_handle(session_id)

    def attach_or_create(
        self,
        tool: str,
        project_path: str | None = None,
        *,
        allow_create: bool = False,
    ) -> SessionRef | None:
        """Return the open session for `tool`, creating one only when allowed.

        A stale, missing, or closed handle never yields a session unless
        `allow_create` is set; callers other than session-start must drop
        their interaction instead of inventing a session.
        """

        if self._current is not None and self._current.tool == tool:
            if self._open_session(self._current.session_id, tool) is not None:
                return self._current
            logger.debug("in-process session %s closed elsewhere", self._current.session_id)
            self._current = None

        now = self.clock()
        handle = self._read_handle()
        if handle is not None and not handle.expired(now, self.ttl):
            if self._open_session(handle.session_id, tool) is not None:
                self._current = SessionRef(session_id=handle.session_id, tool=tool)
                self._refresh_handle(handle.session_id, tool)
                logger.debug("attached to session %s", handle.session_id)
                return self._current

        if not allow_create:
            return None

        session_id = self.store.create_session(tool, start_time=now, project_path=project_path)
        self._write_handle(session_id)
        self._current = SessionRef(session_id=session_id, tool=tool, created=True)
        return self._current

    def end_current(self, tool: str, at: datetime | None = None) -> Session | None:
        """End the attached session (if any) and clear the handle."""

        ref = self.attach_or_create(tool, allow_create=False)
        if ref is None:
            return None
        try:
            session = self.store.end_session(ref.session_id, at or self.clock())
        except (SessionAlreadyEndedError, UnknownSessionError) as exc:
            logger.debug("nothing to end: %s", exc)
            session = None
        self._current = None
        handle = self._read_handle()
        if handle is None or handle.session_id != ref.session_id:
            return session
        try:
            self.handle.clear()
        except OSError as exc:
            logger.warning("session handle clear failed: %s", exc)
        return session
