from __future__ import annotations

"""SQLite event store for sessions and interactions."""

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from .errors import SessionAlreadyEndedError, StoreNotInitializedError, UnknownSessionError
from .models import (
    Interaction,
    InteractionMetadata,
    Session,
    from_ms,
    parse_metadata,
    to_ms,
    utc_now,
    validate_interaction_kind,
    validate_tool,
)


logger = logging.getLogger(__name__)

BUSY_TIMEOUT_SECONDS = 5.0

SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    tool TEXT NOT NULL,
    start_time INTEGER NOT NULL,
    end_time INTEGER,
    project_path TEXT,
    metadata_json TEXT
);

CREATE TABLE IF NOT EXISTS interactions (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL REFERENCES sessions(id),
    kind TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    duration_ms INTEGER,
    tool_name TEXT,
    metadata_json TEXT
);

CREATE INDEX IF NOT EXISTS idx_sessions_tool ON sessions(tool);
CREATE INDEX IF NOT EXISTS idx_sessions_start_time ON sessions(start_time);
CREATE INDEX IF NOT EXISTS idx_interactions_session ON interactions(session_id);
CREATE INDEX IF NOT EXISTS idx_interactions_kind ON interactions(kind);
CREATE INDEX IF NOT EXISTS idx_interactions_timestamp ON interactions(timestamp);
"""


def _dump(value: dict[str, Any] | None) -> str | None:
    if value is None:
        return None
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _load(value: str | None) -> dict[str, Any] | None:
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        logger.warning("skipping unparseable metadata_json")
        return None
    return parsed if isinstance(parsed, dict) else {"value": parsed}


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        id=row["id"],
        tool=row["tool"],
        start_time=from_ms(row["start_time"]),
        end_time=from_ms(row["end_time"]) if row["end_time"] is not None else None,
        project_path=row["project_path"],
        metadata=_load(row["metadata_json"]),
    )


def _row_to_interaction(row: sqlite3.Row) -> Interaction:
    return Interaction(
        id=row["id"],
        session_id=row["session_id"],
        kind=row["kind"],
        timestamp=from_ms(row["timestamp"]),
        duration_ms=row["duration_ms"],
        tool_name=row["tool_name"],
        metadata=parse_metadata(_load(row["metadata_json"])),
    )


class EventStore:
    """Durable session/interaction tables shared by every hook process.

    Each call opens its own connection and commits before returning, so a
    process that exits right after a write never loses it.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._initialized = False

    def initialize(self) -> "EventStore":
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=BUSY_TIMEOUT_SECONDS)
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
            conn.commit()
        finally:
            conn.close()
        self._initialized = True
        return self

    @property
    def initialized(self) -> bool:
        return self._initialized

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        if not self._initialized:
            raise StoreNotInitializedError(f"Event store used before initialize(): {self.db_path}")
        conn = sqlite3.connect(self.db_path, timeout=BUSY_TIMEOUT_SECONDS)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def create_session(
        self,
        tool: str,
        *,
        start_time: datetime | None = None,
        project_path: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        validate_tool(tool)
        session_id = str(uuid.uuid4())
        started = start_time or utc_now()
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO sessions (id, tool, start_time, end_time, project_path, metadata_json)
                VALUES (?, ?, ?, NULL, ?, ?)
                """,
                (session_id, tool, to_ms(started), project_path, _dump(metadata)),
            )
        logger.debug("session created: %s (%s)", session_id, tool)
        return session_id

    def end_session(self, session_id: str, at: datetime | None = None) -> Session:
        """Set `end_time` once; a second call for the same session is rejected."""

        ended = at or utc_now()
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE sessions SET end_time = ? WHERE id = ? AND end_time IS NULL",
                (to_ms(ended), session_id),
            )
            if cursor.rowcount == 0:
                row = conn.execute("SELECT end_time FROM sessions WHERE id = ?", (session_id,)).fetchone()
                if row is None:
                    raise UnknownSessionError(f"Unknown session: {session_id}", session_id=session_id)
                raise SessionAlreadyEndedError(f"Session already ended: {session_id}", session_id=session_id)
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        logger.debug("session ended: %s", session_id)
        return _row_to_session(row)

    def get_session(self, session_id: str) -> Session | None:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return _row_to_session(row) if row is not None else None

    def get_all_sessions(self) -> list[Session]:
        """All sessions, newest start first."""

        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM sessions ORDER BY start_time DESC, rowid DESC").fetchall()
        return [_row_to_session(row) for row in rows]

    def record_interaction(
        self,
        session_id: str,
        kind: str,
        *,
        timestamp: datetime | None = None,
        duration_ms: int | None = None,
        tool_name: str | None = None,
        metadata: InteractionMetadata | None = None,
    ) -> str:
        validate_interaction_kind(kind)
        interaction_id = str(uuid.uuid4())
        at = timestamp or utc_now()
        try:
            with self._connection() as conn:
                conn.execute(
                    """
                    INSERT INTO interactions
                        (id, session_id, kind, timestamp, duration_ms, tool_name, metadata_json)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        interaction_id,
                        session_id,
                        kind,
                        to_ms(at),
                        duration_ms,
                        tool_name,
                        _dump(metadata.to_dict()) if metadata is not None else None,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            if "FOREIGN KEY" in str(exc).upper():
                raise UnknownSessionError(f"Unknown session: {session_id}", session_id=session_id) from exc
            raise
        return interaction_id

    def get_interactions_for(self, session_id: str) -> list[Interaction]:
        """Interactions of one session, oldest first; ties keep insertion order."""

        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM interactions WHERE session_id = ? ORDER BY timestamp ASC, rowid ASC",
                (session_id,),
            ).fetchall()
        return [_row_to_interaction(row) for row in rows]

    def get_all_interactions(self) -> list[Interaction]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM interactions ORDER BY timestamp ASC, rowid ASC").fetchall()
        return [_row_to_interaction(row) for row in rows]

    def get_interaction_counts(self) -> dict[str, int]:
        with self._connection() as conn:
            rows = conn.execute("SELECT kind, COUNT(*) AS count FROM interactions GROUP BY kind").fetchall()
        return {row["kind"]: int(row["count"]) for row in rows}

    def latest_session_with_interactions(self, tool: str, *, min_interactions: int) -> Session | None:
        """Newest session of `tool` holding at least `min_interactions` rows."""

        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT s.* FROM sessions s
                JOIN interactions i ON i.session_id = s.id
                WHERE s.tool = ?
                GROUP BY s.id
                HAVING COUNT(i.id) >= ?
                ORDER BY s.start_time DESC
                LIMIT 1
                """,
                (tool, min_interactions),
            ).fetchone()
        return _row_to_session(row) if row is not None else None
