from __future__ import annotations

"""Signed stats upload to the leaderboard service.

Nothing here is allowed to break local tracking: failures become a failed
`SyncResult`, and the background runner never lets an exception escape.
"""

import json
import logging
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .analyzer import UserStats, language_for
from .badges import BadgeDefinition, badge_points, default_catalog
from .config import StatsCodeConfig
from .errors import SyncError
from .models import FileEditMetadata, Interaction, Session, ToolResultMetadata, to_ms, utc_now
from .redaction import redact_event_data
from .signing import DeviceKey, SignedEvent, filter_events
from .store import EventStore


logger = logging.getLogger(__name__)

SYNC_PATH = "/api/stats/sync"
VALID_TRUST_LEVELS = {"verified", "suspicious", "untrusted"}


@dataclass(frozen=True)
class SyncResult:
    success: bool
    skipped: bool = False
    status: int | None = None
    events_sent: int = 0
    events_dropped: int = 0
    delta_hours: float | None = None
    trust_level: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "skipped": self.skipped,
            "status": self.status,
            "eventsSent": self.events_sent,
            "eventsDropped": self.events_dropped,
            "deltaHours": self.delta_hours,
            "trustLevel": self.trust_level,
            "error": self.error,
        }


def session_event_data(session: Session, interaction_count: int) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": session.id,
        "tool": session.tool,
        "startTime": to_ms(session.start_time),
        "interactions": interaction_count,
    }
    if session.end_time is not None:
        data["endTime"] = to_ms(session.end_time)
        data["durationMs"] = to_ms(session.end_time) - to_ms(session.start_time)
    if session.project_path:
        data["projectPath"] = session.project_path
    return data


def interaction_event_data(interaction: Interaction) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": interaction.id,
        "sessionId": interaction.session_id,
        "kind": interaction.kind,
        "timestamp": to_ms(interaction.timestamp),
    }
    if interaction.duration_ms is not None:
        data["durationMs"] = interaction.duration_ms
    if interaction.tool_name:
        data["toolName"] = interaction.tool_name
    meta = interaction.metadata
    if isinstance(meta, FileEditMetadata):
        data.update(
            filePath=meta.file_path,
            language=language_for(meta.file_path),
            linesAdded=meta.lines_added,
            linesRemoved=meta.lines_removed,
            linesNet=meta.lines_net,
            linesGenerated=meta.lines_generated,
        )
    elif isinstance(meta, ToolResultMetadata):
        data["success"] = meta.success
    return data


def build_signed_events(store: EventStore, key: DeviceKey, now: datetime | None = None) -> tuple[list[SignedEvent], int]:
    """Sign every session and interaction, dropping anomalous ones.

    Returns the events to transmit and how many were dropped.
    """

    interactions = store.get_all_interactions()
    counts: dict[str, int] = {}
    for item in interactions:
        counts[item.session_id] = counts.get(item.session_id, 0) + 1

    events: list[SignedEvent] = []
    for session in store.get_all_sessions():
        data, _ = redact_event_data(session_event_data(session, counts.get(session.id, 0)))
        events.append(key.create_signed_event("session", data, to_ms(session.start_time)))
    for interaction in interactions:
        data, _ = redact_event_data(interaction_event_data(interaction))
        events.append(key.create_signed_event("interaction", data, to_ms(interaction.timestamp)))

    kept, rejected = filter_events(events, now)
    return kept, len(rejected)


def build_payload(
    stats: UserStats,
    key: DeviceKey,
    events: list[SignedEvent],
    catalog: tuple[BadgeDefinition, ...] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "totalHours": round(stats.total_hours, 2),
        "totalSessions": stats.total_sessions,
        "totalInteractions": stats.total_interactions,
        "totalLinesAdded": stats.total_lines_added,
        "totalLinesRemoved": stats.total_lines_removed,
        "totalLinesGenerated": stats.total_lines_generated,
        "byTool": {
            name: {"hours": round(tool.hours, 2), "sessions": tool.sessions}
            for name, tool in sorted(stats.by_tool.items())
        },
        "byLanguage": dict(sorted(stats.by_language.items())),
        "badges": [badge.to_dict() for badge in stats.badges],
        "badgePoints": badge_points(stats.badges, catalog if catalog is not None else default_catalog()),
        "score": round(stats.score, 1),
        "deviceId": key.device_id,
        "signedEvents": [event.to_dict() for event in events],
    }
    payload["signature"] = key.sign(payload)
    return payload


class SyncClient:
    def __init__(self, api_url: str, token: str, *, timeout: float = 5.0) -> None:
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def post_stats(self, payload: dict[str, Any]) -> dict[str, Any]:
        request = Request(
            url=f"{self.api_url}{SYNC_PATH}",
            method="POST",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.token}",
            },
            data=json.dumps(payload).encode("utf-8"),
        )
        try:
            with urlopen(request, timeout=self.timeout) as response:  # nosec B310
                status = getattr(response, "status", 200)
                body = response.read().decode("utf-8")
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise SyncError(f"Sync HTTP error {exc.code}: {detail[:200]}", status=exc.code) from exc
        except (URLError, TimeoutError, OSError) as exc:
            raise SyncError(f"Sync request failed: {exc}") from exc
        try:
            parsed = json.loads(body) if body else {}
        except json.JSONDecodeError as exc:
            raise SyncError("Sync response is not valid JSON", status=status) from exc
        if not isinstance(parsed, dict):
            parsed = {}
        parsed.setdefault("status", status)
        return parsed


def _result_from_response(response: dict[str, Any], sent: int, dropped: int) -> SyncResult:
    trust = response.get("trustLevel")
    delta = response.get("deltaHours")
    return SyncResult(
        success=bool(response.get("success", True)),
        status=response.get("status"),
        events_sent=sent,
        events_dropped=dropped,
        delta_hours=float(delta) if isinstance(delta, (int, float)) else None,
        trust_level=trust if trust in VALID_TRUST_LEVELS else None,
    )


def sync_now(
    store: EventStore,
    key: DeviceKey,
    config: StatsCodeConfig,
    stats: UserStats,
    *,
    client: SyncClient | None = None,
    cancel: threading.Event | None = None,
    now: datetime | None = None,
) -> SyncResult:
    """One sync attempt; never raises."""

    if not config.authenticated:
        return SyncResult(success=False, skipped=True, error="not authenticated")
    try:
        events, dropped = build_signed_events(store, key, now or utc_now())
        payload = build_payload(stats, key, events)
        if cancel is not None and cancel.is_set():
            return SyncResult(success=False, skipped=True, error="cancelled")
        client = client or SyncClient(config.api_url, config.token or "", timeout=config.sync_timeout_seconds)
        response = client.post_stats(payload)
    except SyncError as exc:
        logger.warning("sync failed: %s", exc.message)
        return SyncResult(success=False, status=exc.context.get("status"), error=exc.message)
    except Exception as exc:
        logger.exception("sync aborted")
        return SyncResult(success=False, error=str(exc))
    result = _result_from_response(response, len(events), dropped)
    logger.info(
        "sync finished: success=%s sent=%d dropped=%d trust=%s",
        result.success,
        result.events_sent,
        result.events_dropped,
        result.trust_level,
    )
    return result


@dataclass
class BackgroundSync:
    """Runs a sync job on a worker thread with a cancel flag and a result channel."""

    job: Callable[[threading.Event], SyncResult]
    cancel_event: threading.Event = field(default_factory=threading.Event)
    results: "queue.Queue[SyncResult]" = field(default_factory=lambda: queue.Queue(maxsize=1))
    _thread: threading.Thread | None = None

    def start(self) -> "BackgroundSync":
        self._thread = threading.Thread(target=self._run, name="statscode-sync", daemon=True)
        self._thread.start()
        return self

    def _run(self) -> None:
        try:
            result = self.job(self.cancel_event)
        except Exception as exc:
            logger.exception("background sync crashed")
            result = SyncResult(success=False, error=str(exc))
        self.results.put(result)

    def cancel(self) -> None:
        self.cancel_event.set()

    def wait(self, timeout: float) -> SyncResult | None:
        """Result if the job finished within `timeout`; otherwise cancel and give up."""

        try:
            return self.results.get(timeout=timeout)
        except queue.Empty:
            self.cancel()
            logger.warning("background sync still running after %.1fs, abandoning", timeout)
            return None
