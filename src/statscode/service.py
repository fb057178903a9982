from __future__ import annotations

"""Per-process context tying the store, coordinator, config, and key together."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from .analyzer import UserStats, compute_stats
from .badges import BadgeDefinition, EventResolver, badge_points, catalog_index, default_catalog
from .certificate import Certificate, generate, render
from .config import StatsCodeConfig, load_config
from .coordinator import SessionCoordinator
from .errors import UnknownSessionError
from .insights import write_debrief
from .paths import ensure_home_dirs, statscode_home
from .signing import DeviceKey
from .store import EventStore
from .sync import BackgroundSync, SyncClient, SyncResult, sync_now


logger = logging.getLogger(__name__)


@dataclass
class StatsCodeService:
    """Explicit context passed to every operation; one per process."""

    home: Path
    dirs: dict[str, Path]
    config: StatsCodeConfig
    store: EventStore
    coordinator: SessionCoordinator
    catalog: tuple[BadgeDefinition, ...]
    event_resolver: EventResolver | None = None
    _device_key: DeviceKey | None = field(default=None, repr=False)

    @classmethod
    def create(
        cls,
        home: Path | None = None,
        *,
        catalog: tuple[BadgeDefinition, ...] | None = None,
        event_resolver: EventResolver | None = None,
    ) -> "StatsCodeService":
        base = Path(home) if home is not None else statscode_home()
        dirs = ensure_home_dirs(base)
        config = load_config(dirs["config"])
        store = EventStore(dirs["db"]).initialize()
        coordinator = SessionCoordinator(
            store,
            dirs["handle"],
            ttl=timedelta(minutes=config.handle_ttl_minutes),
        )
        return cls(
            home=base,
            dirs=dirs,
            config=config,
            store=store,
            coordinator=coordinator,
            catalog=catalog if catalog is not None else default_catalog(),
            event_resolver=event_resolver,
        )

    @property
    def threshold_ms(self) -> int:
        return self.config.idle_threshold_minutes * 60 * 1000

    @property
    def device_key(self) -> DeviceKey:
        if self._device_key is None:
            self._device_key = DeviceKey.load(self.dirs["key"])
        return self._device_key

    def compute_stats(self) -> UserStats:
        return compute_stats(
            self.store,
            self.catalog,
            event_resolver=self.event_resolver,
            threshold_ms=self.threshold_ms,
        )

    def badge_report(self, stats: UserStats | None = None) -> list[dict[str, Any]]:
        """Earned badges joined with their catalog entries and point values."""

        stats = stats or self.compute_stats()
        index = catalog_index(self.catalog)
        report = []
        for earned in stats.badges:
            definition = index[earned.badge_id]
            report.append(
                {
                    **earned.to_dict(),
                    "name": definition.name,
                    "icon": definition.icon,
                    "category": definition.category,
                    "rarity": definition.rarity,
                    "points": badge_points([earned], self.catalog),
                }
            )
        return report

    def list_sessions(self, limit: int | None = None) -> list[dict[str, Any]]:
        sessions = self.store.get_all_sessions()
        if limit is not None:
            sessions = sessions[: max(0, limit)]
        return [session.to_dict() for session in sessions]

    def session_detail(self, session_id: str) -> dict[str, Any]:
        session = self.store.get_session(session_id)
        if session is None:
            raise UnknownSessionError(f"Unknown session: {session_id}", session_id=session_id)
        interactions = self.store.get_interactions_for(session_id)
        return {**session.to_dict(), "interactions": [item.to_dict() for item in interactions]}

    def certificate(self, generated_at: datetime | None = None) -> Certificate:
        return generate(self.compute_stats(), self.config.user_id, generated_at)

    def export(self, fmt: str, out: Path | None = None) -> str:
        rendered = render(self.certificate(), fmt, self.catalog)
        if out is not None:
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(rendered, encoding="utf-8")
            logger.info("exported %s certificate to %s", fmt, out)
        return rendered

    def sync(self, client: SyncClient | None = None, cancel: threading.Event | None = None) -> SyncResult:
        if not self.config.authenticated:
            return SyncResult(success=False, skipped=True, error="not authenticated")
        try:
            stats = self.compute_stats()
            key = self.device_key
        except Exception as exc:
            logger.exception("could not prepare sync")
            return SyncResult(success=False, error=str(exc))
        return sync_now(self.store, key, self.config, stats, client=client, cancel=cancel)

    def start_background_sync(self, client: SyncClient | None = None) -> BackgroundSync | None:
        if not (self.config.auto_sync and self.config.authenticated):
            return None
        return BackgroundSync(job=lambda cancel: self.sync(client=client, cancel=cancel)).start()

    def debrief(self, tool: str, trigger: str = "auto") -> Path | None:
        return write_debrief(self.store, self.dirs["insights"], tool, trigger=trigger)
