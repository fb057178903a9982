from __future__ import annotations

"""Aggregate store contents into per-tool and overall statistics.

`compute_stats` is a pure function of the store: every timestamp it reports
comes from the stored events, never from the wall clock, so two calls over
the same rows return equal results.
"""

from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any

from .activity import IDLE_THRESHOLD_MS, active_hours_for
from .badges import BadgeDefinition, EarnedBadge, EventResolver, default_catalog, evaluate
from .models import FILE_EDIT_TOOLS, FileEditMetadata, Interaction, Session, iso
from .store import EventStore


LANGUAGE_BY_EXTENSION = {
    "ts": "TypeScript",
    "tsx": "TypeScript",
    "js": "JavaScript",
    "jsx": "JavaScript",
    "mjs": "JavaScript",
    "cjs": "JavaScript",
    "py": "Python",
    "rs": "Rust",
    "go": "Go",
    "java": "Java",
    "kt": "Kotlin",
    "swift": "Swift",
    "c": "C",
    "cpp": "C++",
    "cc": "C++",
    "cxx": "C++",
    "cs": "C#",
    "rb": "Ruby",
    "php": "PHP",
    "html": "HTML",
    "css": "CSS",
    "scss": "SCSS",
    "sass": "SASS",
    "vue": "Vue",
    "svelte": "Svelte",
    "sql": "SQL",
    "sh": "Shell",
    "bash": "Bash",
    "yml": "YAML",
    "yaml": "YAML",
    "json": "JSON",
    "md": "Markdown",
    "toml": "TOML",
    "xml": "XML",
}


def language_for(file_path: str) -> str:
    suffix = PurePosixPath(file_path.replace("\\", "/")).suffix.lower().lstrip(".")
    return LANGUAGE_BY_EXTENSION.get(suffix, "Other")


@dataclass(frozen=True)
class ToolStats:
    hours: float = 0.0
    sessions: int = 0
    interactions: int = 0
    accept_rate: float = 0.0
    edit_rate: float = 0.0
    avg_session_duration_minutes: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hours": round(self.hours, 4),
            "sessions": self.sessions,
            "interactions": self.interactions,
            "acceptRate": round(self.accept_rate, 4),
            "editRate": round(self.edit_rate, 4),
            "avgSessionDurationMinutes": round(self.avg_session_duration_minutes, 2),
        }


@dataclass(frozen=True)
class UserStats:
    total_hours: float = 0.0
    total_sessions: int = 0
    total_interactions: int = 0
    by_tool: dict[str, ToolStats] = field(default_factory=dict)
    by_language: dict[str, int] = field(default_factory=dict)
    total_lines_added: int = 0
    total_lines_removed: int = 0
    total_lines_generated: int = 0
    first_session_at: datetime | None = None
    last_updated: datetime | None = None
    badges: tuple[EarnedBadge, ...] = ()
    score: float = 0.0

    @property
    def unique_tools_used(self) -> int:
        return len(self.by_tool)

    @property
    def days_since_first_session(self) -> int:
        if self.first_session_at is None or self.last_updated is None:
            return 0
        return max(0, (self.last_updated - self.first_session_at).days)

    @property
    def badge_ids(self) -> list[str]:
        return sorted(badge.badge_id for badge in self.badges)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalHours": round(self.total_hours, 4),
            "totalSessions": self.total_sessions,
            "totalInteractions": self.total_interactions,
            "byTool": {name: tool.to_dict() for name, tool in sorted(self.by_tool.items())},
            "byLanguage": dict(sorted(self.by_language.items())),
            "totalLinesAdded": self.total_lines_added,
            "totalLinesRemoved": self.total_lines_removed,
            "totalLinesGenerated": self.total_lines_generated,
            "uniqueToolsUsed": self.unique_tools_used,
            "daysSinceFirstSession": self.days_since_first_session,
            "firstSessionAt": iso(self.first_session_at) if self.first_session_at else None,
            "lastUpdated": iso(self.last_updated) if self.last_updated else None,
            "badges": [badge.to_dict() for badge in self.badges],
            "score": round(self.score, 2),
        }


def _rate(part: int, whole: int) -> float:
    return part / whole if whole else 0.0


def _tool_stats(sessions: list[Session], interactions: list[Interaction], threshold_ms: int) -> ToolStats:
    counts: dict[str, int] = defaultdict(int)
    for item in interactions:
        counts[item.kind] += 1
    decided = counts["accept"] + counts["edit"] + counts["reject"]

    # Closed sessions only; an open session's length depends on when you look.
    closed = [s for s in sessions if s.end_time is not None]
    durations = [(s.end_time - s.start_time).total_seconds() / 60 for s in closed]  # type: ignore[operator]
    return ToolStats(
        hours=active_hours_for(interactions, threshold_ms),
        sessions=len(sessions),
        interactions=len(interactions),
        accept_rate=_rate(counts["accept"], decided),
        edit_rate=_rate(counts["edit"], decided),
        avg_session_duration_minutes=sum(durations) / len(durations) if durations else 0.0,
    )


def composite_score(stats: UserStats) -> float:
    """0-5 score; the edit-rate and session factors count only once they apply."""

    score = 0.0
    factors = 0
    if stats.total_hours > 0:
        score += min(stats.total_hours / 100, 1)
        factors += 1
    if stats.by_tool:
        score += sum(tool.edit_rate for tool in stats.by_tool.values()) / len(stats.by_tool)
        factors += 1
    if stats.total_sessions > 10:
        score += min(stats.total_sessions / 100, 1)
        factors += 1
    score += min(len(stats.badges) / 4, 1)
    score += min(stats.unique_tools_used / 3, 1)
    factors += 2
    return score / factors * 5


def _latest_event(sessions: list[Session], interactions: list[Interaction]) -> datetime | None:
    moments: list[datetime] = [item.timestamp for item in interactions]
    for session in sessions:
        moments.append(session.start_time)
        if session.end_time is not None:
            moments.append(session.end_time)
    return max(moments) if moments else None


def compute_stats(
    store: EventStore,
    catalog: tuple[BadgeDefinition, ...] | None = None,
    *,
    event_resolver: EventResolver | None = None,
    threshold_ms: int = IDLE_THRESHOLD_MS,
) -> UserStats:
    sessions = store.get_all_sessions()
    interactions = store.get_all_interactions()

    tool_of = {session.id: session.tool for session in sessions}
    sessions_by_tool: dict[str, list[Session]] = defaultdict(list)
    for session in sessions:
        sessions_by_tool[session.tool].append(session)
    interactions_by_tool: dict[str, list[Interaction]] = defaultdict(list)

    by_language: dict[str, int] = defaultdict(int)
    lines_added = lines_removed = lines_generated = 0
    for item in interactions:
        interactions_by_tool[tool_of.get(item.session_id, "")].append(item)
        meta = item.metadata
        if isinstance(meta, FileEditMetadata) and item.tool_name in FILE_EDIT_TOOLS:
            by_language[language_for(meta.file_path)] += 1
            lines_added += meta.lines_added
            lines_removed += meta.lines_removed
            lines_generated += meta.lines_generated

    by_tool = {
        tool: _tool_stats(tool_sessions, interactions_by_tool.get(tool, []), threshold_ms)
        for tool, tool_sessions in sorted(sessions_by_tool.items())
    }

    as_of = _latest_event(sessions, interactions)
    stats = UserStats(
        total_hours=active_hours_for(interactions, threshold_ms),
        total_sessions=len(sessions),
        total_interactions=len(interactions),
        by_tool=by_tool,
        by_language=dict(sorted(by_language.items())),
        total_lines_added=lines_added,
        total_lines_removed=lines_removed,
        total_lines_generated=lines_generated,
        first_session_at=min((s.start_time for s in sessions), default=None),
        last_updated=as_of,
    )

    earned = evaluate(
        catalog if catalog is not None else default_catalog(),
        stats,
        earned_at=as_of,
        event_resolver=event_resolver,
    )
    stats = replace(stats, badges=tuple(earned))
    return replace(stats, score=composite_score(stats))
