from __future__ import annotations

"""Session debriefs written just before the host compacts its context."""

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .config import save_json
from .models import FILE_EDIT_TOOLS, Interaction, Session, ToolResultMetadata, iso, to_ms, utc_now
from .store import EventStore


logger = logging.getLogger(__name__)

MIN_DEBRIEF_INTERACTIONS = 3


@dataclass(frozen=True)
class Debrief:
    id: str
    created_at: datetime
    trigger: str
    session_id: str
    project_path: str | None
    total_interactions: int
    prompts: int
    tool_uses: int
    edits: int
    errors: int
    duration_minutes: int
    tool_usage: dict[str, int] = field(default_factory=dict)
    strengths: list[str] = field(default_factory=list)

    @property
    def summary(self) -> str:
        return (
            f"Session: {self.prompts} prompts, {self.tool_uses} tool uses, "
            f"{self.edits} edits, {self.duration_minutes}min"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": iso(self.created_at),
            "trigger": self.trigger,
            "sessionId": self.session_id,
            "projectPath": self.project_path,
            "metrics": {
                "totalInteractions": self.total_interactions,
                "userPrompts": self.prompts,
                "toolUses": self.tool_uses,
                "edits": self.edits,
                "errors": self.errors,
                "durationMinutes": self.duration_minutes,
            },
            "patterns": {
                "strengths": list(self.strengths),
                "toolUsage": dict(sorted(self.tool_usage.items())),
            },
            "summary": self.summary,
        }


def _strengths(prompts: int, tool_uses: int, edits: int) -> list[str]:
    strengths = []
    if edits > 5:
        strengths.append("Productive editing session")
    if tool_uses > 10:
        strengths.append("Active tool usage")
    if 0 < prompts < tool_uses * 0.3:
        strengths.append("Efficient - few prompts, many actions")
    return strengths


def build_debrief(
    session: Session,
    interactions: list[Interaction],
    *,
    now: datetime | None = None,
    trigger: str = "auto",
) -> Debrief | None:
    if len(interactions) < MIN_DEBRIEF_INTERACTIONS:
        return None
    moment = now or utc_now()
    kinds = Counter(item.kind for item in interactions)
    tool_usage = Counter(item.tool_name for item in interactions if item.tool_name)
    edits = sum(1 for item in interactions if item.tool_name in FILE_EDIT_TOOLS)
    errors = sum(
        1 for item in interactions if isinstance(item.metadata, ToolResultMetadata) and not item.metadata.success
    )
    stamps = [to_ms(item.timestamp) for item in interactions]
    return Debrief(
        id=f"debrief-{to_ms(moment)}",
        created_at=moment,
        trigger=trigger,
        session_id=session.id,
        project_path=session.project_path,
        total_interactions=len(interactions),
        prompts=kinds["prompt"],
        tool_uses=kinds["tool_use"],
        edits=edits,
        errors=errors,
        duration_minutes=round((max(stamps) - min(stamps)) / 60000),
        tool_usage=dict(tool_usage),
        strengths=_strengths(kinds["prompt"], kinds["tool_use"], edits),
    )


def debriefed_sessions(insights_dir: Path) -> set[str]:
    seen: set[str] = set()
    if not insights_dir.exists():
        return seen
    for path in insights_dir.glob("debrief-*.json"):
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            continue
        if isinstance(payload, dict) and isinstance(payload.get("sessionId"), str):
            seen.add(payload["sessionId"])
    return seen


def write_debrief(
    store: EventStore,
    insights_dir: Path,
    tool: str,
    *,
    trigger: str = "auto",
    now: datetime | None = None,
) -> Path | None:
    """Debrief the newest session of `tool` that has enough activity, once per session."""

    session = store.latest_session_with_interactions(tool, min_interactions=MIN_DEBRIEF_INTERACTIONS)
    if session is None:
        return None
    if session.id in debriefed_sessions(insights_dir):
        logger.debug("debrief already written for %s", session.id)
        return None
    debrief = build_debrief(session, store.get_interactions_for(session.id), now=now, trigger=trigger)
    if debrief is None:
        return None
    path = insights_dir / f"{debrief.id}.json"
    save_json(path, debrief.to_dict())
    logger.info("debrief written for session %s", session.id)
    return path
