from __future__ import annotations

"""Badge catalog loading and evaluation against computed stats."""

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from jsonschema import Draft202012Validator

from .models import iso

if TYPE_CHECKING:
    from .analyzer import UserStats


logger = logging.getLogger(__name__)

CATALOG_DIR = Path(__file__).resolve().parent / "catalog"

TIER_ORDER = ("bronze", "silver", "gold", "platinum", "diamond")
TIER_COLORS = {
    "bronze": "#CD7F32",
    "silver": "#C0C0C0",
    "gold": "#FFD700",
    "platinum": "#E5E4E2",
    "diamond": "#B9F2FF",
}
TIER_POINTS = {"bronze": 10, "silver": 25, "gold": 50, "platinum": 100, "diamond": 250}


EventResolver = Callable[[str, "UserStats"], bool]


@dataclass(frozen=True)
class BadgeCriteria:
    type: str
    metric: str | None = None
    operator: str = ">="
    value: float | None = None
    tiers: dict[str, float] | None = None
    tool: str | None = None
    custom_checker: str | None = None
    event_type: str | None = None


@dataclass(frozen=True)
class BadgeDefinition:
    id: str
    name: str
    description: str
    category: str
    icon: str
    rarity: int
    criteria: BadgeCriteria
    image_path: str | None = None

    @property
    def tiered(self) -> bool:
        return bool(self.criteria.tiers)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "icon": self.icon,
            "rarity": self.rarity,
            "criteriaType": self.criteria.type,
            "tiers": dict(self.criteria.tiers) if self.criteria.tiers else None,
        }


@dataclass(frozen=True)
class EarnedBadge:
    badge_id: str
    earned_at: datetime | None = None
    tier: str | None = None
    progress: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "badgeId": self.badge_id,
            "earnedAt": iso(self.earned_at) if self.earned_at else None,
        }
        if self.tier is not None:
            payload["tier"] = self.tier
        if self.progress is not None:
            payload["progress"] = round(self.progress, 2)
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload


def _ordered_tiers(raw: dict[str, Any], where: str) -> dict[str, float]:
    tiers = {name: float(raw[name]) for name in TIER_ORDER if name in raw}
    floors = list(tiers.values())
    if any(later <= earlier for earlier, later in zip(floors, floors[1:])):
        raise ValueError(f"Badge tiers must be strictly ascending at {where}: {tiers}")
    return tiers


def _load_schema(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ValueError(f"Badge schema file not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Badge schema is not valid JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Badge schema must be a JSON object: {path}")
    return payload


def load_catalog(path: Path | None = None, schema_path: Path | None = None) -> tuple[BadgeDefinition, ...]:
    """Load and validate a badge catalog YAML document."""

    catalog_path = Path(path) if path else CATALOG_DIR / "badges.yaml"
    validator = Draft202012Validator(_load_schema(Path(schema_path) if schema_path else CATALOG_DIR / "badge.schema.json"))
    if not catalog_path.exists():
        raise ValueError(f"Badge catalog not found: {catalog_path}")
    payload = yaml.safe_load(catalog_path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Badge catalog must be a mapping: {catalog_path}")
    errors = sorted(validator.iter_errors(payload), key=lambda err: list(err.path))
    if errors:
        first = errors[0]
        where = ".".join(str(part) for part in first.path) or "<root>"
        raise ValueError(f"Badge catalog validation failed for {catalog_path} at {where}: {first.message}")

    badges: list[BadgeDefinition] = []
    seen: set[str] = set()
    for index, raw in enumerate(payload["badges"]):
        badge_id = raw["id"]
        if badge_id in seen:
            raise ValueError(f"Duplicate badge id detected: {badge_id}")
        seen.add(badge_id)
        crit = raw["criteria"]
        tiers = crit.get("tiers")
        criteria = BadgeCriteria(
            type=crit["type"],
            metric=crit.get("metric"),
            operator=crit.get("operator", ">="),
            value=float(crit["value"]) if "value" in crit else None,
            tiers=_ordered_tiers(tiers, f"badges.{index}.criteria.tiers") if tiers else None,
            tool=crit.get("tool"),
            custom_checker=crit.get("custom_checker"),
            event_type=crit.get("event_type"),
        )
        badges.append(
            BadgeDefinition(
                id=badge_id,
                name=raw["name"],
                description=raw.get("description", ""),
                category=raw["category"],
                icon=raw["icon"],
                rarity=int(raw["rarity"]),
                criteria=criteria,
                image_path=raw.get("image_path"),
            )
        )
    return tuple(badges)


@lru_cache(maxsize=1)
def default_catalog() -> tuple[BadgeDefinition, ...]:
    return load_catalog()


def catalog_index(catalog: Iterable[BadgeDefinition]) -> dict[str, BadgeDefinition]:
    return {badge.id: badge for badge in catalog}


def check_operator(value: float, operator: str, target: float) -> bool:
    if operator == ">=":
        return value >= target
    if operator == ">":
        return value > target
    if operator == "<=":
        return value <= target
    if operator == "<":
        return value < target
    if operator == "==":
        return value == target
    raise ValueError(f"Unknown operator: {operator}")


def tier_for_value(value: float, tiers: dict[str, float]) -> str | None:
    """Highest tier whose floor `value` meets, regardless of scan order."""

    reached = None
    for name in TIER_ORDER:
        floor = tiers.get(name)
        if floor is not None and value >= floor:
            reached = name
    return reached


def next_tier(tier: str | None, tiers: dict[str, float]) -> str | None:
    start = 0 if tier is None else TIER_ORDER.index(tier) + 1
    for name in TIER_ORDER[start:]:
        if name in tiers:
            return name
    return None


def tier_progress(value: float, tier: str | None, tiers: dict[str, float]) -> float:
    upcoming = next_tier(tier, tiers)
    if upcoming is None:
        return 100.0
    return min(100.0, value / tiers[upcoming] * 100)


def metric_value(stats: UserStats, metric: str | None) -> float | None:
    metrics = {
        "totalHours": stats.total_hours,
        "totalSessions": stats.total_sessions,
        "totalInteractions": stats.total_interactions,
        "uniqueToolsUsed": stats.unique_tools_used,
        "daysSinceFirstSession": stats.days_since_first_session,
    }
    if metric not in metrics:
        return None
    return float(metrics[metric])


def _average_edit_rate(stats: UserStats) -> float:
    if not stats.by_tool:
        return 0.0
    return sum(tool.edit_rate for tool in stats.by_tool.values()) / len(stats.by_tool)


def _average_session_minutes(stats: UserStats) -> float:
    if not stats.by_tool:
        return 0.0
    return sum(tool.avg_session_duration_minutes for tool in stats.by_tool.values()) / len(stats.by_tool)


def check_precision_coder(stats: UserStats) -> bool:
    return _average_edit_rate(stats) >= 0.7


def check_speed_runner(stats: UserStats) -> bool:
    average = _average_session_minutes(stats)
    return 0 < average < 5


# Predicates mapped to None need time-of-day or transcript data the analyzer
# does not keep; they are never earned.
BEHAVIOR_PREDICATES: dict[str, Callable[[UserStats], bool] | None] = {
    "checkNightOwl": None,
    "checkPrecisionCoder": check_precision_coder,
    "checkSpeedRunner": check_speed_runner,
    "checkTestDriven": None,
    "checkSecurityMinded": None,
    "checkContextMaster": None,
    "checkZenCoder": None,
    "checkOneShotWonder": None,
    "checkReviewChampion": None,
    "checkPromptEngineer": None,
}


def _tiered(badge: BadgeDefinition, value: float, earned_at: datetime | None, metadata: dict[str, Any]) -> EarnedBadge | None:
    tiers = badge.criteria.tiers or {}
    tier = tier_for_value(value, tiers)
    if tier is None:
        return None
    return EarnedBadge(
        badge_id=badge.id,
        earned_at=earned_at,
        tier=tier,
        progress=tier_progress(value, tier, tiers),
        metadata=metadata,
    )


def check_badge(
    badge: BadgeDefinition,
    stats: UserStats,
    *,
    earned_at: datetime | None = None,
    event_resolver: EventResolver | None = None,
) -> EarnedBadge | None:
    criteria = badge.criteria

    if criteria.type == "threshold":
        value = metric_value(stats, criteria.metric)
        if value is None:
            logger.debug("badge %s uses unknown metric %s", badge.id, criteria.metric)
            return None
        if criteria.tiers:
            return _tiered(badge, value, earned_at, {})
        if criteria.value is not None and check_operator(value, criteria.operator, criteria.value):
            return EarnedBadge(badge_id=badge.id, earned_at=earned_at)
        return None

    if criteria.type == "tool":
        tool_stats = stats.by_tool.get(criteria.tool or "")
        if tool_stats is None:
            return None
        return _tiered(
            badge,
            tool_stats.hours,
            earned_at,
            {"tool": criteria.tool, "hours": round(tool_stats.hours, 2)},
        )

    if criteria.type == "behavior":
        predicate = BEHAVIOR_PREDICATES.get(criteria.custom_checker or "")
        if predicate is None or not predicate(stats):
            return None
        return EarnedBadge(badge_id=badge.id, earned_at=earned_at)

    if criteria.type == "event":
        if event_resolver is None:
            return None
        try:
            earned = event_resolver(criteria.event_type or "", stats)
        except Exception:
            logger.exception("event resolver failed for %s", badge.id)
            return None
        return EarnedBadge(badge_id=badge.id, earned_at=earned_at) if earned else None

    return None


def evaluate(
    catalog: Iterable[BadgeDefinition],
    stats: UserStats,
    *,
    earned_at: datetime | None = None,
    event_resolver: EventResolver | None = None,
) -> list[EarnedBadge]:
    """Earned badges in catalog order."""

    earned: list[EarnedBadge] = []
    for badge in catalog:
        result = check_badge(badge, stats, earned_at=earned_at, event_resolver=event_resolver)
        if result is not None:
            earned.append(result)
    return earned


def badge_points(earned: Iterable[EarnedBadge], catalog: Iterable[BadgeDefinition]) -> int:
    index = catalog_index(catalog)
    total = 0.0
    for badge in earned:
        definition = index.get(badge.badge_id)
        if definition is None:
            continue
        multiplier = TIER_POINTS[badge.tier] / 10 if badge.tier else 1
        total += definition.rarity * multiplier
    return round(total)


def primary_tools(stats: UserStats) -> list[str]:
    ranked = [(name, tool.hours) for name, tool in stats.by_tool.items() if tool.hours > 0]
    ranked.sort(key=lambda item: (-item[1], item[0]))
    return [name for name, _ in ranked]
