from __future__ import annotations

"""Self-verifying stats certificates and their JSON, SVG, and HTML renderings.

The verification hash only proves the certificate is internally consistent;
anyone holding the embedded stats can recompute it, so it says nothing about
who produced them.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .analyzer import UserStats
from .badges import TIER_COLORS, BadgeDefinition, catalog_index, default_catalog
from .models import parse_iso, utc_now
from .signing import canonicalize


HASH_ALGORITHM = "sha256"
HASH_LENGTH = 16
TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
EXPORT_FORMATS = ("json", "svg", "html")

_environment = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html", "svg", "j2"), default_for_string=True),
    keep_trailing_newline=True,
)


def iso_ms(value: datetime) -> str:
    """UTC ISO-8601 with exactly three fractional digits."""

    value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def badge_ids_of(stats: dict[str, Any]) -> list[str]:
    """Sorted badge ids of a stats snapshot; raises ValueError when malformed."""

    badges = stats.get("badges", [])
    if not isinstance(badges, list):
        raise ValueError("Certificate stats.badges must be a list")
    ids = []
    for index, badge in enumerate(badges):
        if not isinstance(badge, dict) or not isinstance(badge.get("badgeId"), str):
            raise ValueError(f"Certificate stats.badges.{index} must be an object with a string badgeId")
        ids.append(badge["badgeId"])
    return sorted(ids)


def compute_hash(user_id: str, generated_at: datetime, stats: dict[str, Any]) -> str:
    badge_ids = badge_ids_of(stats)
    material = {
        "userId": user_id,
        "generatedAt": iso_ms(generated_at),
        "totalHours": stats.get("totalHours"),
        "totalSessions": stats.get("totalSessions"),
        "badges": badge_ids,
    }
    digest = hashlib.sha256(canonicalize(material).encode("utf-8")).hexdigest()
    return f"{HASH_ALGORITHM}:{digest[:HASH_LENGTH]}"


@dataclass(frozen=True)
class Certificate:
    user_id: str
    generated_at: datetime
    stats: dict[str, Any]
    verification_hash: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "generatedAt": iso_ms(self.generated_at),
            "stats": self.stats,
            "verificationHash": self.verification_hash,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "Certificate":
        if not isinstance(raw, dict):
            raise ValueError("Certificate must be a JSON object")
        missing = [key for key in ("userId", "generatedAt", "stats", "verificationHash") if key not in raw]
        if missing:
            raise ValueError(f"Certificate missing fields: {', '.join(missing)}")
        if not isinstance(raw["stats"], dict):
            raise ValueError("Certificate stats must be an object")
        try:
            generated_at = parse_iso(str(raw["generatedAt"]))
        except ValueError as exc:
            raise ValueError(f"Certificate generatedAt is not ISO-8601: {raw['generatedAt']}") from exc
        badge_ids_of(raw["stats"])
        return cls(
            user_id=str(raw["userId"]),
            generated_at=generated_at,
            stats=dict(raw["stats"]),
            verification_hash=str(raw["verificationHash"]),
        )


def generate(stats: UserStats, user_id: str = "anonymous", generated_at: datetime | None = None) -> Certificate:
    moment = generated_at or utc_now()
    # Millisecond precision so the hash survives a JSON round trip.
    moment = moment.astimezone(UTC).replace(microsecond=moment.microsecond // 1000 * 1000)
    snapshot = stats.to_dict()
    return Certificate(
        user_id=user_id,
        generated_at=moment,
        stats=snapshot,
        verification_hash=compute_hash(user_id, moment, snapshot),
    )


def verify(certificate: Certificate) -> bool:
    try:
        expected = compute_hash(certificate.user_id, certificate.generated_at, certificate.stats)
    except ValueError:
        return False
    return expected == certificate.verification_hash


def _badge_views(certificate: Certificate, catalog: tuple[BadgeDefinition, ...]) -> list[dict[str, Any]]:
    index = catalog_index(catalog)
    views = []
    for earned in certificate.stats.get("badges", []):
        definition = index.get(earned.get("badgeId"))
        if definition is None:
            continue
        tier = earned.get("tier")
        views.append(
            {
                "icon": definition.icon,
                "name": definition.name,
                "tier": tier,
                "color": TIER_COLORS.get(tier, "#e94560"),
            }
        )
    return views


def _context(certificate: Certificate, catalog: tuple[BadgeDefinition, ...] | None) -> dict[str, Any]:
    stats = certificate.stats
    return {
        "user_id": certificate.user_id,
        "hours": round(float(stats.get("totalHours", 0) or 0)),
        "sessions": stats.get("totalSessions", 0),
        "score": f"{float(stats.get('score', 0) or 0):.1f}",
        "badges": _badge_views(certificate, catalog if catalog is not None else default_catalog()),
        "verification_hash": certificate.verification_hash,
    }


def render_json(certificate: Certificate) -> str:
    return json.dumps(certificate.to_dict(), indent=2, ensure_ascii=False)


def render_svg(certificate: Certificate, catalog: tuple[BadgeDefinition, ...] | None = None) -> str:
    template = _environment.get_template("badge.svg.j2")
    return template.render(width=280, height=80, **_context(certificate, catalog))


def render_html(certificate: Certificate, catalog: tuple[BadgeDefinition, ...] | None = None) -> str:
    template = _environment.get_template("profile.html.j2")
    return template.render(**_context(certificate, catalog))


def render(certificate: Certificate, fmt: str, catalog: tuple[BadgeDefinition, ...] | None = None) -> str:
    if fmt == "json":
        return render_json(certificate)
    if fmt == "svg":
        return render_svg(certificate, catalog)
    if fmt == "html":
        return render_html(certificate, catalog)
    raise ValueError(f"Unknown export format: {fmt} (expected one of {', '.join(EXPORT_FORMATS)})")


def load_certificate(path: Path) -> Certificate:
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Certificate is not valid JSON: {path}") from exc
    return Certificate.from_dict(raw)
