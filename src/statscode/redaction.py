from __future__ import annotations

"""Secret/PII scrubbing for event data that leaves the device."""

import hashlib
import re
import unicodedata
from dataclasses import dataclass
from typing import Any


MAX_STRING_LENGTH = 200
REDACTED = "[redacted]"

SECRET_VALUE_PATTERNS = [
    re.compile(r"\bsk-[A-Za-z0-9]{16,}\b"),
    re.compile(r"\bsk-ant-[A-Za-z0-9\-_]{16,}\b"),
    re.compile(r"\bsk_(?:live|test)_[A-Za-z0-9]{16,}\b"),
    re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b"),
    re.compile(r"\bxox[baprs]-[A-Za-z0-9-]{20,}\b"),
    re.compile(r"\bAKIA[0-9A-Z]{16}\b"),
    re.compile(r"\bAIza[0-9A-Za-z\-_]{20,}\b"),
    re.compile(r"\b[A-Za-z0-9\-_]{16,}\.[A-Za-z0-9\-_]{16,}\.[A-Za-z0-9\-_]{16,}\b"),  # JWT-like
    re.compile(r"\b(?:Bearer|Token)\s+[A-Za-z0-9\-_\.]{16,}\b", re.IGNORECASE),
    re.compile(
        r"\b(?=[A-Za-z0-9+/=]{40,}\b)(?=[A-Za-z0-9+/=]*[A-Z])(?=[A-Za-z0-9+/=]*[a-z])(?=[A-Za-z0-9+/=]*\d)[A-Za-z0-9+/=]{40,}\b"
    ),
    re.compile(r"-----BEGIN (?:RSA|EC|OPENSSH|PRIVATE) KEY-----"),
]

PII_PATTERNS = [
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),  # SSN-like
    re.compile(r"\b[\w\.-]+@[\w\.-]+\.\w{2,}\b"),  # email
    re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"),  # IPv4
    re.compile(r"\b(?:[0-9a-fA-F]{1,4}:){2,}[0-9a-fA-F:]{1,4}\b"),  # IPv6-like
]

# Fields that may leave the device. Times are epoch milliseconds, so no
# clock-like strings reach the IPv6 pattern.
ALLOWED_FIELDS = {
    "id",
    "sessionId",
    "tool",
    "kind",
    "startTime",
    "endTime",
    "timestamp",
    "durationMs",
    "toolName",
    "interactions",
    "linesAdded",
    "linesRemoved",
    "linesNet",
    "linesGenerated",
    "language",
    "success",
    "projectPath",
    "filePath",
}
HASHED_FIELDS = {"projectPath", "filePath"}


@dataclass(frozen=True)
class RedactionStats:
    redacted_fields: int = 0
    truncated_fields: int = 0
    dropped_fields: int = 0
    hashed_fields: int = 0

    def __add__(self, other: "RedactionStats") -> "RedactionStats":
        return RedactionStats(
            redacted_fields=self.redacted_fields + other.redacted_fields,
            truncated_fields=self.truncated_fields + other.truncated_fields,
            dropped_fields=self.dropped_fields + other.dropped_fields,
            hashed_fields=self.hashed_fields + other.hashed_fields,
        )


def is_secret_like_text(text: str) -> bool:
    return any(pattern.search(text) for pattern in SECRET_VALUE_PATTERNS)


def is_pii_like_text(text: str) -> bool:
    return any(pattern.search(text) for pattern in PII_PATTERNS)


def strip_control_chars(value: str) -> str:
    return "".join(ch for ch in value if not unicodedata.category(ch).startswith("C"))


def hash_path(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def scrub_text(value: str) -> tuple[str, RedactionStats]:
    cleaned = strip_control_chars(value).strip()
    if is_secret_like_text(cleaned) or is_pii_like_text(cleaned):
        return REDACTED, RedactionStats(redacted_fields=1)
    if len(cleaned) > MAX_STRING_LENGTH:
        return f"{cleaned[:MAX_STRING_LENGTH]}...[truncated]", RedactionStats(truncated_fields=1)
    return cleaned, RedactionStats()


def _scrub_value(value: Any) -> tuple[Any, RedactionStats]:
    if value is None or isinstance(value, (bool, int, float)):
        return value, RedactionStats()
    if isinstance(value, str):
        return scrub_text(value)
    if isinstance(value, list):
        items: list[Any] = []
        stats = RedactionStats()
        for item in value:
            scrubbed, item_stats = _scrub_value(item)
            items.append(scrubbed)
            stats += item_stats
        return items, stats
    return scrub_text(str(value))


def redact_event_data(data: dict[str, Any]) -> tuple[dict[str, Any], RedactionStats]:
    """Reduce event data to allow-listed fields and scrub every string value."""

    redacted: dict[str, Any] = {}
    stats = RedactionStats()
    for key, value in data.items():
        if key not in ALLOWED_FIELDS or isinstance(value, dict):
            stats += RedactionStats(dropped_fields=1)
            continue
        if key in HASHED_FIELDS and isinstance(value, str) and value:
            redacted[key] = hash_path(value)
            stats += RedactionStats(hashed_fields=1)
            continue
        scrubbed, value_stats = _scrub_value(value)
        redacted[key] = scrubbed
        stats += value_stats
    return redacted, stats
