from __future__ import annotations

"""Per-installation device key, event signing, and the anomaly pre-check.

The device key is 32 random bytes stored hex-encoded in `device.key`, readable
by the owning account only. It never leaves the machine; the server sees only
`device_id`, an HMAC fingerprint of it.
"""

import hashlib
import hmac
import json
import logging
import os
import secrets
import warnings
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from .errors import DataIntegrityWarning
from .models import to_ms, utc_now


logger = logging.getLogger(__name__)

KEY_BYTES = 32
NONCE_BYTES = 8
VALID_EVENT_KINDS = {"session", "interaction"}

MAX_TIME_DRIFT = timedelta(minutes=5)
MAX_EVENT_AGE = timedelta(days=30)
MIN_SESSION_DURATION_MS = 5_000
MAX_SESSION_DURATION_MS = 12 * 60 * 60 * 1000


def canonicalize(value: Any) -> str:
    """Key-sorted compact JSON at every nesting level."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


@dataclass(frozen=True)
class SignedEvent:
    kind: str
    data: dict[str, Any]
    timestamp: int
    device_id: str
    nonce: str
    signature: str = ""

    def payload(self) -> dict[str, Any]:
        """The signed fields; everything except the signature itself."""

        return {
            "kind": self.kind,
            "data": self.data,
            "timestamp": self.timestamp,
            "deviceId": self.device_id,
            "nonce": self.nonce,
        }

    def to_dict(self) -> dict[str, Any]:
        return {**self.payload(), "signature": self.signature}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "SignedEvent":
        try:
            return cls(
                kind=str(raw["kind"]),
                data=dict(raw["data"]),
                timestamp=int(raw["timestamp"]),
                device_id=str(raw["deviceId"]),
                nonce=str(raw["nonce"]),
                signature=str(raw.get("signature", "")),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Malformed signed event: {exc}") from exc


def _write_new_key(path: Path) -> bytes:
    secret = secrets.token_bytes(KEY_BYTES)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(secret.hex())
    return secret


def _read_key(path: Path) -> bytes:
    text = path.read_text(encoding="utf-8").strip()
    try:
        secret = bytes.fromhex(text)
    except ValueError as exc:
        raise ValueError(f"Device key is not hex encoded: {path}") from exc
    if len(secret) != KEY_BYTES:
        raise ValueError(f"Device key has the wrong length: {path}")
    return secret


def load_or_create_key(path: Path) -> bytes:
    """Return the installation key, generating it on first use.

    Two processes racing on first use both end up with whichever file won
    the exclusive create.
    """

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        try:
            secret = _write_new_key(path)
            logger.info("generated device key at %s", path)
            return secret
        except FileExistsError:
            pass
    return _read_key(path)


class DeviceKey:
    def __init__(self, secret: bytes) -> None:
        if len(secret) != KEY_BYTES:
            raise ValueError(f"Device key must be {KEY_BYTES} bytes")
        self._secret = secret

    @classmethod
    def load(cls, path: Path) -> "DeviceKey":
        return cls(load_or_create_key(path))

    def __repr__(self) -> str:
        return f"DeviceKey(device_id={self.device_id!r})"

    @property
    def device_id(self) -> str:
        return hmac.new(self._secret, b"device-id", hashlib.sha256).hexdigest()[:16]

    def sign(self, payload: dict[str, Any]) -> str:
        return hmac.new(self._secret, canonicalize(payload).encode("utf-8"), hashlib.sha256).hexdigest()

    def create_signed_event(self, kind: str, data: dict[str, Any], timestamp: int) -> SignedEvent:
        if kind not in VALID_EVENT_KINDS:
            raise ValueError(f"Unknown signed event kind: {kind}")
        unsigned = SignedEvent(
            kind=kind,
            data=data,
            timestamp=int(timestamp),
            device_id=self.device_id,
            nonce=secrets.token_hex(NONCE_BYTES),
        )
        return replace(unsigned, signature=self.sign(unsigned.payload()))

    def verify(self, event: SignedEvent) -> bool:
        expected = self.sign(event.payload())
        return hmac.compare_digest(expected, event.signature)


@dataclass(frozen=True)
class Rejected:
    event: SignedEvent
    anomalies: list[str] = field(default_factory=list)


def detect_anomalies(event: SignedEvent, now: datetime | None = None) -> list[str]:
    """Codes for every anomaly found; an empty list means the event may be sent."""

    now_ms = to_ms(now or utc_now())
    anomalies: list[str] = []
    if event.timestamp > now_ms + MAX_TIME_DRIFT.total_seconds() * 1000:
        anomalies.append("timestamp_future")
    if event.timestamp < now_ms - MAX_EVENT_AGE.total_seconds() * 1000:
        anomalies.append("timestamp_too_old")
    if event.kind == "session":
        duration = event.data.get("durationMs")
        if isinstance(duration, (int, float)) and not isinstance(duration, bool):
            if duration < MIN_SESSION_DURATION_MS:
                anomalies.append("session_too_short")
            if duration > MAX_SESSION_DURATION_MS:
                anomalies.append("session_too_long")
    return anomalies


def filter_events(
    events: Iterable[SignedEvent],
    now: datetime | None = None,
) -> tuple[list[SignedEvent], list[Rejected]]:
    """Split events into those safe to transmit and those dropped as anomalous."""

    moment = now or utc_now()
    kept: list[SignedEvent] = []
    rejected: list[Rejected] = []
    for event in events:
        anomalies = detect_anomalies(event, moment)
        if anomalies:
            rejected.append(Rejected(event=event, anomalies=anomalies))
            continue
        kept.append(event)
    if rejected:
        codes = sorted({code for item in rejected for code in item.anomalies})
        warnings.warn(
            f"dropped {len(rejected)} of {len(kept) + len(rejected)} events before sync ({', '.join(codes)})",
            DataIntegrityWarning,
            stacklevel=2,
        )
    return kept, rejected
