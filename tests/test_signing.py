from __future__ import annotations

import os
import stat
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from statscode.errors import DataIntegrityWarning
from statscode.signing import DeviceKey, SignedEvent, canonicalize, detect_anomalies, filter_events, load_or_create_key
from statscode.models import to_ms


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _key(tmp_path: Path, name: str = "device.key") -> DeviceKey:
    return DeviceKey.load(tmp_path / name)


def test_signature_round_trip(tmp_path: Path) -> None:
    key = _key(tmp_path)
    event = key.create_signed_event("session", {"id": "s1", "durationMs": 60_000}, to_ms(NOW))
    assert key.verify(event)
    assert event.device_id == key.device_id
    assert len(event.nonce) == 16


def test_any_mutation_breaks_the_signature(tmp_path: Path) -> None:
    key = _key(tmp_path)
    event = key.create_signed_event("interaction", {"id": "i1", "kind": "prompt"}, to_ms(NOW))
    assert not key.verify(replace(event, data={"id": "i1", "kind": "accept"}))
    assert not key.verify(replace(event, timestamp=event.timestamp + 1))
    assert not key.verify(replace(event, nonce="0" * 16))
    assert not key.verify(replace(event, kind="session"))
    assert not key.verify(replace(event, device_id="f" * 16))


def test_other_key_rejects(tmp_path: Path) -> None:
    event = _key(tmp_path, "a.key").create_signed_event("session", {"id": "s1"}, to_ms(NOW))
    assert not _key(tmp_path, "b.key").verify(event)


def test_canonical_form_ignores_key_order(tmp_path: Path) -> None:
    assert canonicalize({"b": 1, "a": {"d": 2, "c": 3}}) == '{"a":{"c":3,"d":2},"b":1}'
    key = _key(tmp_path)
    assert key.sign({"a": 1, "b": 2}) == key.sign({"b": 2, "a": 1})


def test_signed_event_survives_dict_round_trip(tmp_path: Path) -> None:
    key = _key(tmp_path)
    event = key.create_signed_event("session", {"id": "s1", "tool": "codex"}, to_ms(NOW))
    assert key.verify(SignedEvent.from_dict(event.to_dict()))
    with pytest.raises(ValueError):
        SignedEvent.from_dict({"kind": "session"})


def test_key_is_persisted_once_and_owner_only(tmp_path: Path) -> None:
    path = tmp_path / "home" / "device.key"
    first = load_or_create_key(path)
    assert load_or_create_key(path) == first
    assert len(path.read_text(encoding="utf-8")) == 64
    if os.name != "nt":
        assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_corrupt_key_is_an_error(tmp_path: Path) -> None:
    path = tmp_path / "device.key"
    path.write_text("not-hex", encoding="utf-8")
    with pytest.raises(ValueError):
        load_or_create_key(path)


def test_device_id_is_stable_public_fingerprint(tmp_path: Path) -> None:
    key = _key(tmp_path)
    assert key.device_id == _key(tmp_path).device_id
    assert len(key.device_id) == 16
    assert key.device_id not in (tmp_path / "device.key").read_text(encoding="utf-8")


def test_anomaly_codes(tmp_path: Path) -> None:
    key = _key(tmp_path)
    now_ms = to_ms(NOW)
    future = key.create_signed_event("interaction", {}, now_ms + 6 * 60 * 1000)
    old = key.create_signed_event("interaction", {}, to_ms(NOW - timedelta(days=31)))
    short = key.create_signed_event("session", {"durationMs": 4_999}, now_ms)
    long = key.create_signed_event("session", {"durationMs": 13 * 60 * 60 * 1000}, now_ms)
    open_session = key.create_signed_event("session", {"id": "open"}, now_ms)
    fine = key.create_signed_event("session", {"durationMs": 30 * 60 * 1000}, now_ms - 60_000)

    assert detect_anomalies(future, NOW) == ["timestamp_future"]
    assert detect_anomalies(old, NOW) == ["timestamp_too_old"]
    assert detect_anomalies(short, NOW) == ["session_too_short"]
    assert detect_anomalies(long, NOW) == ["session_too_long"]
    assert detect_anomalies(open_session, NOW) == []
    assert detect_anomalies(fine, NOW) == []


def test_filter_events_drops_anomalies(tmp_path: Path) -> None:
    key = _key(tmp_path)
    now_ms = to_ms(NOW)
    good = key.create_signed_event("interaction", {"id": "ok"}, now_ms)
    bad = key.create_signed_event("interaction", {"id": "late"}, now_ms + 60 * 60 * 1000)
    with pytest.warns(DataIntegrityWarning, match="timestamp_future"):
        kept, rejected = filter_events([good, bad], NOW)
    assert kept == [good]
    assert [item.event for item in rejected] == [bad]
    assert rejected[0].anomalies == ["timestamp_future"]


def test_unknown_event_kind_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        _key(tmp_path).create_signed_event("badge", {}, to_ms(NOW))
