from __future__ import annotations

import json
from pathlib import Path

import pytest

from statscode.config import DEFAULT_API_URL, StatsCodeConfig, load_config, save_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("STATSCODE_TOKEN", "STATSCODE_API_URL", "STATSCODE_USER_ID", "STATSCODE_DEBUG"):
        monkeypatch.delenv(name, raising=False)


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "config.json")
    assert config.api_url == DEFAULT_API_URL
    assert config.auto_sync is True
    assert not config.authenticated
    assert config.sync_timeout_seconds == 5.0


def test_camel_case_keys_are_accepted(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"token": "abc", "autoSync": False, "apiUrl": "https://x.example", "unknown": 1}))
    config = load_config(path)
    assert config.authenticated
    assert config.auto_sync is False
    assert config.api_url == "https://x.example"


def test_environment_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"apiUrl": "https://file.example", "token": "from-file"}))
    monkeypatch.setenv("STATSCODE_API_URL", "https://env.example")
    monkeypatch.setenv("STATSCODE_TOKEN", "from-env")
    monkeypatch.setenv("STATSCODE_DEBUG", "yes")
    config = load_config(path)
    assert config.api_url == "https://env.example"
    assert config.token == "from-env"
    assert config.debug is True


def test_unreadable_or_invalid_config_falls_back(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{broken")
    assert load_config(path) == StatsCodeConfig()

    path.write_text(json.dumps({"syncTimeoutSeconds": -1}))
    assert load_config(path).sync_timeout_seconds == 5.0


def test_save_and_reload(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "config.json"
    original = StatsCodeConfig(token="t", user_id="alice", handle_ttl_minutes=30)
    save_config(path, original)
    assert load_config(path) == original
    assert not list(path.parent.glob("*.tmp"))
