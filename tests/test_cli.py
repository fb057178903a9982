from __future__ import annotations

import io
import json
import sys
from pathlib import Path

import pytest

from statscode import cli
from statscode.service import StatsCodeService


@pytest.fixture()
def service(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> StatsCodeService:
    for name in ("STATSCODE_TOKEN", "STATSCODE_API_URL", "STATSCODE_USER_ID", "STATSCODE_DEBUG"):
        monkeypatch.delenv(name, raising=False)
    instance = StatsCodeService.create(tmp_path / "home")
    monkeypatch.setattr(cli, "_service", lambda: instance)
    return instance


def _run(monkeypatch: pytest.MonkeyPatch, *args: str, stdin: str = "") -> int:
    monkeypatch.setattr(sys, "argv", ["statscode", *args])
    monkeypatch.setattr(sys, "stdin", io.StringIO(stdin))
    return cli.main()


def test_hook_records_without_stdout(service: StatsCodeService, monkeypatch, capsys) -> None:  # type: ignore[no-untyped-def]
    assert _run(monkeypatch, "hook", "session-start", stdin=json.dumps({"cwd": "/work"})) == 0
    assert _run(monkeypatch, "hook", "prompt", stdin=json.dumps({"prompt": "hello"})) == 0
    assert capsys.readouterr().out == ""
    assert [item.kind for item in service.store.get_all_interactions()] == ["prompt"]


def test_hook_tolerates_garbage_payload(service: StatsCodeService, monkeypatch, capsys) -> None:  # type: ignore[no-untyped-def]
    assert _run(monkeypatch, "hook", "session-start", stdin="{not json") == 0
    assert capsys.readouterr().out == ""
    assert len(service.store.get_all_sessions()) == 1


def test_hook_never_fails_even_without_a_service(monkeypatch, capsys) -> None:  # type: ignore[no-untyped-def]
    def _broken() -> StatsCodeService:
        raise OSError("read-only home")

    monkeypatch.setattr(cli, "_service", _broken)
    assert _run(monkeypatch, "hook", "stop") == 0
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "read-only home" in captured.err


def test_stats_prints_json(service: StatsCodeService, monkeypatch, capsys) -> None:  # type: ignore[no-untyped-def]
    service.store.create_session("codex")
    assert _run(monkeypatch, "stats") == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["totalSessions"] == 1
    assert "codex" in payload["byTool"]


def test_badges_text_when_empty(service: StatsCodeService, monkeypatch, capsys) -> None:  # type: ignore[no-untyped-def]
    assert _run(monkeypatch, "badges") == 0
    assert "No badges yet" in capsys.readouterr().out
    assert _run(monkeypatch, "badges", "--json") == 0
    assert json.loads(capsys.readouterr().out) == []


def test_export_then_verify(service: StatsCodeService, monkeypatch, capsys, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    out = tmp_path / "exports" / "cert.json"
    assert _run(monkeypatch, "export", "--format", "json", "--out", str(out)) == 0
    assert json.loads(capsys.readouterr().out)["path"] == str(out)

    assert _run(monkeypatch, "verify", str(out)) == 0
    assert json.loads(capsys.readouterr().out)["valid"] is True

    document = json.loads(out.read_text(encoding="utf-8"))
    document["stats"]["totalHours"] = 10_000
    out.write_text(json.dumps(document), encoding="utf-8")
    assert _run(monkeypatch, "verify", str(out)) == 1
    assert json.loads(capsys.readouterr().out)["valid"] is False

    document["stats"]["badges"] = ["time-lord"]
    out.write_text(json.dumps(document), encoding="utf-8")
    assert _run(monkeypatch, "verify", str(out)) == 1
    assert "badges" in capsys.readouterr().err


def test_export_svg_to_stdout(service: StatsCodeService, monkeypatch, capsys) -> None:  # type: ignore[no-untyped-def]
    assert _run(monkeypatch, "export", "--format", "svg") == 0
    assert capsys.readouterr().out.startswith("<svg")


def test_verify_reports_malformed_file(monkeypatch, capsys, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    path = tmp_path / "cert.json"
    path.write_text("[]", encoding="utf-8")
    assert _run(monkeypatch, "verify", str(path)) == 1
    assert "error:" in capsys.readouterr().err


def test_sync_without_token_is_skipped(service: StatsCodeService, monkeypatch, capsys) -> None:  # type: ignore[no-untyped-def]
    assert _run(monkeypatch, "sync") == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["skipped"] is True
    assert payload["success"] is False
