from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from statscode.analyzer import UserStats, composite_score, compute_stats, language_for
from statscode.badges import EarnedBadge
from statscode.coordinator import SessionCoordinator
from statscode.models import FileEditMetadata
from statscode.store import EventStore


T0 = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


def _store(tmp_path: Path) -> EventStore:
    return EventStore(tmp_path / "stats.sqlite").initialize()


def test_end_to_end_three_prompts_is_twelve_minutes(tmp_path: Path) -> None:
    store = _store(tmp_path)
    now = {"value": T0}
    coordinator = SessionCoordinator(store, tmp_path / "current_session.json", clock=lambda: now["value"])

    ref = coordinator.attach_or_create("claude-code", "/work", allow_create=True)
    assert ref is not None
    for minute in (0, 2, 10):
        now["value"] = T0 + timedelta(minutes=minute)
        attached = coordinator.attach_or_create("claude-code")
        assert attached is not None
        store.record_interaction(attached.session_id, "prompt", timestamp=now["value"])
    now["value"] = T0 + timedelta(minutes=11)
    coordinator.end_current("claude-code")

    stats = compute_stats(store)
    assert stats.total_hours == pytest.approx(0.2)
    assert stats.by_tool["claude-code"].hours == pytest.approx(0.2)
    sessions = store.get_all_sessions()
    assert len(sessions) == 1 and sessions[0].end_time is not None
    interactions = store.get_all_interactions()
    assert [item.kind for item in interactions] == ["prompt", "prompt", "prompt"]


def test_compute_stats_is_idempotent(tmp_path: Path) -> None:
    store = _store(tmp_path)
    session_id = store.create_session("cursor", start_time=T0)
    for minute in (0, 3, 30, 31):
        store.record_interaction(session_id, "prompt", timestamp=T0 + timedelta(minutes=minute))
    store.end_session(session_id, T0 + timedelta(minutes=40))

    first = compute_stats(store)
    second = compute_stats(store)
    assert first == second
    assert first.to_dict() == second.to_dict()
    assert first.last_updated == T0 + timedelta(minutes=40)


def test_rates_and_per_tool_hours(tmp_path: Path) -> None:
    store = _store(tmp_path)
    claude = store.create_session("claude-code", start_time=T0)
    codex = store.create_session("codex", start_time=T0)
    kinds = ["accept", "accept", "edit", "reject"]
    for offset, kind in enumerate(kinds):
        store.record_interaction(claude, kind, timestamp=T0 + timedelta(minutes=offset))
    store.record_interaction(codex, "prompt", timestamp=T0)

    stats = compute_stats(store)
    claude_stats = stats.by_tool["claude-code"]
    assert claude_stats.accept_rate == pytest.approx(0.5)
    assert claude_stats.edit_rate == pytest.approx(0.25)
    assert claude_stats.interactions == 4
    # 3 one-minute gaps plus the trailing five minutes.
    assert claude_stats.hours == pytest.approx(8 / 60)
    assert stats.by_tool["codex"].accept_rate == 0.0
    assert stats.by_tool["codex"].hours == pytest.approx(5 / 60)
    assert stats.unique_tools_used == 2


def test_average_session_duration_uses_closed_sessions(tmp_path: Path) -> None:
    store = _store(tmp_path)
    closed = store.create_session("claude-code", start_time=T0)
    store.end_session(closed, T0 + timedelta(minutes=4))
    store.create_session("claude-code", start_time=T0 + timedelta(hours=1))

    stats = compute_stats(store)
    assert stats.by_tool["claude-code"].sessions == 2
    assert stats.by_tool["claude-code"].avg_session_duration_minutes == pytest.approx(4.0)


def test_language_and_line_rollup(tmp_path: Path) -> None:
    store = _store(tmp_path)
    session_id = store.create_session("claude-code", start_time=T0)
    store.record_interaction(
        session_id,
        "tool_use",
        timestamp=T0,
        tool_name="Edit",
        metadata=FileEditMetadata(file_path="src/app.py", lines_added=5, lines_removed=2),
    )
    store.record_interaction(
        session_id,
        "tool_use",
        timestamp=T0 + timedelta(minutes=1),
        tool_name="Write",
        metadata=FileEditMetadata(file_path="web/index.tsx", lines_added=10),
    )
    store.record_interaction(
        session_id,
        "tool_use",
        timestamp=T0 + timedelta(minutes=2),
        tool_name="Write",
        metadata=FileEditMetadata(file_path="notes/README"),
    )

    stats = compute_stats(store)
    assert stats.by_language == {"Other": 1, "Python": 1, "TypeScript": 1}
    assert stats.total_lines_added == 15
    assert stats.total_lines_removed == 2
    assert stats.total_lines_generated == 15


def test_language_for_is_case_insensitive() -> None:
    assert language_for("Main.RS") == "Rust"
    assert language_for("C:\\code\\module.cpp") == "C++"
    assert language_for("Makefile") == "Other"


def test_empty_store_scores_zero(tmp_path: Path) -> None:
    stats = compute_stats(_store(tmp_path))
    assert stats.total_hours == 0
    assert stats.total_sessions == 0
    assert stats.badges == ()
    assert stats.score == 0.0
    assert stats.last_updated is None


def test_composite_score_counts_conditional_factors() -> None:
    base = UserStats(total_hours=50.0, total_sessions=5)
    # Hours factor 0.5 plus badges 0 plus tools 0 over three factors.
    assert composite_score(base) == pytest.approx(0.5 / 3 * 5)

    busy = UserStats(
        total_hours=200.0,
        total_sessions=300,
        badges=tuple(EarnedBadge(badge_id=f"b{i}") for i in range(4)),
    )
    # Four factors counted; the edit-rate factor needs at least one tool.
    assert composite_score(busy) == pytest.approx((1 + 1 + 1 + 0) / 4 * 5)
