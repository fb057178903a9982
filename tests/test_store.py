from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from statscode.errors import SessionAlreadyEndedError, StoreNotInitializedError, UnknownSessionError
from statscode.models import FileEditMetadata, PromptMetadata, ToolResultMetadata
from statscode.store import EventStore


T0 = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


def _store(tmp_path: Path) -> EventStore:
    return EventStore(tmp_path / "stats.sqlite").initialize()


def test_store_rejects_use_before_initialize(tmp_path: Path) -> None:
    store = EventStore(tmp_path / "stats.sqlite")
    with pytest.raises(StoreNotInitializedError):
        store.get_all_sessions()


def test_session_lifecycle_sets_end_time_once(tmp_path: Path) -> None:
    store = _store(tmp_path)
    session_id = store.create_session("claude-code", start_time=T0, project_path="/work/app")

    opened = store.get_session(session_id)
    assert opened is not None
    assert opened.is_open
    assert opened.project_path == "/work/app"

    ended = store.end_session(session_id, T0 + timedelta(minutes=30))
    assert ended.end_time == T0 + timedelta(minutes=30)

    with pytest.raises(SessionAlreadyEndedError):
        store.end_session(session_id, T0 + timedelta(minutes=45))
    assert store.get_session(session_id).end_time == T0 + timedelta(minutes=30)  # type: ignore[union-attr]


def test_end_unknown_session_raises(tmp_path: Path) -> None:
    store = _store(tmp_path)
    with pytest.raises(UnknownSessionError):
        store.end_session("missing", T0)


def test_interaction_requires_existing_session(tmp_path: Path) -> None:
    store = _store(tmp_path)
    with pytest.raises(UnknownSessionError):
        store.record_interaction("missing", "prompt", timestamp=T0)
    assert store.get_all_interactions() == []


def test_unknown_tool_and_kind_are_rejected(tmp_path: Path) -> None:
    store = _store(tmp_path)
    with pytest.raises(ValueError):
        store.create_session("notepad", start_time=T0)
    session_id = store.create_session("codex", start_time=T0)
    with pytest.raises(ValueError):
        store.record_interaction(session_id, "telepathy", timestamp=T0)


def test_sessions_newest_first_and_interactions_oldest_first(tmp_path: Path) -> None:
    store = _store(tmp_path)
    older = store.create_session("claude-code", start_time=T0)
    newer = store.create_session("cursor", start_time=T0 + timedelta(hours=1))
    assert [s.id for s in store.get_all_sessions()] == [newer, older]

    late = store.record_interaction(older, "prompt", timestamp=T0 + timedelta(minutes=9))
    early = store.record_interaction(older, "prompt", timestamp=T0 + timedelta(minutes=1))
    assert [i.id for i in store.get_interactions_for(older)] == [early, late]
    assert [i.id for i in store.get_all_interactions()] == [early, late]


def test_metadata_variants_round_trip(tmp_path: Path) -> None:
    store = _store(tmp_path)
    session_id = store.create_session("claude-code", start_time=T0)
    store.record_interaction(
        session_id,
        "tool_use",
        timestamp=T0,
        tool_name="Edit",
        metadata=FileEditMetadata(file_path="src/app.py", lines_added=4, lines_removed=1, input_keys=("file_path",)),
    )
    store.record_interaction(session_id, "accept", timestamp=T0, tool_name="Edit", metadata=ToolResultMetadata(success=True))
    store.record_interaction(session_id, "prompt", timestamp=T0, metadata=PromptMetadata(prompt_chars=42))

    edit, accept, prompt = store.get_interactions_for(session_id)
    assert isinstance(edit.metadata, FileEditMetadata)
    assert edit.metadata.lines_net == 3
    assert isinstance(accept.metadata, ToolResultMetadata) and accept.metadata.success is True
    assert isinstance(prompt.metadata, PromptMetadata) and prompt.metadata.prompt_chars == 42
    assert store.get_interaction_counts() == {"accept": 1, "prompt": 1, "tool_use": 1}


def test_writes_are_visible_to_a_fresh_store_instance(tmp_path: Path) -> None:
    first = _store(tmp_path)
    session_id = first.create_session("opencode", start_time=T0)
    first.record_interaction(session_id, "prompt", timestamp=T0)

    second = EventStore(tmp_path / "stats.sqlite").initialize()
    assert second.get_session(session_id) is not None
    assert len(second.get_interactions_for(session_id)) == 1


def test_latest_session_with_interactions(tmp_path: Path) -> None:
    store = _store(tmp_path)
    busy = store.create_session("claude-code", start_time=T0)
    for minute in range(3):
        store.record_interaction(busy, "prompt", timestamp=T0 + timedelta(minutes=minute))
    quiet = store.create_session("claude-code", start_time=T0 + timedelta(hours=1))
    store.record_interaction(quiet, "prompt", timestamp=T0 + timedelta(hours=1))

    found = store.latest_session_with_interactions("claude-code", min_interactions=3)
    assert found is not None and found.id == busy
    assert store.latest_session_with_interactions("cursor", min_interactions=1) is None
