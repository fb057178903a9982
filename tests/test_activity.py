from __future__ import annotations

from datetime import UTC, datetime, timedelta

from statscode.activity import IDLE_THRESHOLD_MS, active_hours, active_ms


def test_gaps_are_capped_and_last_interaction_is_credited() -> None:
    # 60s gap counts in full, 940s gap is capped at 300s, plus 300s trailing.
    assert active_ms([0, 60_000, 1_000_000]) == 660_000


def test_both_gaps_capped_gives_quarter_hour() -> None:
    assert active_ms([0, 400_000, 1_000_000]) == 900_000
    base = datetime(2026, 3, 1, tzinfo=UTC)
    stamps = [base, base + timedelta(milliseconds=400_000), base + timedelta(milliseconds=1_000_000)]
    assert active_hours(stamps) == 0.25


def test_empty_and_single_interaction() -> None:
    assert active_ms([]) == 0
    assert active_ms([123_456]) == IDLE_THRESHOLD_MS


def test_timestamps_are_sorted_before_gaps_are_taken() -> None:
    assert active_ms([1_000_000, 0, 60_000]) == active_ms([0, 60_000, 1_000_000])


def test_custom_threshold() -> None:
    assert active_ms([0, 30_000, 200_000], threshold_ms=60_000) == 30_000 + 60_000 + 60_000
