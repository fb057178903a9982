from __future__ import annotations

"""Active-time accounting from interaction cadence.

Hours are derived from the gaps between interactions: each gap counts up to
the idle threshold, and the last interaction is credited one more threshold.
"""

from collections.abc import Iterable
from datetime import datetime

from .models import Interaction, to_ms


IDLE_THRESHOLD_MS = 5 * 60 * 1000
MS_PER_HOUR = 60 * 60 * 1000


def active_ms(timestamps_ms: Iterable[int], threshold_ms: int = IDLE_THRESHOLD_MS) -> int:
    ordered = sorted(timestamps_ms)
    if not ordered:
        return 0
    total = 0
    for previous, current in zip(ordered, ordered[1:]):
        total += min(current - previous, threshold_ms)
    return total + threshold_ms


def active_ms_for(interactions: Iterable[Interaction], threshold_ms: int = IDLE_THRESHOLD_MS) -> int:
    return active_ms((to_ms(item.timestamp) for item in interactions), threshold_ms)


def active_hours(timestamps: Iterable[datetime], threshold_ms: int = IDLE_THRESHOLD_MS) -> float:
    return active_ms((to_ms(value) for value in timestamps), threshold_ms) / MS_PER_HOUR


def active_hours_for(interactions: Iterable[Interaction], threshold_ms: int = IDLE_THRESHOLD_MS) -> float:
    return active_ms_for(interactions, threshold_ms) / MS_PER_HOUR
