"""
Window-over-window comparison of category counts.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from moodtrack.core.aggregator import ClassificationInput, pair_events
from moodtrack.core.models import Classification, EmotionCategory, ListeningEvent, ensure_utc, parse_category

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrendRow:
    """Category count in the current and previous window."""
    category: EmotionCategory
    current: int
    previous: int
    percent_change: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "current": self.current,
            "previous": self.previous,
            "percent_change": self.percent_change,
        }


def _count(items: Iterable[Any]) -> Dict[EmotionCategory, int]:
    counts: Dict[EmotionCategory, int] = {}
    for item in items:
        category = item.category if isinstance(item, Classification) else parse_category(item)
        if category is None:
            logger.debug(f"[SKIP] Unknown category {item!r}")
            continue
        counts[category] = counts.get(category, 0) + 1
    return counts


def percent_change(current: int, previous: int) -> float:
    """Relative change in percent; 0 when there is no previous signal."""
    if previous == 0:
        return 0.0
    return round((current - previous) / previous * 100, 2)


def compare_trends(current: Iterable[Any], previous: Iterable[Any]) -> List[TrendRow]:
    """
    Compares category counts between two windows.

    Args:
        current: Classifications (or category strings) of the current window.
        previous: Classifications (or category strings) of the previous window.

    Returns:
        One row per category present in the current window, ordered by current
        count descending, ties by category declaration order.
    """
    current_counts = _count(current)
    previous_counts = _count(previous)
    order = list(EmotionCategory)

    rows = [
        TrendRow(
            category=category,
            current=count,
            previous=previous_counts.get(category, 0),
            percent_change=percent_change(count, previous_counts.get(category, 0)),
        )
        for category, count in current_counts.items()
    ]
    rows.sort(key=lambda r: (-r.current, order.index(r.category)))
    return rows


def split_windows(events: Iterable[ListeningEvent],
                  classifications: ClassificationInput,
                  window_days: int,
                  now: Optional[datetime] = None) -> Tuple[List[Classification], List[Classification]]:
    """
    Splits classified events into the current window and the equal-length window before it.

    Current: played_at >= now - window, open-ended. Previous: the `window_days` before that.
    Events without a classification are ignored.
    """
    if window_days <= 0:
        raise ValueError(f"window_days must be positive, got {window_days}")
    now = ensure_utc(now) if now else datetime.now(timezone.utc)
    current_start = now - timedelta(days=window_days)
    previous_start = current_start - timedelta(days=window_days)

    current: List[Classification] = []
    previous: List[Classification] = []
    for event, classification in pair_events(events, classifications):
        if classification is None:
            continue
        if event.played_at >= current_start:
            current.append(classification)
        elif event.played_at >= previous_start:
            previous.append(classification)
    return current, previous
