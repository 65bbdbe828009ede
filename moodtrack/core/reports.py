"""
Store-backed read models.

Each report loads one consistent snapshot of the requested window, then runs
the pure aggregation functions over it. Results are JSON-ready dicts.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from moodtrack.adapters.repositories.base import EventStore
from moodtrack.core.aggregator import (
    Granularity,
    aggregate_by_bucket,
    listening_time_by_category,
    pair_events,
    resolve_timezone,
    summarize_buckets,
    weekday_hour_matrix,
    weekday_hour_top_tracks,
)
from moodtrack.core.anomaly import detect_anomalies
from moodtrack.core.models import EmotionCategory, EventSource, ensure_utc
from moodtrack.core.trends import compare_trends, split_windows

logger = logging.getLogger(__name__)


RANGE_DAYS: Dict[str, Optional[int]] = {
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "365d": 365,
    "all": None,
}
DEFAULT_RANGE = "30d"
TREND_WINDOW_DAYS = 90


def resolve_range(range_key: str = DEFAULT_RANGE,
                  start: Optional[datetime] = None,
                  end: Optional[datetime] = None,
                  now: Optional[datetime] = None) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Turns a named range (or explicit bounds) into a [start, end) window.

    Raises:
        ValueError: If the range key is unknown.
    """
    if start is not None or end is not None:
        return (ensure_utc(start) if start else None, ensure_utc(end) if end else None)
    if range_key not in RANGE_DAYS:
        raise ValueError(f"Unknown range '{range_key}', expected one of {list(RANGE_DAYS)}")
    days = RANGE_DAYS[range_key]
    if days is None:
        return None, None
    reference = ensure_utc(now) if now else datetime.now(timezone.utc)
    return reference - timedelta(days=days), None


def calendar_heatmap(store: EventStore, user_id: str,
                     timezone_name: str = "UTC",
                     range_key: str = DEFAULT_RANGE,
                     start: Optional[datetime] = None,
                     end: Optional[datetime] = None,
                     source: Optional[EventSource] = None,
                     now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Day-by-day summary with anomaly flags.

    Returns:
        {"timezone", "days": [...]} where each day carries count, ms_played,
        mood_avg, dominant_category, zscore and anomaly.
    """
    start, end = resolve_range(range_key, start, end, now)
    events, classifications, _ = store.load_window(user_id, start, end, source)
    days = detect_anomalies(summarize_buckets(events, classifications, Granularity.DAY, timezone_name))
    return {"timezone": timezone_name, "days": [b.to_dict() for b in days]}


def emotion_distribution(store: EventStore, user_id: str,
                         granularity: Union[Granularity, str] = Granularity.DAY,
                         timezone_name: str = "UTC",
                         start: Optional[datetime] = None,
                         end: Optional[datetime] = None,
                         weighted: bool = False,
                         category: Optional[EmotionCategory] = None) -> List[Dict[str, Any]]:
    """Per bucket, per category counts and mood averages."""
    events, classifications, descriptors = store.load_window(user_id, start, end)
    rows = aggregate_by_bucket(events, classifications, granularity, timezone_name,
                               weighted=weighted, descriptors=descriptors, category=category)
    return [row.to_dict() for row in rows]


def weekday_hour_report(store: EventStore, user_id: str,
                        timezone_name: str = "UTC",
                        start: Optional[datetime] = None,
                        end: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Weekday x hour cells (Monday = 0) in the user's timezone."""
    events, classifications, descriptors = store.load_window(user_id, start, end)
    cells = weekday_hour_matrix(events, classifications, descriptors, timezone_name)
    return [cell.to_dict() for cell in cells]


def weekday_hour_detail(store: EventStore, user_id: str, weekday: int, hour: int,
                        timezone_name: str = "UTC",
                        start: Optional[datetime] = None,
                        end: Optional[datetime] = None,
                        limit: int = 5) -> List[Dict[str, Any]]:
    """Most played tracks of one weekday x hour cell."""
    if not 0 <= weekday <= 6 or not 0 <= hour <= 23:
        raise ValueError(f"Invalid cell weekday={weekday} hour={hour}")
    events, classifications, descriptors = store.load_window(user_id, start, end)
    return weekday_hour_top_tracks(events, classifications, descriptors, weekday, hour,
                                   timezone_name, limit)


def trend_report(store: EventStore, user_id: str,
                 window_days: int = TREND_WINDOW_DAYS,
                 now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Category counts of the last window compared to the window before it."""
    now = ensure_utc(now) if now else datetime.now(timezone.utc)
    start = now - timedelta(days=2 * window_days)
    events, classifications, _ = store.load_window(user_id, start, None)
    current, previous = split_windows(events, classifications, window_days, now)
    return [row.to_dict() for row in compare_trends(current, previous)]


def listening_time_report(store: EventStore, user_id: str,
                          start: Optional[datetime] = None,
                          end: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Listening time per category, largest first."""
    events, classifications, _ = store.load_window(user_id, start, end)
    return [
        {"category": category.value, "ms_played": ms, "hours": round(ms / 3_600_000, 2)}
        for category, ms in listening_time_by_category(events, classifications)
    ]


def day_detail(store: EventStore, user_id: str, day: Union[date, str],
               timezone_name: str = "UTC",
               source: Optional[EventSource] = None) -> Dict[str, Any]:
    """
    Drill-down of one local calendar day of the heatmap.

    Only classified plays are counted. Categories and tracks keep play order;
    artists are ranked by play count (first artist of each play, "Unknown" when missing).

    Args:
        store: Event store.
        user_id: Owner of the events.
        day: Local date, or its YYYY-MM-DD form.
        timezone_name: IANA timezone defining the day boundaries.
        source: Optional event source filter.

    Returns:
        {"date", "timezone", "total", "breakdown", "tracks_by_emotion", "top_artists"}

    Raises:
        ValueError: If the date or the timezone is invalid.
    """
    if isinstance(day, str):
        try:
            day = date.fromisoformat(day)
        except ValueError:
            raise ValueError(f"Invalid date '{day}', expected YYYY-MM-DD") from None
    zone = resolve_timezone(timezone_name)
    start = datetime.combine(day, time(), tzinfo=zone).astimezone(timezone.utc)
    end = datetime.combine(day + timedelta(days=1), time(), tzinfo=zone).astimezone(timezone.utc)

    events, classifications, _ = store.load_window(user_id, start, end, source)

    tracks: Dict[EmotionCategory, List[Dict[str, Any]]] = {}
    artists: Dict[str, int] = {}
    total = 0
    for event, classification in pair_events(events, classifications):
        if classification is None:
            continue
        total += 1
        tracks.setdefault(classification.category, []).append({
            "track_id": event.track_id,
            "name": event.track_name,
            "artists": list(event.artists),
        })
        artist = event.artists[0] if event.artists else "Unknown"
        artists[artist] = artists.get(artist, 0) + 1

    logger.debug(f"Day {day.isoformat()} for {user_id}: {total} classified plays")
    return {
        "date": day.isoformat(),
        "timezone": timezone_name,
        "total": total,
        "breakdown": [{"category": c.value, "count": len(t)} for c, t in tracks.items()],
        "tracks_by_emotion": {c.value: t for c, t in tracks.items()},
        "top_artists": [
            {"artist": a, "count": n}
            for a, n in sorted(artists.items(), key=lambda item: item[1], reverse=True)
        ],
    }
