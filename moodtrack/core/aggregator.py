"""
Time-bucketed aggregation of classified listening events.

Provides:
- Per (bucket, category) distributions for day / week / month buckets
- Per bucket summaries (calendar heatmap rows)
- Weekday x hour matrix and per-cell top tracks
- Listening time per category

Bucket keys are computed in the user's IANA timezone, so the same instant can
land in different buckets for different users. Events are processed in
chronological order; dominant-category ties go to the category encountered first.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from moodtrack.core.classifier import ClassifierConfig
from moodtrack.core.features import clamp
from moodtrack.core.models import (
    Bucket,
    Classification,
    EmotionCategory,
    ListeningEvent,
    TrackDescriptor,
)

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

DEFAULT_TIMEZONE = "UTC"
MIN_TRACK_DURATION_MS = ClassifierConfig.SHORT_CLIP_MS
SPEECH_THRESHOLD = ClassifierConfig.SPEECH_THRESHOLD
TOP_TRACKS_DEFAULT = 5


class Granularity(Enum):
    """Calendar bucket sizes."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


ClassificationInput = Union[Mapping[str, Classification], Iterable[Classification]]
Pair = Tuple[ListeningEvent, Optional[Classification]]


# ============================================================================
# HELPERS
# ============================================================================

def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """
    Returns the ZoneInfo for an IANA name (UTC when empty).

    Raises:
        ValueError: If the timezone is unknown.
    """
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name}") from e


def bucket_start(moment: datetime, granularity: Union[Granularity, str],
                 tz: Union[ZoneInfo, str, None] = None) -> date:
    """
    Local calendar date that starts the bucket containing `moment`.

    Weeks start on Monday (ISO), months on the first day.
    """
    granularity = Granularity(granularity)
    zone = tz if isinstance(tz, ZoneInfo) else resolve_timezone(tz)
    local_day = moment.astimezone(zone).date()

    if granularity == Granularity.WEEK:
        return local_day - timedelta(days=local_day.weekday())
    if granularity == Granularity.MONTH:
        return local_day.replace(day=1)
    return local_day


def completion_weight(ms_played: int, duration_ms: Optional[int]) -> float:
    """Fraction of the track actually played, capped at 1."""
    if not duration_ms or duration_ms <= 0:
        return 0.0
    return clamp(ms_played / duration_ms)


def is_mood_eligible(descriptor: Optional[TrackDescriptor]) -> bool:
    """Short clips and spoken content are kept out of weighted mood trend lines."""
    if descriptor is None:
        return False
    if (descriptor.duration_ms or 0) < MIN_TRACK_DURATION_MS:
        return False
    if descriptor.speechiness is not None and descriptor.speechiness >= SPEECH_THRESHOLD:
        return False
    return True


def pair_events(events: Iterable[ListeningEvent],
                classifications: ClassificationInput) -> List[Pair]:
    """Joins events with their classification, sorted by (played_at, id)."""
    if isinstance(classifications, Mapping):
        by_event = dict(classifications)
    else:
        by_event = {c.event_id: c for c in classifications}
    ordered = sorted(events, key=lambda e: (e.played_at, e.id))
    return [(event, by_event.get(event.id)) for event in ordered]


def dominant_category(counts: Mapping[EmotionCategory, int]) -> Optional[EmotionCategory]:
    """Most frequent category; ties go to the first key in iteration order."""
    if not counts:
        return None
    return max(counts, key=counts.get)


def _mood_contribution(event: ListeningEvent, classification: Classification,
                       weighted: bool,
                       descriptors: Mapping[str, TrackDescriptor]) -> Optional[Tuple[float, float]]:
    """Returns (mood * weight, weight) or None when the event does not count toward mood."""
    if not weighted:
        return classification.mood, 1.0
    descriptor = descriptors.get(event.track_id)
    if not is_mood_eligible(descriptor):
        return None
    weight = completion_weight(event.ms_played, descriptor.duration_ms)
    return classification.mood * weight, weight


# ============================================================================
# BUCKET AGGREGATION
# ============================================================================

def aggregate_by_bucket(events: Iterable[ListeningEvent],
                        classifications: ClassificationInput,
                        granularity: Union[Granularity, str] = Granularity.DAY,
                        timezone: Optional[str] = DEFAULT_TIMEZONE,
                        weighted: bool = False,
                        descriptors: Optional[Mapping[str, TrackDescriptor]] = None,
                        category: Optional[EmotionCategory] = None) -> List[Bucket]:
    """
    Groups classified events into one record per (bucket, category).

    Args:
        events: Listening events of one user (a consistent snapshot of the window).
        classifications: Classifications keyed by event id, or an iterable of them.
        granularity: day, week or month.
        timezone: IANA timezone used to derive bucket keys.
        weighted: Weight moods by track completion instead of plain counts.
        descriptors: Track descriptors by track id (required for weighted mode).
        category: Only return rows of this category.

    Returns:
        Buckets ordered by period, then category declaration order. Each row
        carries the dominant category of its whole bucket.
    """
    zone = resolve_timezone(timezone)
    descriptors = descriptors or {}
    rows: Dict[Tuple[date, EmotionCategory], Bucket] = {}
    bucket_counts: Dict[date, Dict[EmotionCategory, int]] = {}

    for event, classification in pair_events(events, classifications):
        if classification is None:
            continue
        key = bucket_start(event.played_at, granularity, zone)
        row = rows.get((key, classification.category))
        if row is None:
            row = Bucket(period_start=key, category=classification.category)
            rows[(key, classification.category)] = row

        row.count += 1
        row.ms_played_sum += event.ms_played
        contribution = _mood_contribution(event, classification, weighted, descriptors)
        if contribution is not None:
            row.mood_weighted_sum += contribution[0]
            row.weight_sum += contribution[1]

        counts = bucket_counts.setdefault(key, {})
        counts[classification.category] = counts.get(classification.category, 0) + 1

    order = list(EmotionCategory)
    result = []
    for (key, row_category), row in sorted(rows.items(), key=lambda kv: (kv[0][0], order.index(kv[0][1]))):
        if category is not None and row_category != category:
            continue
        row.dominant_category = dominant_category(bucket_counts[key])
        result.append(row)
    return result


def summarize_buckets(events: Iterable[ListeningEvent],
                      classifications: ClassificationInput,
                      granularity: Union[Granularity, str] = Granularity.DAY,
                      timezone: Optional[str] = DEFAULT_TIMEZONE,
                      weighted: bool = False,
                      descriptors: Optional[Mapping[str, TrackDescriptor]] = None) -> List[Bucket]:
    """
    One record per bucket covering every event (classified or not).

    Count and listening time include unclassified events; the mood average and
    the dominant category only use classified ones.
    """
    zone = resolve_timezone(timezone)
    descriptors = descriptors or {}
    buckets: Dict[date, Bucket] = {}
    bucket_counts: Dict[date, Dict[EmotionCategory, int]] = {}

    for event, classification in pair_events(events, classifications):
        key = bucket_start(event.played_at, granularity, zone)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = Bucket(period_start=key)
            buckets[key] = bucket
            bucket_counts[key] = {}

        bucket.count += 1
        bucket.ms_played_sum += event.ms_played
        if classification is None:
            continue

        contribution = _mood_contribution(event, classification, weighted, descriptors)
        if contribution is not None:
            bucket.mood_weighted_sum += contribution[0]
            bucket.weight_sum += contribution[1]
        counts = bucket_counts[key]
        counts[classification.category] = counts.get(classification.category, 0) + 1

    result = []
    for key in sorted(buckets):
        bucket = buckets[key]
        bucket.dominant_category = dominant_category(bucket_counts[key])
        result.append(bucket)
    return result


# ============================================================================
# WEEKDAY x HOUR
# ============================================================================

@dataclass
class WeekdayHourCell:
    """Listening activity for one (weekday, hour) slot. Monday is 0."""
    weekday: int
    hour: int
    count: int = 0
    ms_played_sum: int = 0
    dominant_category: Optional[EmotionCategory] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "weekday": self.weekday,
            "hour": self.hour,
            "count": self.count,
            "ms_played": self.ms_played_sum,
            "dominant_category": self.dominant_category.value if self.dominant_category else None,
        }


def _slot_pairs(events: Iterable[ListeningEvent], classifications: ClassificationInput,
                descriptors: Mapping[str, TrackDescriptor],
                zone: ZoneInfo) -> Iterable[Tuple[int, int, ListeningEvent, Classification]]:
    """Yields (weekday, hour, event, classification) for events eligible for the matrix."""
    for event, classification in pair_events(events, classifications):
        if classification is None:
            continue
        if not is_mood_eligible(descriptors.get(event.track_id)):
            continue
        local = event.played_at.astimezone(zone)
        yield local.weekday(), local.hour, event, classification


def weekday_hour_matrix(events: Iterable[ListeningEvent],
                        classifications: ClassificationInput,
                        descriptors: Mapping[str, TrackDescriptor],
                        timezone: Optional[str] = DEFAULT_TIMEZONE) -> List[WeekdayHourCell]:
    """
    Aggregates listening into weekday x hour cells in the user's timezone.

    Events without classification or descriptor, spoken content and tracks
    shorter than 30 seconds are left out.

    Returns:
        Non-empty cells ordered by (weekday, hour).
    """
    zone = resolve_timezone(timezone)
    cells: Dict[Tuple[int, int], WeekdayHourCell] = {}
    cell_counts: Dict[Tuple[int, int], Dict[EmotionCategory, int]] = {}

    for weekday, hour, event, classification in _slot_pairs(events, classifications, descriptors, zone):
        key = (weekday, hour)
        cell = cells.get(key)
        if cell is None:
            cell = WeekdayHourCell(weekday=weekday, hour=hour)
            cells[key] = cell
            cell_counts[key] = {}
        cell.count += 1
        cell.ms_played_sum += event.ms_played
        counts = cell_counts[key]
        counts[classification.category] = counts.get(classification.category, 0) + 1

    result = []
    for key in sorted(cells):
        cells[key].dominant_category = dominant_category(cell_counts[key])
        result.append(cells[key])
    return result


def weekday_hour_top_tracks(events: Iterable[ListeningEvent],
                            classifications: ClassificationInput,
                            descriptors: Mapping[str, TrackDescriptor],
                            weekday: int, hour: int,
                            timezone: Optional[str] = DEFAULT_TIMEZONE,
                            limit: int = TOP_TRACKS_DEFAULT) -> List[Dict[str, object]]:
    """Most played tracks of one weekday x hour cell (same exclusions as the matrix)."""
    zone = resolve_timezone(timezone)
    plays: Counter = Counter()
    names: Dict[str, Tuple[Optional[str], List[str]]] = {}

    for slot_weekday, slot_hour, event, _ in _slot_pairs(events, classifications, descriptors, zone):
        if slot_weekday != weekday or slot_hour != hour:
            continue
        plays[event.track_id] += 1
        names.setdefault(event.track_id, (event.track_name, list(event.artists)))

    return [
        {"track_id": track_id, "name": names[track_id][0], "artists": names[track_id][1], "count": count}
        for track_id, count in plays.most_common(limit)
    ]


# ============================================================================
# LISTENING TIME
# ============================================================================

def listening_time_by_category(events: Iterable[ListeningEvent],
                               classifications: ClassificationInput) -> List[Tuple[EmotionCategory, int]]:
    """Total ms played per category, largest first."""
    totals: Dict[EmotionCategory, int] = {}
    for event, classification in pair_events(events, classifications):
        if classification is None:
            continue
        totals[classification.category] = totals.get(classification.category, 0) + event.ms_played
    order = list(EmotionCategory)
    return sorted(totals.items(), key=lambda kv: (-kv[1], order.index(kv[0])))
