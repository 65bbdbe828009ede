"""
Domain records shared by the engine, the store adapters and the batch jobs.

Records are plain dataclasses. Documents going in and out of MongoDB use
`to_document()` / `from_document()` so adapters never build dicts by hand.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================================
# ENUMS
# ============================================================================

class EventSource(Enum):
    """Where a listening event came from."""
    SYNC = "sync"
    UPLOAD = "upload"
    DEMO = "demo"
    DEMO_RICH = "demo-rich"


class EmotionLabel(Enum):
    """Fine-grained classifier output."""
    HAPPY = "Happy"
    CALM = "Calm"
    SAD = "Sad"
    TENSE = "Tense"
    NEUTRAL = "Neutral"
    SPEECH = "Speech"


class EmotionCategory(Enum):
    """Application-level emotion categories (declaration order is the tie-break order)."""
    EXCITED_HAPPY = "Excited/Happy"
    CALM_CONTENT = "Calm/Content"
    SAD_MELANCHOLIC = "Sad/Melancholic"
    TENSE_ANGRY = "Tense/Angry"
    NEUTRAL = "Neutral"


class ClassificationMethod(Enum):
    """Policy that produced a stored classification."""
    FIXED = "fixed"
    CUTS = "cuts"
    AI = "ai"


LABEL_TO_CATEGORY: Dict[EmotionLabel, EmotionCategory] = {
    EmotionLabel.HAPPY: EmotionCategory.EXCITED_HAPPY,
    EmotionLabel.CALM: EmotionCategory.CALM_CONTENT,
    EmotionLabel.SAD: EmotionCategory.SAD_MELANCHOLIC,
    EmotionLabel.TENSE: EmotionCategory.TENSE_ANGRY,
    EmotionLabel.NEUTRAL: EmotionCategory.NEUTRAL,
    EmotionLabel.SPEECH: EmotionCategory.NEUTRAL,
}


def category_for(label: EmotionLabel) -> EmotionCategory:
    """Maps a classifier label to its application category (Speech collapses to Neutral)."""
    return LABEL_TO_CATEGORY[label]


def parse_category(value: Any) -> Optional[EmotionCategory]:
    """Returns the matching category for a raw string, or None if unknown."""
    if isinstance(value, EmotionCategory):
        return value
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    for category in EmotionCategory:
        if category.value.lower() == cleaned.lower():
            return category
    return None


def ensure_utc(moment: datetime) -> datetime:
    """Treats naive datetimes as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True)
class ListeningEvent:
    """One play of one track by one user."""
    id: str
    user_id: str
    track_id: str
    played_at: datetime
    ms_played: int = 0
    source: EventSource = EventSource.SYNC
    track_name: Optional[str] = None
    artists: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.ms_played < 0:
            raise ValueError(f"ms_played must be non-negative, got {self.ms_played}")
        object.__setattr__(self, "played_at", ensure_utc(self.played_at))

    def to_document(self) -> Dict[str, Any]:
        return {
            "event_id": self.id,
            "user_id": self.user_id,
            "track_id": self.track_id,
            "played_at": self.played_at,
            "ms_played": self.ms_played,
            "source": self.source.value,
            "track_name": self.track_name,
            "artists": list(self.artists),
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ListeningEvent":
        return cls(
            id=str(doc["event_id"]),
            user_id=str(doc["user_id"]),
            track_id=str(doc["track_id"]),
            played_at=doc["played_at"],
            ms_played=int(doc.get("ms_played") or 0),
            source=EventSource(doc.get("source", EventSource.SYNC.value)),
            track_name=doc.get("track_name"),
            artists=list(doc.get("artists") or []),
        )


@dataclass(frozen=True)
class TrackDescriptor:
    """Pre-computed audio descriptors for a catalog track."""
    track_id: str
    duration_ms: Optional[int] = None
    valence: Optional[float] = None
    energy: Optional[float] = None
    danceability: Optional[float] = None
    acousticness: Optional[float] = None
    speechiness: Optional[float] = None
    tempo: Optional[float] = None
    loudness: Optional[float] = None
    mode: Optional[int] = None

    def to_document(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "TrackDescriptor":
        return cls(
            track_id=str(doc["track_id"]),
            duration_ms=doc.get("duration_ms"),
            valence=doc.get("valence"),
            energy=doc.get("energy"),
            danceability=doc.get("danceability"),
            acousticness=doc.get("acousticness"),
            speechiness=doc.get("speechiness"),
            tempo=doc.get("tempo"),
            loudness=doc.get("loudness"),
            mode=doc.get("mode"),
        )


@dataclass(frozen=True)
class Classification:
    """Emotion assignment for one listening event (at most one per event)."""
    event_id: str
    label: EmotionLabel
    category: EmotionCategory
    valence: float
    arousal: float
    mood: float
    confidence: float
    method: ClassificationMethod = ClassificationMethod.FIXED
    user_id: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "user_id": self.user_id,
            "label": self.label.value,
            "category": self.category.value,
            "valence": self.valence,
            "arousal": self.arousal,
            "mood": self.mood,
            "confidence": self.confidence,
            "method": self.method.value,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Classification":
        return cls(
            event_id=str(doc["event_id"]),
            user_id=doc.get("user_id"),
            label=EmotionLabel(doc["label"]),
            category=EmotionCategory(doc["category"]),
            valence=float(doc["valence"]),
            arousal=float(doc["arousal"]),
            mood=float(doc["mood"]),
            confidence=float(doc["confidence"]),
            method=ClassificationMethod(doc.get("method", ClassificationMethod.FIXED.value)),
        )


@dataclass(frozen=True)
class CutPoints:
    """Per-user 33rd/66th percentile cut points for valence and arousal (or energy)."""
    v_lo: float
    v_hi: float
    e_lo: float
    e_hi: float

    def __post_init__(self):
        if self.v_lo > self.v_hi or self.e_lo > self.e_hi:
            raise ValueError(f"Cut points out of order: {self}")


@dataclass
class Bucket:
    """Read-model row for one calendar bucket (optionally restricted to one category)."""
    period_start: date
    category: Optional[EmotionCategory] = None
    count: int = 0
    ms_played_sum: int = 0
    mood_weighted_sum: float = 0.0
    weight_sum: float = 0.0
    dominant_category: Optional[EmotionCategory] = None
    zscore: Optional[float] = None
    anomaly: bool = False

    @property
    def mood_avg(self) -> Optional[float]:
        """Weighted mood average, or None when no event contributed a mood."""
        if self.weight_sum <= 0:
            return None
        return self.mood_weighted_sum / self.weight_sum

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period_start": self.period_start.isoformat(),
            "category": self.category.value if self.category else None,
            "count": self.count,
            "ms_played": self.ms_played_sum,
            "mood_avg": self.mood_avg,
            "dominant_category": self.dominant_category.value if self.dominant_category else None,
            "zscore": self.zscore,
            "anomaly": self.anomaly,
        }


@dataclass
class BatchReport:
    """Outcome counters of a batch job (partial progress is a valid outcome)."""
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)
