"""
Feature normalization for emotion classification.

Turns a partial descriptor record (dict or TrackDescriptor) into a complete,
range-clamped feature set and derives arousal:
- Energy dominates (60%)
- Tempo (20%) and loudness (10%) corroborate
- Acoustic instrumentation lowers arousal (10% on 1 - acousticness)
"""

import logging
import math
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Mapping, Optional, Union

from moodtrack.core.errors import InvalidInputWarning
from moodtrack.core.models import TrackDescriptor

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

class FeatureDefaults:
    """Defaults applied to missing descriptor fields."""
    VALENCE: float = 0.5
    ENERGY: float = 0.5
    DANCEABILITY: float = 0.5
    ACOUSTICNESS: float = 0.5
    SPEECHINESS: float = 0.0
    TEMPO: float = 120.0
    MODE: int = 1
    LOUDNESS_FOR_AROUSAL: float = -30.0  # dB, ~0.5 once normalized


TEMPO_MIN_BPM = 60.0
TEMPO_SPAN_BPM = 140.0  # 60-200 BPM mapped to 0-1
LOUDNESS_FLOOR_DB = -60.0

AROUSAL_WEIGHT_ENERGY = 0.6
AROUSAL_WEIGHT_TEMPO = 0.2
AROUSAL_WEIGHT_ACOUSTIC = 0.1
AROUSAL_WEIGHT_LOUDNESS = 0.1

UNIT_FIELDS = ("valence", "energy", "danceability", "acousticness", "speechiness")


# ============================================================================
# HELPERS
# ============================================================================

def clamp(x: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamps x into [low, high]."""
    return max(low, min(high, x))


def _as_number(value: Any) -> Optional[float]:
    """Returns value as a finite float, or None for missing / non-numeric / NaN."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def normalize_tempo(bpm: float) -> float:
    return clamp((bpm - TEMPO_MIN_BPM) / TEMPO_SPAN_BPM)


def normalize_loudness(loudness_db: Optional[float]) -> float:
    db = FeatureDefaults.LOUDNESS_FOR_AROUSAL if loudness_db is None else loudness_db
    return clamp((db - LOUDNESS_FLOOR_DB) / -LOUDNESS_FLOOR_DB)


def compute_arousal(energy: float, tempo: float, acousticness: float,
                    loudness: Optional[float] = None) -> float:
    """
    Derives arousal (activation) from energy, tempo, acousticness and loudness.

    Args:
        energy: Energy in [0, 1].
        tempo: Tempo in BPM.
        acousticness: Acousticness in [0, 1].
        loudness: Loudness in dB, -30 dB assumed when missing.

    Returns:
        Arousal in [0, 1].
    """
    return clamp(
        AROUSAL_WEIGHT_ENERGY * energy +
        AROUSAL_WEIGHT_TEMPO * normalize_tempo(tempo) +
        AROUSAL_WEIGHT_ACOUSTIC * (1 - acousticness) +
        AROUSAL_WEIGHT_LOUDNESS * normalize_loudness(loudness)
    )


# ============================================================================
# FEATURES
# ============================================================================

@dataclass(frozen=True)
class Features:
    """Complete, clamped feature set ready for classification."""
    valence: float
    energy: float
    danceability: float
    acousticness: float
    speechiness: float
    tempo: float
    mode: int
    arousal: float
    loudness: Optional[float] = None
    duration_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class FeatureNormalizer:
    """
    Clamps and defaults raw descriptors, then derives arousal.

    Out-of-range values are recovered by clamping; each recovery is kept in
    `warnings` for callers that want to report data quality.
    """

    def __init__(self, speechiness_default: float = FeatureDefaults.SPEECHINESS):
        self.speechiness_default = speechiness_default
        self.warnings: List[InvalidInputWarning] = []

    def normalize(self, partial: Union[Mapping[str, Any], TrackDescriptor, None]) -> Features:
        raw = self._to_mapping(partial)

        defaults = {
            "valence": FeatureDefaults.VALENCE,
            "energy": FeatureDefaults.ENERGY,
            "danceability": FeatureDefaults.DANCEABILITY,
            "acousticness": FeatureDefaults.ACOUSTICNESS,
            "speechiness": self.speechiness_default,
        }
        unit_values: Dict[str, float] = {}
        for name in UNIT_FIELDS:
            value = _as_number(raw.get(name))
            if value is None:
                unit_values[name] = defaults[name]
                continue
            clamped = clamp(value)
            if clamped != value:
                self._warn_clamped(name, value, clamped)
            unit_values[name] = clamped

        tempo = _as_number(raw.get("tempo"))
        if tempo is None:
            tempo = FeatureDefaults.TEMPO

        mode = _as_number(raw.get("mode"))
        mode_value = FeatureDefaults.MODE if mode is None else (1 if mode >= 0.5 else 0)

        loudness = _as_number(raw.get("loudness"))

        duration = _as_number(raw.get("duration_ms"))
        duration_ms = None if duration is None else max(0, int(duration))

        # A caller may hand over an arousal it derived itself; otherwise derive it
        arousal = _as_number(raw.get("arousal"))
        if arousal is None:
            arousal = compute_arousal(
                unit_values["energy"], tempo, unit_values["acousticness"], loudness
            )
        else:
            arousal = clamp(arousal)

        return Features(
            valence=unit_values["valence"],
            energy=unit_values["energy"],
            danceability=unit_values["danceability"],
            acousticness=unit_values["acousticness"],
            speechiness=unit_values["speechiness"],
            tempo=tempo,
            mode=mode_value,
            arousal=arousal,
            loudness=loudness,
            duration_ms=duration_ms,
        )

    @staticmethod
    def _to_mapping(partial: Union[Mapping[str, Any], TrackDescriptor, None]) -> Mapping[str, Any]:
        if partial is None:
            return {}
        if isinstance(partial, TrackDescriptor):
            return partial.to_document()
        if isinstance(partial, Features):
            return partial.to_dict()
        return partial

    def _warn_clamped(self, name: str, value: float, clamped: float) -> None:
        message = f"{name}={value} out of range, clamped to {clamped}"
        logger.debug(f"[WARN] {message}")
        self.warnings.append(InvalidInputWarning(message))


def normalize_features(partial: Union[Mapping[str, Any], TrackDescriptor, None],
                       speechiness_default: float = FeatureDefaults.SPEECHINESS) -> Features:
    """
    Returns a complete, clamped feature set for a partial descriptor.

    Args:
        partial: Dict or TrackDescriptor, any field may be missing.
        speechiness_default: Value used when speechiness is missing.

    Returns:
        Features with arousal derived.
    """
    return FeatureNormalizer(speechiness_default).normalize(partial)
