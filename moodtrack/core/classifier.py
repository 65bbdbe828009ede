"""
Valence/arousal emotion classifier.

Maps normalized features to a label, an application category, a continuous
mood score and a confidence. Two threshold policies share one decision
procedure:
- Fixed thresholds (hi=0.58, lo=0.42) with secondary and dead-zone rules
- Adaptive per-user cut points (primary quadrant rules only)

Speech guardrail: speechiness >= 0.66 always yields Speech/Neutral.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional, Union

from moodtrack.core.features import Features, clamp, normalize_features
from moodtrack.core.models import (
    Classification,
    ClassificationMethod,
    CutPoints,
    EmotionCategory,
    EmotionLabel,
    category_for,
)

logger = logging.getLogger(__name__)


# ============================================================================
# CONFIGURATION - THRESHOLDS & WEIGHTS
# ============================================================================

class ClassifierConfig:
    """Centralized constants for the emotion classifier."""

    # SPEECH GUARDRAIL
    SPEECH_THRESHOLD: float = 0.66
    SPEECH_MOOD: float = 0.0
    SPEECH_CONFIDENCE: float = 0.9

    # MOOD SCORE WEIGHTS
    MOOD_WEIGHT_VALENCE: float = 0.5
    MOOD_WEIGHT_AROUSAL: float = 0.3
    MOOD_WEIGHT_DANCEABILITY: float = 0.15
    MOOD_WEIGHT_SPEECHINESS: float = -0.1

    # CONFIDENCE
    CONFIDENCE_FLOOR: float = 0.55
    CONFIDENCE_SPAN: float = 0.45
    CONFIDENCE_DISTANCE_SCALE: float = 0.5
    SHORT_CLIP_MS: int = 30_000
    SHORT_CLIP_CONFIDENCE_CAP: float = 0.7

    # SOFT CLASSIFICATION
    SOFT_DECAY: float = 6.0
    SOFT_NEUTRAL_PENALTY: float = 5.0
    SOFT_SPEECH_CONFIDENCE: float = 0.6
    SOFT_SPEECH_MOOD: float = 0.5


@dataclass(frozen=True)
class Thresholds:
    """
    Parameter set for the quadrant decision procedure.

    `v_hi`/`v_lo` apply to valence, `a_hi`/`a_lo` to arousal. `secondary`
    and `tertiary` switch on the one-axis and dead-zone fallbacks used by the
    fixed policy.
    """
    v_hi: float = 0.58
    v_lo: float = 0.42
    a_hi: float = 0.58
    a_lo: float = 0.42
    split: float = 0.5
    dead_zone: float = 0.08
    secondary: bool = True
    tertiary: bool = True

    @classmethod
    def from_cuts(cls, cuts: CutPoints) -> "Thresholds":
        return cls(
            v_hi=cuts.v_hi, v_lo=cuts.v_lo,
            a_hi=cuts.e_hi, a_lo=cuts.e_lo,
            secondary=False, tertiary=False,
        )


FIXED_THRESHOLDS = Thresholds()

# Stricter pair used by reconciliation on raw valence / energy
STRICT_THRESHOLDS = Thresholds(v_hi=0.66, v_lo=0.33, a_hi=0.66, a_lo=0.33,
                               secondary=False, tertiary=False)


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass(frozen=True)
class EmotionResult:
    """Classifier output before it is bound to a listening event."""
    label: EmotionLabel
    category: EmotionCategory
    valence: float
    arousal: float
    mood: float
    confidence: float

    def to_classification(self, event_id: str,
                          method: ClassificationMethod = ClassificationMethod.FIXED,
                          user_id: Optional[str] = None,
                          category: Optional[EmotionCategory] = None,
                          mood: Optional[float] = None) -> Classification:
        """Binds the result to an event, optionally overriding category / mood."""
        return Classification(
            event_id=event_id,
            user_id=user_id,
            label=self.label,
            category=category or self.category,
            valence=self.valence,
            arousal=self.arousal,
            mood=self.mood if mood is None else clamp(mood),
            confidence=self.confidence,
            method=method,
        )


@dataclass(frozen=True)
class SoftProbabilities:
    """Probability of each label given soft distances to the quadrant centers."""
    happy: float
    calm: float
    sad: float
    tense: float
    neutral: float
    confidence: float
    mood: float

    def most_likely(self) -> EmotionLabel:
        scores = {
            EmotionLabel.HAPPY: self.happy,
            EmotionLabel.CALM: self.calm,
            EmotionLabel.SAD: self.sad,
            EmotionLabel.TENSE: self.tense,
            EmotionLabel.NEUTRAL: self.neutral,
        }
        return max(scores, key=scores.get)


FeatureInput = Union[Features, Mapping[str, Any]]


def _as_features(features: FeatureInput) -> Features:
    if isinstance(features, Features):
        return features
    return normalize_features(features)


# ============================================================================
# SCORING
# ============================================================================

def mood_score(valence: float, arousal: float, danceability: float, speechiness: float) -> float:
    """Continuous mood composite in [0, 1]."""
    return clamp(
        ClassifierConfig.MOOD_WEIGHT_VALENCE * valence +
        ClassifierConfig.MOOD_WEIGHT_AROUSAL * arousal +
        ClassifierConfig.MOOD_WEIGHT_DANCEABILITY * danceability +
        ClassifierConfig.MOOD_WEIGHT_SPEECHINESS * speechiness
    )


def quadrant_label(valence: float, arousal: float, thresholds: Thresholds) -> EmotionLabel:
    """
    Applies the primary, secondary and dead-zone rules.

    Args:
        valence: Valence in [0, 1].
        arousal: Arousal (or energy) in [0, 1].
        thresholds: Decision parameters.

    Returns:
        One of Happy, Calm, Sad, Tense or Neutral.
    """
    t = thresholds
    v_high, v_low = valence >= t.v_hi, valence <= t.v_lo
    a_high, a_low = arousal >= t.a_hi, arousal <= t.a_lo

    # Primary: both axes decisive
    if v_high and a_high:
        return EmotionLabel.HAPPY
    if v_high and a_low:
        return EmotionLabel.CALM
    if v_low and a_low:
        return EmotionLabel.SAD
    if v_low and a_high:
        return EmotionLabel.TENSE

    label = EmotionLabel.NEUTRAL

    # Secondary: one axis decisive, the other split at the midpoint
    if t.secondary:
        if v_high:
            label = EmotionLabel.HAPPY if arousal >= t.split else EmotionLabel.CALM
        elif v_low:
            label = EmotionLabel.TENSE if arousal >= t.split else EmotionLabel.SAD
        elif a_high:
            label = EmotionLabel.HAPPY if valence >= t.split else EmotionLabel.TENSE
        elif a_low:
            label = EmotionLabel.CALM if valence >= t.split else EmotionLabel.SAD

    # Tertiary: only the small dead zone around the center stays Neutral
    if t.tertiary and label == EmotionLabel.NEUTRAL:
        dv = valence - t.split
        da = arousal - t.split
        if abs(dv) > t.dead_zone or abs(da) > t.dead_zone:
            if dv >= 0 and da >= 0:
                label = EmotionLabel.HAPPY
            elif dv >= 0:
                label = EmotionLabel.CALM
            elif da < 0:
                label = EmotionLabel.SAD
            else:
                label = EmotionLabel.TENSE

    return label


def boundary_confidence(valence: float, arousal: float, thresholds: Thresholds,
                        duration_ms: Optional[int] = None) -> float:
    """Confidence grows with the distance to the nearest decision boundary."""
    dv = min(abs(valence - thresholds.v_hi), abs(valence - thresholds.v_lo))
    da = min(abs(arousal - thresholds.a_hi), abs(arousal - thresholds.a_lo))
    confidence = clamp(
        ClassifierConfig.CONFIDENCE_FLOOR +
        ClassifierConfig.CONFIDENCE_SPAN * min(dv, da) / ClassifierConfig.CONFIDENCE_DISTANCE_SCALE
    )
    if duration_ms is not None and duration_ms < ClassifierConfig.SHORT_CLIP_MS:
        confidence = min(confidence, ClassifierConfig.SHORT_CLIP_CONFIDENCE_CAP)
    return confidence


# ============================================================================
# PUBLIC API
# ============================================================================

def classify(features: FeatureInput, thresholds: Thresholds = FIXED_THRESHOLDS) -> EmotionResult:
    """
    Classifies one track from its features.

    Args:
        features: Normalized Features, or a raw mapping that is normalized first.
        thresholds: Decision parameters (fixed policy by default).

    Returns:
        EmotionResult with label, category, valence, arousal, mood, confidence.
    """
    f = _as_features(features)

    if f.speechiness >= ClassifierConfig.SPEECH_THRESHOLD:
        return EmotionResult(
            label=EmotionLabel.SPEECH,
            category=category_for(EmotionLabel.SPEECH),
            valence=f.valence,
            arousal=f.arousal,
            mood=ClassifierConfig.SPEECH_MOOD,
            confidence=ClassifierConfig.SPEECH_CONFIDENCE,
        )

    label = quadrant_label(f.valence, f.arousal, thresholds)
    return EmotionResult(
        label=label,
        category=category_for(label),
        valence=f.valence,
        arousal=f.arousal,
        mood=mood_score(f.valence, f.arousal, f.danceability, f.speechiness),
        confidence=boundary_confidence(f.valence, f.arousal, thresholds, f.duration_ms),
    )


def classify_with_cuts(features: FeatureInput, cuts: CutPoints) -> EmotionResult:
    """Classifies against per-user cut points (primary quadrant rules only)."""
    return classify(features, Thresholds.from_cuts(cuts))


def soft_classify(features: FeatureInput, cuts: CutPoints) -> SoftProbabilities:
    """
    Soft assignment: exponential distance to each quadrant center defined by the cuts.

    Neutral gets a base weight that peaks at the (0.5, 0.5) center.
    """
    f = _as_features(features)
    decay = ClassifierConfig.SOFT_DECAY

    if f.speechiness >= ClassifierConfig.SPEECH_THRESHOLD:
        return SoftProbabilities(
            happy=0.0, calm=0.0, sad=0.0, tense=0.0, neutral=1.0,
            confidence=ClassifierConfig.SOFT_SPEECH_CONFIDENCE,
            mood=ClassifierConfig.SOFT_SPEECH_MOOD,
        )

    centers: Dict[str, tuple] = {
        "happy": (cuts.v_hi, cuts.e_hi),
        "calm": (cuts.v_hi, cuts.e_lo),
        "sad": (cuts.v_lo, cuts.e_lo),
        "tense": (cuts.v_lo, cuts.e_hi),
    }
    weights = {
        name: math.exp(-decay * math.hypot(f.valence - cv, f.arousal - ca))
        for name, (cv, ca) in centers.items()
    }
    weights["neutral"] = (math.exp(-decay * abs(f.valence - 0.5)) *
                          math.exp(-decay * abs(f.arousal - 0.5)))
    total = sum(weights.values())
    probs = {name: w / total for name, w in weights.items()}

    return SoftProbabilities(
        confidence=clamp(1 - ClassifierConfig.SOFT_NEUTRAL_PENALTY * probs["neutral"]),
        mood=mood_score(f.valence, f.arousal, f.danceability, f.speechiness),
        **probs,
    )


def classify_quadrant(valence: float, energy: float,
                      thresholds: Thresholds = STRICT_THRESHOLDS) -> EmotionCategory:
    """Primary-rule category on raw valence/energy (used by reconciliation)."""
    strict = replace(thresholds, secondary=False, tertiary=False)
    return category_for(quadrant_label(valence, energy, strict))
