"""
Reconciliation of an external (AI) suggestion with the deterministic quadrant.

The deterministic side uses the stricter 0.66 / 0.33 thresholds on raw
valence / energy, with a 0.06 tolerance band around each threshold:
- No suggestion -> deterministic category alone
- Deterministic Neutral -> suggestion wins
- Clearly outside every band and disagreeing -> deterministic overrides
- Otherwise (near a boundary, or agreement) -> suggestion wins
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

from moodtrack.core.classifier import STRICT_THRESHOLDS, Thresholds, classify_quadrant
from moodtrack.core.features import Features, clamp
from moodtrack.core.models import EmotionCategory

logger = logging.getLogger(__name__)


RECONCILE_MARGIN = 0.06


class ReconciliationSource(Enum):
    """Which side decided the final category."""
    DETERMINISTIC = "deterministic"
    AI = "ai"
    OVERRIDE = "override"


@dataclass(frozen=True)
class Suggestion:
    """Best-effort category (and optional mood) from an external provider."""
    category: EmotionCategory
    mood_score: Optional[float] = None

    def __post_init__(self):
        if self.mood_score is not None:
            object.__setattr__(self, "mood_score", clamp(float(self.mood_score)))


@dataclass(frozen=True)
class Reconciliation:
    """Final category after reconciliation."""
    category: EmotionCategory
    mood_score: Optional[float]
    source: ReconciliationSource


def near_boundary(valence: float, energy: float,
                  thresholds: Thresholds = STRICT_THRESHOLDS,
                  margin: float = RECONCILE_MARGIN) -> bool:
    """True when either axis sits inside the tolerance band of any threshold."""
    return (abs(valence - thresholds.v_hi) < margin or
            abs(valence - thresholds.v_lo) < margin or
            abs(energy - thresholds.a_hi) < margin or
            abs(energy - thresholds.a_lo) < margin)


def _valence_energy(features: Union[Features, Mapping[str, Any], None]) -> Optional[tuple]:
    if features is None:
        return None
    if isinstance(features, Features):
        return features.valence, features.energy
    valence = features.get("valence")
    energy = features.get("energy")
    if valence is None or energy is None:
        return None
    return float(valence), float(energy)


def reconcile(suggestion: Optional[Suggestion],
              features: Union[Features, Mapping[str, Any], None],
              thresholds: Thresholds = STRICT_THRESHOLDS,
              margin: float = RECONCILE_MARGIN) -> Optional[Reconciliation]:
    """
    Merges an external suggestion with the deterministic quadrant.

    Args:
        suggestion: Provider suggestion, None when absent / failed / timed out.
        features: Valence and energy of the track.
        thresholds: Deterministic thresholds (strict pair by default).
        margin: Tolerance band around each threshold.

    Returns:
        Reconciliation, or None when there is neither a suggestion nor usable features.
    """
    axes = _valence_energy(features)
    if axes is None:
        # Nothing to check the suggestion against
        if suggestion is None:
            return None
        return Reconciliation(suggestion.category, suggestion.mood_score, ReconciliationSource.AI)

    valence, energy = axes
    deterministic = classify_quadrant(valence, energy, thresholds)

    if suggestion is None:
        return Reconciliation(deterministic, None, ReconciliationSource.DETERMINISTIC)

    if deterministic == EmotionCategory.NEUTRAL:
        return Reconciliation(suggestion.category, suggestion.mood_score, ReconciliationSource.AI)

    if not near_boundary(valence, energy, thresholds, margin) and suggestion.category != deterministic:
        logger.debug(
            f"Override: suggestion {suggestion.category.value} -> {deterministic.value} "
            f"(v={valence:.2f}, e={energy:.2f})"
        )
        return Reconciliation(deterministic, suggestion.mood_score, ReconciliationSource.OVERRIDE)

    return Reconciliation(suggestion.category, suggestion.mood_score, ReconciliationSource.AI)
