"""
Per-user percentile cut points.

The 33rd and 66th percentiles of valence and arousal (or raw energy) over a
user's descriptor population personalize the classification boundaries.
Percentiles use linear interpolation between closest ranks (the same
definition as SQL PERCENTILE_CONT).
"""

import logging
from typing import Any, Iterable, List, Mapping, Union

import numpy as np

from moodtrack.core.errors import InsufficientDataError
from moodtrack.core.features import Features, normalize_features
from moodtrack.core.models import CutPoints, TrackDescriptor

logger = logging.getLogger(__name__)


LOWER_PERCENTILE = 0.33
UPPER_PERCENTILE = 0.66
AXES = ("arousal", "energy")

Sample = Union[Features, TrackDescriptor, Mapping[str, Any]]


def _percentiles(values: List[float]) -> tuple:
    lo, hi = np.quantile(np.asarray(values, dtype=float),
                         [LOWER_PERCENTILE, UPPER_PERCENTILE])
    return float(lo), float(hi)


def estimate_cuts(population: Iterable[Sample], axis: str = "arousal",
                  min_population: int = 1) -> CutPoints:
    """
    Computes 33rd/66th percentile cut points over a descriptor population.

    Args:
        population: One sample per listening event (repeat plays count again).
        axis: "arousal" (derived from energy/tempo/acousticness/loudness) or "energy".
        min_population: Smallest population accepted.

    Returns:
        CutPoints with v_lo <= v_hi and e_lo <= e_hi.

    Raises:
        InsufficientDataError: If the population is empty or below min_population.
        ValueError: If axis is unknown.
    """
    if axis not in AXES:
        raise ValueError(f"Unknown axis '{axis}', expected one of {AXES}")

    valences: List[float] = []
    second_axis: List[float] = []
    for sample in population:
        features = sample if isinstance(sample, Features) else normalize_features(sample)
        valences.append(features.valence)
        second_axis.append(features.arousal if axis == "arousal" else features.energy)

    size = len(valences)
    if size == 0 or size < max(1, min_population):
        logger.warning(f"[WARN] Cut estimation needs {max(1, min_population)} samples, got {size}")
        raise InsufficientDataError("Insufficient data to compute cuts", population_size=size)

    v_lo, v_hi = _percentiles(valences)
    e_lo, e_hi = _percentiles(second_axis)
    cuts = CutPoints(v_lo=v_lo, v_hi=v_hi, e_lo=e_lo, e_hi=e_hi)
    logger.info(f"[OK] Cuts over {size} samples ({axis}): {cuts}")
    return cuts
