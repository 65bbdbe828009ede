"""
Z-score anomaly flags over a series of buckets.

Statistics are computed over the whole window passed in (population mean and
standard deviation of the non-null mood averages), not a moving window.
"""

import logging
import math
from dataclasses import replace
from typing import Iterable, List

import numpy as np

from moodtrack.core.models import Bucket

logger = logging.getLogger(__name__)


ANOMALY_THRESHOLD = 2.0


def detect_anomalies(buckets: Iterable[Bucket], threshold: float = ANOMALY_THRESHOLD) -> List[Bucket]:
    """
    Annotates buckets with a z-score and an anomaly flag.

    Args:
        buckets: Bucket series (typically daily summaries).
        threshold: |z| strictly above this value is an anomaly.

    Returns:
        New Bucket objects in the same order. zscore is None when the bucket
        has no mood average or when the series has zero variance.
    """
    series = list(buckets)
    moods = [b.mood_avg for b in series if b.mood_avg is not None]
    if not moods:
        return [replace(b, zscore=None, anomaly=False) for b in series]

    values = np.asarray(moods, dtype=float)
    mean = float(values.mean())
    std = float(values.std())

    annotated = []
    for bucket in series:
        mood = bucket.mood_avg
        if mood is None or std == 0:
            annotated.append(replace(bucket, zscore=None, anomaly=False))
            continue
        z = (mood - mean) / std
        # |z| equal to the threshold up to rounding is not above it
        anomaly = abs(z) > threshold and not math.isclose(abs(z), threshold)
        annotated.append(replace(bucket, zscore=z, anomaly=anomaly))

    flagged = sum(1 for b in annotated if b.anomaly)
    if flagged:
        logger.info(f"[OK] {flagged} anomalous bucket(s) over {len(moods)} with mood (mean={mean:.3f}, std={std:.3f})")
    return annotated
