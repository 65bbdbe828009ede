from datetime import date, timedelta

import pytest

from moodtrack.core.anomaly import ANOMALY_THRESHOLD, detect_anomalies
from moodtrack.core.models import Bucket


def series(moods):
    start = date(2025, 1, 1)
    buckets = []
    for i, mood in enumerate(moods):
        bucket = Bucket(period_start=start + timedelta(days=i), count=1)
        if mood is not None:
            bucket.mood_weighted_sum = mood
            bucket.weight_sum = 1.0
        buckets.append(bucket)
    return buckets


class TestDetectAnomalies:
    """Population z-scores with a strict |z| > 2 rule."""

    def test_single_outlier_is_flagged(self):
        result = detect_anomalies(series([0.5] * 9 + [0.99]))

        assert result[-1].anomaly is True
        assert result[-1].zscore == pytest.approx(3.0)
        assert not any(b.anomaly for b in result[:-1])
        assert result[0].zscore == pytest.approx(-1 / 3)

    def test_higher_threshold(self):
        result = detect_anomalies(series([0.5] * 9 + [0.99]), threshold=3.5)
        assert not any(b.anomaly for b in result)

    def test_score_equal_to_threshold_is_not_flagged(self):
        result = detect_anomalies(series([0.5, 0.5, 0.5, 0.5, 0.99]))

        assert result[-1].zscore == pytest.approx(2.0)
        assert result[-1].anomaly is False
        assert result[0].zscore == pytest.approx(-0.5)

    def test_lower_threshold(self):
        result = detect_anomalies(series([0.5, 0.5, 0.5, 0.5, 0.99]), threshold=1.5)
        assert result[-1].anomaly is True

    def test_zero_variance_has_no_zscore(self):
        result = detect_anomalies(series([0.5] * 6))

        assert all(b.zscore is None for b in result)
        assert not any(b.anomaly for b in result)

    def test_buckets_without_mood_are_skipped(self):
        result = detect_anomalies(series([0.5] * 9 + [None, 0.99]))

        assert result[9].zscore is None
        assert result[9].anomaly is False
        assert result[10].zscore == pytest.approx(3.0)

    def test_inputs_are_not_mutated(self):
        original = series([0.5] * 9 + [0.99])
        detect_anomalies(original)
        assert all(b.zscore is None and not b.anomaly for b in original)

    def test_empty_series(self):
        assert detect_anomalies([]) == []
        assert ANOMALY_THRESHOLD == 2.0
