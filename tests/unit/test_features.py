import math

import pytest

from moodtrack.core.features import (
    FeatureNormalizer,
    Features,
    compute_arousal,
    normalize_features,
    normalize_loudness,
    normalize_tempo,
)
from moodtrack.core.models import TrackDescriptor


class TestNormalizeFeatures:
    """Defaults, clamping and arousal derivation."""

    def test_empty_input_gets_defaults(self):
        f = normalize_features({})

        assert f.valence == 0.5
        assert f.energy == 0.5
        assert f.danceability == 0.5
        assert f.acousticness == 0.5
        assert f.speechiness == 0.0
        assert f.tempo == 120
        assert f.mode == 1
        assert f.loudness is None

    def test_none_input_gets_defaults(self):
        assert normalize_features(None) == normalize_features({})

    def test_default_arousal(self):
        # 0.6*0.5 + 0.2*(60/140) + 0.1*0.5 + 0.1*0.5 (loudness -30 dB)
        expected = 0.3 + 0.2 * (60 / 140) + 0.05 + 0.05
        assert normalize_features({}).arousal == pytest.approx(expected)

    def test_out_of_range_values_are_clamped(self):
        normalizer = FeatureNormalizer()
        f = normalizer.normalize({"valence": 1.4, "energy": -0.2})

        assert f.valence == 1.0
        assert f.energy == 0.0
        assert len(normalizer.warnings) == 2

    def test_clamping_does_not_raise(self):
        f = normalize_features({"speechiness": 7, "danceability": -3})
        assert f.speechiness == 1.0
        assert f.danceability == 0.0

    @pytest.mark.parametrize("bad", [None, "loud", float("nan"), float("inf"), True])
    def test_non_numeric_values_are_missing(self, bad):
        f = normalize_features({"valence": bad, "tempo": bad})
        assert f.valence == 0.5
        assert f.tempo == 120

    def test_accepts_track_descriptor(self):
        descriptor = TrackDescriptor(track_id="t", valence=0.9, energy=0.2, duration_ms=1000)
        f = normalize_features(descriptor)

        assert isinstance(f, Features)
        assert f.valence == 0.9
        assert f.energy == 0.2
        assert f.duration_ms == 1000

    def test_speechiness_default_can_be_overridden(self):
        assert normalize_features({}, speechiness_default=0.1).speechiness == 0.1

    def test_mode_is_binary(self):
        assert normalize_features({"mode": 0}).mode == 0
        assert normalize_features({"mode": 0.7}).mode == 1

    def test_given_arousal_is_kept(self):
        assert normalize_features({"arousal": 0.33}).arousal == 0.33


class TestArousal:
    def test_tempo_normalization_bounds(self):
        assert normalize_tempo(60) == 0.0
        assert normalize_tempo(200) == 1.0
        assert normalize_tempo(20) == 0.0
        assert normalize_tempo(260) == 1.0

    def test_loudness_normalization(self):
        assert normalize_loudness(0) == 1.0
        assert normalize_loudness(-60) == 0.0
        assert normalize_loudness(None) == pytest.approx(0.5)

    def test_arousal_in_unit_range(self):
        assert 0.0 <= compute_arousal(1.0, 250, 0.0, 5.0) <= 1.0
        assert compute_arousal(1.0, 200, 0.0, 0.0) == pytest.approx(1.0)
        assert compute_arousal(0.0, 60, 1.0, -60.0) == pytest.approx(0.0)

    def test_energy_dominates(self):
        low = compute_arousal(0.1, 120, 0.5)
        high = compute_arousal(0.9, 120, 0.5)
        assert math.isclose(high - low, 0.6 * 0.8)
