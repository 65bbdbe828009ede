import pytest
from unittest.mock import MagicMock

import requests

from moodtrack.adapters.clients.spotify import (
    SPOTIFY_AUDIO_FEATURES_URL,
    SpotifyAuthError,
    SpotifyAuthenticator,
    SpotifyCatalogClient,
    StorageDefaults,
    descriptor_from_audio_features,
    is_valid_track_id,
)
from moodtrack.config import EngineConfig


TRACK_A = "4uLU6hMCjMI75M1A2tKUQC"
TRACK_B = "7qiZfU4dY1lWllzX7mPBI3"


def token_response(token="tok"):
    response = MagicMock()
    response.json.return_value = {"access_token": token}
    return response


def features_response(items):
    response = MagicMock()
    response.json.return_value = {"audio_features": items}
    return response


def audio_features(track_id, **overrides):
    item = {"id": track_id, "valence": 0.7, "energy": 0.6, "danceability": 0.8, "acousticness": 0.1,
            "speechiness": 0.04, "tempo": 118.0, "loudness": -5.0, "mode": 0, "duration_ms": 210000}
    item.update(overrides)
    return item


class TestAuthenticator:

    def test_missing_credentials(self):
        with pytest.raises(ValueError):
            SpotifyAuthenticator(None, "secret")

    def test_token_is_cached(self, mock_post):
        mock_post.return_value = token_response("abc")
        auth = SpotifyAuthenticator("id", "secret")

        assert auth.get_access_token() == "abc"
        assert auth.get_access_token() == "abc"
        assert mock_post.call_count == 1

    def test_timeout(self, mock_post):
        mock_post.side_effect = requests.exceptions.Timeout()

        with pytest.raises(SpotifyAuthError):
            SpotifyAuthenticator("id", "secret").get_access_token()

    def test_missing_token(self, mock_post):
        mock_post.return_value = token_response(None)

        with pytest.raises(SpotifyAuthError):
            SpotifyAuthenticator("id", "secret").get_access_token()


def test_track_id_validation():
    assert is_valid_track_id(TRACK_A)
    assert not is_valid_track_id("short")
    assert not is_valid_track_id("4uLU6hMCjMI75M1A2tKUQ!")
    assert not is_valid_track_id(None)


def test_storage_defaults_for_missing_fields():
    descriptor = descriptor_from_audio_features({"id": TRACK_A, "valence": 0.2, "mode": None})

    assert descriptor.valence == 0.2
    assert descriptor.energy == StorageDefaults.ENERGY
    assert descriptor.speechiness == 0.1
    assert descriptor.loudness == -10.0
    assert descriptor.tempo == 120.0
    assert descriptor.mode == 1
    assert descriptor.duration_ms is None


class TestCatalogClient:

    def test_from_config_without_credentials(self):
        assert SpotifyCatalogClient.from_config(EngineConfig()) is None

    def test_from_config(self):
        client = SpotifyCatalogClient.from_config(
            EngineConfig(spotify_client_id="id", spotify_client_secret="s", catalog_batch_size=20)
        )
        assert client.batch_size == 20

    def test_fetch_descriptors(self, mock_post, mock_get):
        mock_post.return_value = token_response()
        mock_get.return_value = features_response([audio_features(TRACK_A), None])
        client = SpotifyCatalogClient(SpotifyAuthenticator("id", "secret"))

        descriptors = client.fetch_descriptors([TRACK_B, TRACK_A, TRACK_A, "bad-id"])

        assert list(descriptors) == [TRACK_A]
        assert descriptors[TRACK_A].mode == 0
        assert descriptors[TRACK_A].duration_ms == 210000
        args, kwargs = mock_get.call_args
        assert args[0] == SPOTIFY_AUDIO_FEATURES_URL
        assert kwargs["params"] == {"ids": f"{TRACK_A},{TRACK_B}"}
        assert kwargs["headers"] == {"Authorization": "Bearer tok"}

    def test_batches_and_failed_batch_is_skipped(self, mock_post, mock_get):
        mock_post.return_value = token_response()
        failing = MagicMock()
        failing.raise_for_status.side_effect = requests.exceptions.HTTPError(response=MagicMock(status_code=429))
        mock_get.side_effect = [features_response([audio_features(TRACK_A)]), failing]
        client = SpotifyCatalogClient(SpotifyAuthenticator("id", "secret"), batch_size=1)

        descriptors = client.fetch_descriptors([TRACK_A, TRACK_B])

        assert mock_get.call_count == 2
        assert set(descriptors) == {TRACK_A}

    @pytest.mark.parametrize("body", [["unexpected"], {"audio_features": "oops"}, {}])
    def test_malformed_batch_is_skipped(self, mock_post, mock_get, body):
        mock_post.return_value = token_response()
        malformed = MagicMock()
        malformed.json.return_value = body
        mock_get.side_effect = [malformed, features_response([audio_features(TRACK_B), "oops"])]
        client = SpotifyCatalogClient(SpotifyAuthenticator("id", "secret"), batch_size=1)

        descriptors = client.fetch_descriptors([TRACK_A, TRACK_B])

        assert set(descriptors) == {TRACK_B}

    def test_unrequested_ids_are_ignored(self, mock_post, mock_get):
        mock_post.return_value = token_response()
        mock_get.return_value = features_response([audio_features(TRACK_B)])
        client = SpotifyCatalogClient(SpotifyAuthenticator("id", "secret"))

        assert client.fetch_descriptors([TRACK_A]) == {}

    def test_nothing_to_fetch(self, mock_get):
        client = SpotifyCatalogClient(SpotifyAuthenticator("id", "secret"))
        assert client.fetch_descriptors(["bad"]) == {}
        mock_get.assert_not_called()
