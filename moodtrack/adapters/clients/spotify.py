"""
Spotify catalog client for track descriptors.

This module provides:
- Client Credentials authentication
- Batched /v1/audio-features lookups (up to 100 ids per request)
- Conversion to TrackDescriptor with storage defaults for missing fields

Failed batches are skipped: the caller gets whatever descriptors were returned.
"""

import base64
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

import requests

from moodtrack.config import DEFAULT_CATALOG_BATCH_SIZE, MAX_CATALOG_BATCH_SIZE, EngineConfig
from moodtrack.core.errors import ExternalUnavailableError
from moodtrack.core.models import TrackDescriptor

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

SPOTIFY_AUTH_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_AUDIO_FEATURES_URL = "https://api.spotify.com/v1/audio-features"

API_TIMEOUT = 10
TRACK_ID_PATTERN = re.compile(r"^[0-9A-Za-z]{22}$")


class StorageDefaults:
    """Values stored when the catalog omits a field."""
    VALENCE: float = 0.5
    ENERGY: float = 0.5
    TEMPO: float = 120.0
    DANCEABILITY: float = 0.5
    ACOUSTICNESS: float = 0.5
    SPEECHINESS: float = 0.1
    MODE: int = 1
    LOUDNESS: float = -10.0


# ============================================================================
# EXCEPTIONS
# ============================================================================

class SpotifyAuthError(ExternalUnavailableError):
    """Raised when Spotify authentication fails."""
    pass


class SpotifyAPIError(ExternalUnavailableError):
    """Raised when Spotify API call fails."""
    pass


# ============================================================================
# SPOTIFY AUTHENTICATION
# ============================================================================

class SpotifyAuthenticator:
    """Handles Spotify API authentication using Client Credentials flow."""

    def __init__(self, client_id: Optional[str], client_secret: Optional[str]) -> None:
        """
        Args:
            client_id: Spotify client ID.
            client_secret: Spotify client secret.

        Raises:
            ValueError: If credentials are missing.
        """
        if not client_id or not client_secret:
            raise ValueError("Spotify credentials not configured (SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET)")
        self.client_id = client_id
        self.client_secret = client_secret
        self.access_token: Optional[str] = None

    def get_access_token(self) -> str:
        """
        Obtains an access token, reused for the lifetime of the authenticator.

        Raises:
            SpotifyAuthError: On authentication failures.
        """
        if self.access_token:
            return self.access_token

        try:
            b64_auth = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
            response = requests.post(
                SPOTIFY_AUTH_URL,
                headers={
                    "Authorization": f"Basic {b64_auth}",
                    "Content-Type": "application/x-www-form-urlencoded"
                },
                data={"grant_type": "client_credentials"},
                timeout=API_TIMEOUT
            )
            response.raise_for_status()
            self.access_token = response.json().get("access_token")

        except requests.exceptions.Timeout:
            logger.error("Spotify auth timeout")
            raise SpotifyAuthError("Authentication timeout") from None
        except requests.exceptions.HTTPError as e:
            logger.error(f"Spotify auth HTTP error: {e.response.status_code}")
            raise SpotifyAuthError(f"HTTP {e.response.status_code}") from None
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Spotify authentication failed: {e}")
            raise SpotifyAuthError(str(e)) from e

        if not self.access_token:
            raise SpotifyAuthError("No access token in response")

        logger.info("[OK] Spotify authentication successful")
        return self.access_token


# ============================================================================
# CATALOG CLIENT
# ============================================================================

def is_valid_track_id(track_id: Any) -> bool:
    """Spotify ids are 22 base-62 characters."""
    return isinstance(track_id, str) and bool(TRACK_ID_PATTERN.match(track_id))


def descriptor_from_audio_features(item: Dict[str, Any]) -> TrackDescriptor:
    """Builds a TrackDescriptor from one audio-features object, applying storage defaults."""

    def number(key: str, default: float) -> float:
        value = item.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return default
        return float(value)

    mode = item.get("mode")
    duration = item.get("duration_ms")
    return TrackDescriptor(
        track_id=item["id"],
        duration_ms=int(duration) if isinstance(duration, (int, float)) and not isinstance(duration, bool) else None,
        valence=number("valence", StorageDefaults.VALENCE),
        energy=number("energy", StorageDefaults.ENERGY),
        danceability=number("danceability", StorageDefaults.DANCEABILITY),
        acousticness=number("acousticness", StorageDefaults.ACOUSTICNESS),
        speechiness=number("speechiness", StorageDefaults.SPEECHINESS),
        tempo=number("tempo", StorageDefaults.TEMPO),
        loudness=number("loudness", StorageDefaults.LOUDNESS),
        mode=int(mode) if isinstance(mode, int) and not isinstance(mode, bool) else StorageDefaults.MODE,
    )


class SpotifyCatalogClient:
    """Descriptor provider backed by the Spotify Web API."""

    def __init__(self, authenticator: SpotifyAuthenticator,
                 batch_size: int = DEFAULT_CATALOG_BATCH_SIZE) -> None:
        self.auth = authenticator
        self.batch_size = max(1, min(batch_size, MAX_CATALOG_BATCH_SIZE))

    @classmethod
    def from_config(cls, config: EngineConfig) -> Optional["SpotifyCatalogClient"]:
        """Returns a client, or None when credentials are missing."""
        try:
            auth = SpotifyAuthenticator(config.spotify_client_id, config.spotify_client_secret)
        except ValueError as e:
            logger.warning(f"Spotify client disabled: {e}")
            return None
        return cls(auth, config.catalog_batch_size)

    def fetch_batch(self, track_ids: List[str]) -> List[Dict[str, Any]]:
        """
        Fetches audio features for one batch of ids.

        Raises:
            SpotifyAPIError: If the request fails.
        """
        token = self.auth.get_access_token()
        try:
            response = requests.get(
                SPOTIFY_AUDIO_FEATURES_URL,
                headers={"Authorization": f"Bearer {token}"},
                params={"ids": ",".join(track_ids)},
                timeout=API_TIMEOUT
            )
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.Timeout:
            raise SpotifyAPIError("Audio features timeout") from None
        except requests.exceptions.HTTPError as e:
            raise SpotifyAPIError(f"HTTP {e.response.status_code}") from None
        except (requests.exceptions.RequestException, ValueError) as e:
            raise SpotifyAPIError(str(e)) from e

        items = payload.get("audio_features") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise SpotifyAPIError("Unexpected audio features body")
        return [item for item in items if isinstance(item, dict)]

    def fetch_descriptors(self, track_ids: Iterable[str]) -> Dict[str, TrackDescriptor]:
        """
        Fetches descriptors for many tracks, tolerating partial results.

        Args:
            track_ids: Spotify track ids; invalid ids are skipped.

        Returns:
            Descriptors keyed by track id (ids the catalog did not return are absent).
        """
        ids = sorted({tid for tid in track_ids if is_valid_track_id(tid)})
        descriptors: Dict[str, TrackDescriptor] = {}

        for i in range(0, len(ids), self.batch_size):
            batch = ids[i:i + self.batch_size]
            try:
                items = self.fetch_batch(batch)
            except ExternalUnavailableError as e:
                logger.warning(f"[WARN] Skipping catalog batch of {len(batch)} ids: {e}")
                continue
            requested = set(batch)
            for item in items:
                if item.get("id") in requested:
                    descriptors[item["id"]] = descriptor_from_audio_features(item)

        logger.info(f"[OK] Catalog returned {len(descriptors)}/{len(ids)} descriptors")
        return descriptors
