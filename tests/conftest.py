import pytest
import os
import sys
from unittest.mock import MagicMock, patch
from datetime import datetime, timedelta, timezone

# Add project root to Python Path so modules can be imported
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from moodtrack.adapters.repositories.memory import InMemoryEventStore
from moodtrack.config import AIMode, EngineConfig
from moodtrack.core.models import ListeningEvent, TrackDescriptor

# ============================================================================
# 1. GLOBAL MOCKS (ENV VARS & APIS)
# ============================================================================

@pytest.fixture(autouse=True)
def mock_env_vars():
    """Sets up fake environment variables for all tests (no real AI provider)."""
    with patch.dict(os.environ, {
        "MONGODB_URI": "mongodb://localhost:27017",
        "SPOTIFY_CLIENT_ID": "fake_id",
        "SPOTIFY_CLIENT_SECRET": "fake_secret",
        "MOODTRACK_AI_PROVIDER": "none",
    }, clear=False):
        for key in ("AZURE_OPENAI_ENDPOINT", "AZURE_OPENAI_API_KEY", "AZURE_OPENAI_DEPLOYMENT",
                    "OPENAI_API_KEY", "GEMINI_API_KEY", "MOODTRACK_AI_MODE", "MOODTRACK_TIMEZONE"):
            os.environ.pop(key, None)
        yield


@pytest.fixture
def mock_genai():
    """Mocks Google Generative AI (Gemini)."""
    with patch("moodtrack.adapters.clients.gemini.genai") as mock:
        mock.configure = MagicMock()

        model_instance = MagicMock()
        mock.GenerativeModel.return_value = model_instance

        # Default happy path response
        response = MagicMock()
        response.text = '{"category": "Calm/Content", "moodScore": 0.64}'
        model_instance.generate_content.return_value = response

        yield mock


@pytest.fixture
def mock_post():
    """Mocks requests.post (AI backends, Spotify auth)."""
    with patch("requests.post") as mock:
        yield mock


@pytest.fixture
def mock_get():
    """Mocks requests.get (Spotify catalog)."""
    with patch("requests.get") as mock:
        yield mock

# ============================================================================
# 2. ENGINE FIXTURES
# ============================================================================

NOW = datetime(2025, 3, 31, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def config():
    """Configuration without AI."""
    return EngineConfig(ai_mode=AIMode.OFF)


@pytest.fixture
def store():
    return InMemoryEventStore()


def make_event(event_id, played_at, track_id="t1", ms_played=200_000, user_id="u1", **kwargs):
    return ListeningEvent(id=event_id, user_id=user_id, track_id=track_id,
                          played_at=played_at, ms_played=ms_played, **kwargs)


def make_descriptor(track_id, valence=0.8, energy=0.8, duration_ms=200_000, **kwargs):
    values = dict(danceability=0.5, acousticness=0.2, speechiness=0.05, tempo=130.0,
                  loudness=-6.0, mode=1)
    values.update(kwargs)
    return TrackDescriptor(track_id=track_id, valence=valence, energy=energy,
                           duration_ms=duration_ms, **values)


@pytest.fixture
def seeded_store(store, now):
    """Store with a happy track, a sad track and a podcast played over the last weeks."""
    store.upsert_descriptor(make_descriptor("happy", valence=0.9, energy=0.9, tempo=150.0, acousticness=0.1))
    store.upsert_descriptor(make_descriptor("sad", valence=0.1, energy=0.1, tempo=70.0, acousticness=0.9,
                                            loudness=-25.0))
    store.upsert_descriptor(make_descriptor("talk", valence=0.5, energy=0.4, speechiness=0.9))

    events = []
    for day in range(1, 21):
        played = now.replace(hour=9) - timedelta(days=day)
        events.append(make_event(f"h{day}", played, track_id="happy"))
        events.append(make_event(f"s{day}", played.replace(hour=21), track_id="sad"))
    events.append(make_event("p1", now - timedelta(days=2), track_id="talk"))
    events.append(make_event("x1", now - timedelta(days=3), track_id="unknown"))
    store.insert_events(events)
    return store


@pytest.fixture
def event_factory():
    return make_event


@pytest.fixture
def descriptor_factory():
    return make_descriptor
