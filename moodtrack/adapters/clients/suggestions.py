"""
AI category suggestions for a track.

Every backend returns an explicit result instead of raising:
- Ok(Suggestion) on a valid answer
- Err(TIMEOUT | PROVIDER_UNAVAILABLE | INVALID_RESPONSE) otherwise

Callers treat any Err as "no suggestion" and fall back to the deterministic
classification.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from moodtrack.config import EngineConfig, Provider
from moodtrack.core.errors import ExternalUnavailableError
from moodtrack.core.models import EmotionCategory, TrackDescriptor, parse_category
from moodtrack.core.reconciler import Suggestion

logger = logging.getLogger(__name__)


# ============================================================================
# RESULT TYPES
# ============================================================================

class SuggestionError(Enum):
    """Why no suggestion is available."""
    TIMEOUT = "timeout"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    INVALID_RESPONSE = "invalid_response"


@dataclass(frozen=True)
class Ok:
    value: Suggestion


@dataclass(frozen=True)
class Err:
    error: SuggestionError
    detail: str = ""


SuggestionResult = Union[Ok, Err]


class SuggestionTimeout(ExternalUnavailableError):
    """Raised by backends when the call exceeded its timeout."""
    pass


@dataclass(frozen=True)
class TrackMeta:
    """Metadata given to the model as context."""
    name: Optional[str] = None
    artists: List[str] = field(default_factory=list)


# ============================================================================
# PROMPT
# ============================================================================

FEATURE_KEYS = ("valence", "energy", "danceability", "speechiness",
                "acousticness", "tempo", "loudness", "mode")

SYSTEM_PROMPT = """You are an expert music mood analyst. Classify the song's overall emotional category using ONLY the provided metadata and audio features.
Return concise JSON only with keys: category, moodScore.
Categories must be one of exactly: "Excited/Happy", "Calm/Content", "Sad/Melancholic", "Tense/Angry", "Neutral".
moodScore must be a number from 0 to 1 (0 = very negative, 1 = very positive).

Mapping guidance (deterministic):
- High valence (>= 0.6) and high energy (>= 0.6) -> "Excited/Happy"
- High valence (>= 0.6) and low energy (< 0.6) -> "Calm/Content"
- Low valence (< 0.4) and high energy (>= 0.6) -> "Tense/Angry"
- Low valence (< 0.4) and low energy (< 0.6) -> "Sad/Melancholic"
- Otherwise -> "Neutral"
Use other features (danceability, speechiness, acousticness, tempo, loudness, mode) only to disambiguate near-threshold cases. Do not invent categories beyond the list. Always follow the mapping guidance when valence/energy clearly indicate a bucket."""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


def _feature_payload(features: Union[TrackDescriptor, Mapping[str, Any], None]) -> Dict[str, Any]:
    if features is None:
        return {}
    raw = features.to_document() if isinstance(features, TrackDescriptor) else features
    return {key: raw[key] for key in FEATURE_KEYS if raw.get(key) is not None}


def build_user_prompt(track: TrackMeta, features: Union[TrackDescriptor, Mapping[str, Any], None]) -> str:
    """User message describing the track."""
    lines = []
    if track.name:
        lines.append(f"Track: {track.name}")
    if track.artists:
        lines.append(f"Artists: {', '.join(track.artists)}")
    payload = _feature_payload(features)
    if payload:
        lines.append(f"Audio features: {json.dumps(payload)}")
    description = "\n".join(lines)
    return f'{description}\n\nRespond as JSON like: {{"category":"Calm/Content","moodScore":0.64}}'


def parse_suggestion(content: Optional[str]) -> SuggestionResult:
    """
    Validates a raw model answer.

    Args:
        content: JSON text, optionally wrapped in a markdown code fence.

    Returns:
        Ok(Suggestion) or Err(INVALID_RESPONSE).
    """
    if not content:
        return Err(SuggestionError.INVALID_RESPONSE, "empty content")
    try:
        parsed = json.loads(_FENCE_RE.sub("", content.strip()))
    except json.JSONDecodeError as e:
        return Err(SuggestionError.INVALID_RESPONSE, f"not JSON: {e}")
    if not isinstance(parsed, dict):
        return Err(SuggestionError.INVALID_RESPONSE, "not an object")

    category: Optional[EmotionCategory] = parse_category(parsed.get("category"))
    if category is None:
        return Err(SuggestionError.INVALID_RESPONSE, f"unknown category {parsed.get('category')!r}")

    score = parsed.get("moodScore")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        score = None
    return Ok(Suggestion(category=category, mood_score=score))


# ============================================================================
# PROVIDER BASE
# ============================================================================

class SuggestionProvider(ABC):
    """Backend-agnostic suggestion flow: prompt, call, validate."""

    name = "base"

    def __init__(self, timeout_ms: int):
        self.timeout_ms = timeout_ms

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @abstractmethod
    def complete(self, system_prompt: str, user_prompt: str) -> Optional[str]:
        """
        Sends the prompt and returns the raw answer text.

        Raises:
            SuggestionTimeout: If the call timed out.
            ExternalUnavailableError: If the backend failed.
        """

    def suggest(self, track: TrackMeta,
                features: Union[TrackDescriptor, Mapping[str, Any], None] = None) -> SuggestionResult:
        """
        Asks the backend for a category suggestion. Never raises.

        Args:
            track: Track name and artists.
            features: Raw descriptors given as context.

        Returns:
            Ok(Suggestion) or Err(SuggestionError).
        """
        try:
            content = self.complete(SYSTEM_PROMPT, build_user_prompt(track, features))
        except SuggestionTimeout as e:
            logger.warning(f"[WARN] {self.name} suggestion timed out after {self.timeout_ms} ms")
            return Err(SuggestionError.TIMEOUT, str(e))
        except ExternalUnavailableError as e:
            logger.warning(f"[WARN] {self.name} unavailable: {e}")
            return Err(SuggestionError.PROVIDER_UNAVAILABLE, str(e))

        result = parse_suggestion(content)
        if isinstance(result, Err):
            logger.warning(f"[WARN] {self.name} returned an invalid answer: {result.detail}")
        return result


def create_suggestion_provider(config: EngineConfig) -> Optional[SuggestionProvider]:
    """
    Builds the configured backend, or None when AI is disabled.
    """
    if not config.ai_enabled:
        return None

    from moodtrack.adapters.clients.gemini import GeminiSuggestionProvider
    from moodtrack.adapters.clients.openai_chat import AzureOpenAISuggestionProvider, OpenAISuggestionProvider

    ai = config.ai
    if config.provider == Provider.AZURE and ai.azure_ready:
        return AzureOpenAISuggestionProvider(ai.azure_endpoint, ai.azure_api_key,
                                             ai.azure_deployment, config.timeout_ms)
    if config.provider == Provider.OPENAI and ai.openai_api_key:
        return OpenAISuggestionProvider(ai.openai_api_key, ai.openai_model, config.timeout_ms)
    if config.provider == Provider.GEMINI and ai.gemini_api_key:
        return GeminiSuggestionProvider(ai.gemini_api_key, config.timeout_ms)

    logger.warning(f"[WARN] AI provider '{config.provider.value}' selected but not configured")
    return None
