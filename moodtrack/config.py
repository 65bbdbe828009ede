"""
Engine configuration.

All environment access happens in `EngineConfig.from_env()`; every entry point
receives an explicit EngineConfig so tests can build one by hand.
"""

import os
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

logger = logging.getLogger(__name__)


# ============================================================================
# ENUMS & DEFAULTS
# ============================================================================

class Provider(Enum):
    """AI suggestion backend."""
    AZURE = "azure"
    OPENAI = "openai"
    GEMINI = "gemini"
    NONE = "none"


class AIMode(Enum):
    """How batch jobs use the AI suggestion provider."""
    AUTO = "auto"    # use AI when a provider is configured
    ONLY = "only"    # skip events that get no suggestion
    OFF = "off"      # never call AI


DEFAULT_DB_NAME = "moodtrack"
DEFAULT_TIMEOUT_MS = 6000
DEFAULT_CATALOG_BATCH_SIZE = 100
MAX_CATALOG_BATCH_SIZE = 100
DEFAULT_TIMEZONE = "UTC"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"


# ============================================================================
# CONFIG
# ============================================================================

@dataclass(frozen=True)
class AIConfig:
    """Credentials for the AI backends (only the selected one is used)."""
    azure_endpoint: Optional[str] = None
    azure_api_key: Optional[str] = None
    azure_deployment: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_model: str = DEFAULT_OPENAI_MODEL
    gemini_api_key: Optional[str] = None

    @property
    def azure_ready(self) -> bool:
        return bool(self.azure_endpoint and self.azure_api_key and self.azure_deployment)

    def detect_provider(self) -> Provider:
        """Picks the first configured backend: azure > openai > gemini."""
        if self.azure_ready:
            return Provider.AZURE
        if self.openai_api_key:
            return Provider.OPENAI
        if self.gemini_api_key:
            return Provider.GEMINI
        return Provider.NONE


@dataclass(frozen=True)
class EngineConfig:
    """
    Explicit configuration handed to batch jobs, reports and the CLI.

    Attributes:
        provider: AI backend in use (NONE disables suggestions).
        timeout_ms: Timeout of a single AI call.
        catalog_batch_size: Track ids per catalog request (1..100).
        ai_mode: auto, only or off.
        default_timezone: IANA timezone used when a caller gives none.
        mongodb_uri: Connection string for the Mongo store.
        db_name: Database name.
        spotify_client_id / spotify_client_secret: Catalog credentials.
        ai: Backend credentials.
    """
    provider: Provider = Provider.NONE
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    catalog_batch_size: int = DEFAULT_CATALOG_BATCH_SIZE
    ai_mode: AIMode = AIMode.AUTO
    default_timezone: str = DEFAULT_TIMEZONE
    mongodb_uri: Optional[str] = None
    db_name: str = DEFAULT_DB_NAME
    spotify_client_id: Optional[str] = None
    spotify_client_secret: Optional[str] = None
    ai: AIConfig = field(default_factory=AIConfig)

    def __post_init__(self):
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")
        if not 1 <= self.catalog_batch_size <= MAX_CATALOG_BATCH_SIZE:
            raise ValueError(f"catalog_batch_size must be in 1..{MAX_CATALOG_BATCH_SIZE}, "
                             f"got {self.catalog_batch_size}")

    @property
    def ai_enabled(self) -> bool:
        return self.provider != Provider.NONE and self.ai_mode != AIMode.OFF

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """
        Builds the configuration from environment variables.

        Invalid values fall back to their defaults with a warning.

        Args:
            environ: Mapping to read from (defaults to os.environ).

        Returns:
            EngineConfig instance.
        """
        env = os.environ if environ is None else environ

        ai = AIConfig(
            azure_endpoint=env.get("AZURE_OPENAI_ENDPOINT") or None,
            azure_api_key=env.get("AZURE_OPENAI_API_KEY") or None,
            azure_deployment=env.get("AZURE_OPENAI_DEPLOYMENT") or None,
            openai_api_key=env.get("OPENAI_API_KEY") or None,
            openai_model=env.get("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL,
            gemini_api_key=env.get("GEMINI_API_KEY") or None,
        )

        provider = ai.detect_provider()
        explicit = env.get("MOODTRACK_AI_PROVIDER")
        if explicit:
            try:
                provider = Provider(explicit.strip().lower())
            except ValueError:
                logger.warning(f"[WARN] Unknown MOODTRACK_AI_PROVIDER '{explicit}', using {provider.value}")

        ai_mode = AIMode.AUTO
        raw_mode = env.get("MOODTRACK_AI_MODE")
        if raw_mode:
            try:
                ai_mode = AIMode(raw_mode.strip().lower())
            except ValueError:
                logger.warning(f"[WARN] Unknown MOODTRACK_AI_MODE '{raw_mode}', using auto")

        return cls(
            provider=provider,
            timeout_ms=_int_setting(env, "MOODTRACK_AI_TIMEOUT_MS", DEFAULT_TIMEOUT_MS, 1, None),
            catalog_batch_size=_int_setting(env, "MOODTRACK_CATALOG_BATCH_SIZE",
                                            DEFAULT_CATALOG_BATCH_SIZE, 1, MAX_CATALOG_BATCH_SIZE),
            ai_mode=ai_mode,
            default_timezone=env.get("MOODTRACK_TIMEZONE") or DEFAULT_TIMEZONE,
            mongodb_uri=env.get("MONGODB_URI") or None,
            db_name=env.get("MOODTRACK_DB_NAME") or DEFAULT_DB_NAME,
            spotify_client_id=env.get("SPOTIFY_CLIENT_ID") or None,
            spotify_client_secret=env.get("SPOTIFY_CLIENT_SECRET") or None,
            ai=ai,
        )


def _int_setting(env: Mapping[str, str], name: str, default: int,
                 minimum: int, maximum: Optional[int]) -> int:
    raw = env.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"[WARN] {name}='{raw}' is not an integer, using {default}")
        return default
    if value < minimum or (maximum is not None and value > maximum):
        logger.warning(f"[WARN] {name}={value} out of range, using {default}")
        return default
    return value
