"""
Google Gemini backend for category suggestions.

Models are tried in preference order; the first one that answers wins. A
timeout on any model ends the cascade (the time budget is spent).
"""

import logging
from typing import Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from moodtrack.adapters.clients.suggestions import SuggestionProvider, SuggestionTimeout
from moodtrack.core.errors import ExternalUnavailableError

logger = logging.getLogger(__name__)


# Model preference order for cascade fallback
PREFERRED_MODELS = [
    'gemini-2.5-flash',
    'gemini-2.0-flash',
    'gemini-2.0-flash-lite',
    'gemini-flash-latest',
]

GENERATION_CONFIG = {
    "temperature": 0,
    "response_mime_type": "application/json",
}


class GeminiSuggestionProvider(SuggestionProvider):
    """Gemini model cascade."""

    name = "gemini"

    def __init__(self, api_key: str, timeout_ms: int = 6000, models: Optional[list] = None):
        super().__init__(timeout_ms)
        self.models = list(models or PREFERRED_MODELS)
        genai.configure(api_key=api_key)

    def complete(self, system_prompt: str, user_prompt: str) -> Optional[str]:
        last_error = "no model configured"
        for model_name in self.models:
            try:
                logger.debug(f"Suggesting with model: {model_name}")
                model = genai.GenerativeModel(model_name, system_instruction=system_prompt)
                response = model.generate_content(
                    user_prompt,
                    generation_config=GENERATION_CONFIG,
                    request_options={"timeout": self.timeout_seconds}
                )
                text = response.text
                if text:
                    return text
                logger.warning(f"Model {model_name} returned an empty answer")
                last_error = f"{model_name}: empty answer"

            except google_exceptions.DeadlineExceeded:
                raise SuggestionTimeout(f"{model_name} timeout") from None
            except Exception as e:
                logger.warning(f"Model {model_name} failed: {e}")
                last_error = f"{model_name}: {e}"
                continue

        raise ExternalUnavailableError(f"All Gemini models failed ({last_error})")
