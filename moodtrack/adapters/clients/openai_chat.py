"""
Azure OpenAI and OpenAI chat-completions backends for category suggestions.

Both use plain HTTPS calls with a JSON response format and temperature 0.
"""

import logging
from abc import abstractmethod
from typing import Any, Dict, Optional

import requests

from moodtrack.adapters.clients.suggestions import SuggestionProvider, SuggestionTimeout
from moodtrack.config import DEFAULT_OPENAI_MODEL
from moodtrack.core.errors import ExternalUnavailableError

logger = logging.getLogger(__name__)


OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
AZURE_API_VERSION = "2024-02-15-preview"


class ChatCompletionsProvider(SuggestionProvider):
    """Shared request / response handling for chat-completions endpoints."""

    name = "chat"

    @abstractmethod
    def _url(self) -> str:
        """Endpoint of the deployment."""

    @abstractmethod
    def _headers(self) -> Dict[str, str]:
        """Authentication headers."""

    def _body(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        return {
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": 0,
            "response_format": {"type": "json_object"},
        }

    def complete(self, system_prompt: str, user_prompt: str) -> Optional[str]:
        try:
            response = requests.post(
                self._url(),
                headers=self._headers(),
                json=self._body(system_prompt, user_prompt),
                timeout=self.timeout_seconds
            )
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.Timeout:
            raise SuggestionTimeout(f"{self.name} timeout") from None
        except requests.exceptions.HTTPError as e:
            raise ExternalUnavailableError(f"HTTP {e.response.status_code}") from None
        except (requests.exceptions.RequestException, ValueError) as e:
            raise ExternalUnavailableError(str(e)) from e

        # Malformed bodies count as no content
        choices = payload.get("choices") if isinstance(payload, dict) else None
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return None
        message = choices[0].get("message")
        content = message.get("content") if isinstance(message, dict) else None
        return content if isinstance(content, str) else None


class AzureOpenAISuggestionProvider(ChatCompletionsProvider):
    """Azure OpenAI deployment."""

    name = "azure"

    def __init__(self, endpoint: str, api_key: str, deployment: str, timeout_ms: int):
        super().__init__(timeout_ms)
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.deployment = deployment

    def _url(self) -> str:
        return (f"{self.endpoint}/openai/deployments/{self.deployment}"
                f"/chat/completions?api-version={AZURE_API_VERSION}")

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "api-key": self.api_key}


class OpenAISuggestionProvider(ChatCompletionsProvider):
    """OpenAI public API."""

    name = "openai"

    def __init__(self, api_key: str, model: str = DEFAULT_OPENAI_MODEL, timeout_ms: int = 6000):
        super().__init__(timeout_ms)
        self.api_key = api_key
        self.model = model

    def _url(self) -> str:
        return OPENAI_CHAT_URL

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"}

    def _body(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        body = super()._body(system_prompt, user_prompt)
        body["model"] = self.model
        return body
