import pytest
from unittest.mock import MagicMock

import requests
from google.api_core import exceptions as google_exceptions

from moodtrack.adapters.clients.gemini import PREFERRED_MODELS, GeminiSuggestionProvider
from moodtrack.adapters.clients.openai_chat import (
    AZURE_API_VERSION,
    OPENAI_CHAT_URL,
    AzureOpenAISuggestionProvider,
    ChatCompletionsProvider,
    OpenAISuggestionProvider,
)
from moodtrack.adapters.clients.suggestions import (
    Err,
    Ok,
    SuggestionError,
    TrackMeta,
    build_user_prompt,
    create_suggestion_provider,
    parse_suggestion,
)
from moodtrack.config import AIConfig, AIMode, EngineConfig, Provider
from moodtrack.core.models import EmotionCategory


TRACK = TrackMeta("Clair de Lune", ["Debussy"])
FEATURES = {"valence": 0.3, "energy": 0.1, "tempo": 70.0, "track_id": "ignored"}


def chat_response(content):
    response = MagicMock()
    response.json.return_value = {"choices": [{"message": {"content": content}}]}
    return response


# ============================================================================
# 1. PARSING & PROMPT
# ============================================================================

class TestParseSuggestion:

    def test_valid_answer(self):
        result = parse_suggestion('{"category": "Sad/Melancholic", "moodScore": 0.2}')

        assert isinstance(result, Ok)
        assert result.value.category == EmotionCategory.SAD_MELANCHOLIC
        assert result.value.mood_score == 0.2

    def test_code_fence_is_stripped(self):
        result = parse_suggestion('```json\n{"category": "Neutral"}\n```')

        assert isinstance(result, Ok)
        assert result.value.mood_score is None

    def test_mood_is_clamped(self):
        assert parse_suggestion('{"category": "Neutral", "moodScore": 3}').value.mood_score == 1.0

    @pytest.mark.parametrize("content", [
        None, "", "not json", "[1, 2]", '{"category": "Bored"}', '{"moodScore": 0.5}',
    ])
    def test_invalid_answers(self, content):
        result = parse_suggestion(content)
        assert isinstance(result, Err)
        assert result.error == SuggestionError.INVALID_RESPONSE


def test_user_prompt_lists_known_features_only():
    prompt = build_user_prompt(TRACK, FEATURES)

    assert "Track: Clair de Lune" in prompt
    assert "Artists: Debussy" in prompt
    assert '"valence": 0.3' in prompt
    assert "track_id" not in prompt
    assert "moodScore" in prompt


# ============================================================================
# 2. CHAT COMPLETIONS BACKENDS
# ============================================================================

class TestOpenAI:

    def test_success(self, mock_post):
        mock_post.return_value = chat_response('{"category": "Calm/Content", "moodScore": 0.64}')
        provider = OpenAISuggestionProvider("sk-test", timeout_ms=2000)

        result = provider.suggest(TRACK, FEATURES)

        assert isinstance(result, Ok)
        assert result.value.category == EmotionCategory.CALM_CONTENT
        args, kwargs = mock_post.call_args
        assert args[0] == OPENAI_CHAT_URL
        assert kwargs["timeout"] == 2.0
        assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
        assert kwargs["json"]["model"] == "gpt-4o-mini"
        assert kwargs["json"]["temperature"] == 0
        assert kwargs["json"]["response_format"] == {"type": "json_object"}

    def test_timeout(self, mock_post):
        mock_post.side_effect = requests.exceptions.Timeout()

        result = OpenAISuggestionProvider("sk-test").suggest(TRACK)

        assert result == Err(SuggestionError.TIMEOUT, "openai timeout")

    def test_http_error(self, mock_post):
        response = MagicMock()
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            response=MagicMock(status_code=503)
        )
        mock_post.return_value = response

        result = OpenAISuggestionProvider("sk-test").suggest(TRACK)

        assert isinstance(result, Err)
        assert result.error == SuggestionError.PROVIDER_UNAVAILABLE

    def test_empty_choices_is_invalid(self, mock_post):
        response = MagicMock()
        response.json.return_value = {"choices": []}
        mock_post.return_value = response

        result = OpenAISuggestionProvider("sk-test").suggest(TRACK)
        assert result.error == SuggestionError.INVALID_RESPONSE

    @pytest.mark.parametrize("body", [
        ["unexpected"],
        {"choices": ["oops"]},
        {"choices": "oops"},
        {"choices": [{"message": "oops"}]},
        {"choices": [{"message": {"content": 42}}]},
    ])
    def test_malformed_body_is_invalid(self, mock_post, body):
        response = MagicMock()
        response.json.return_value = body
        mock_post.return_value = response

        result = OpenAISuggestionProvider("sk-test").suggest(TRACK)

        assert isinstance(result, Err)
        assert result.error == SuggestionError.INVALID_RESPONSE

    def test_base_backend_is_abstract(self):
        with pytest.raises(TypeError):
            ChatCompletionsProvider(1000)


def test_azure_request(mock_post):
    mock_post.return_value = chat_response('{"category": "Tense/Angry", "moodScore": 0.3}')
    provider = AzureOpenAISuggestionProvider("https://mood.openai.azure.com/", "az-key", "mood-dep", 6000)

    result = provider.suggest(TRACK, FEATURES)

    assert result.value.category == EmotionCategory.TENSE_ANGRY
    args, kwargs = mock_post.call_args
    assert args[0] == ("https://mood.openai.azure.com/openai/deployments/mood-dep"
                       f"/chat/completions?api-version={AZURE_API_VERSION}")
    assert kwargs["headers"]["api-key"] == "az-key"
    assert "model" not in kwargs["json"]


# ============================================================================
# 3. GEMINI
# ============================================================================

class TestGemini:

    def test_success(self, mock_genai):
        provider = GeminiSuggestionProvider("g-key", timeout_ms=3000)

        result = provider.suggest(TRACK, FEATURES)

        mock_genai.configure.assert_called_once_with(api_key="g-key")
        assert result.value.category == EmotionCategory.CALM_CONTENT
        assert result.value.mood_score == 0.64
        name = mock_genai.GenerativeModel.call_args[0][0]
        assert name == PREFERRED_MODELS[0]
        _, kwargs = mock_genai.GenerativeModel.return_value.generate_content.call_args
        assert kwargs["request_options"] == {"timeout": 3.0}

    def test_cascade_to_next_model(self, mock_genai):
        model = mock_genai.GenerativeModel.return_value
        answer = MagicMock(text='{"category": "Excited/Happy"}')
        model.generate_content.side_effect = [Exception("429 quota"), answer]

        result = GeminiSuggestionProvider("g-key").suggest(TRACK)

        assert result.value.category == EmotionCategory.EXCITED_HAPPY
        assert mock_genai.GenerativeModel.call_args[0][0] == PREFERRED_MODELS[1]

    def test_all_models_fail(self, mock_genai):
        mock_genai.GenerativeModel.return_value.generate_content.side_effect = Exception("down")

        result = GeminiSuggestionProvider("g-key").suggest(TRACK)

        assert result.error == SuggestionError.PROVIDER_UNAVAILABLE
        assert mock_genai.GenerativeModel.call_count == len(PREFERRED_MODELS)

    def test_deadline_stops_cascade(self, mock_genai):
        model = mock_genai.GenerativeModel.return_value
        model.generate_content.side_effect = google_exceptions.DeadlineExceeded("slow")

        result = GeminiSuggestionProvider("g-key").suggest(TRACK)

        assert result.error == SuggestionError.TIMEOUT
        assert mock_genai.GenerativeModel.call_count == 1


# ============================================================================
# 4. FACTORY
# ============================================================================

class TestCreateSuggestionProvider:

    def test_disabled(self):
        assert create_suggestion_provider(EngineConfig()) is None
        config = EngineConfig(provider=Provider.OPENAI, ai_mode=AIMode.OFF, ai=AIConfig(openai_api_key="sk"))
        assert create_suggestion_provider(config) is None

    def test_openai(self):
        config = EngineConfig(provider=Provider.OPENAI, ai=AIConfig(openai_api_key="sk", openai_model="m"))
        provider = create_suggestion_provider(config)

        assert isinstance(provider, OpenAISuggestionProvider)
        assert provider.model == "m"

    def test_azure(self):
        config = EngineConfig(provider=Provider.AZURE, timeout_ms=1000, ai=AIConfig(
            azure_endpoint="https://x", azure_api_key="k", azure_deployment="d"))
        provider = create_suggestion_provider(config)

        assert isinstance(provider, AzureOpenAISuggestionProvider)
        assert provider.timeout_ms == 1000

    def test_gemini(self, mock_genai):
        config = EngineConfig(provider=Provider.GEMINI, ai=AIConfig(gemini_api_key="g"))
        assert isinstance(create_suggestion_provider(config), GeminiSuggestionProvider)

    def test_selected_but_missing_credentials(self):
        assert create_suggestion_provider(EngineConfig(provider=Provider.AZURE)) is None
