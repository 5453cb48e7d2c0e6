"""Tests for the scoring LLM providers, their registry and score parsing."""

import json
from unittest.mock import MagicMock, patch

import pytest

from src.core.errors import ConfigurationError
from src.llm import available_providers, get_provider, parse_score_response
from src.llm.base import SCORING_MAX_TOKENS, SCORING_SYSTEM_PROMPT, LLMProvider

PROMPT = "HIRING QUERY\nbackend engineer\n"


def _chat_sdk(content: str) -> MagicMock:
    """A stand-in for the openai module whose client returns ``content``."""
    sdk = MagicMock()
    sdk.OpenAI.return_value.chat.completions.create.return_value.choices = [
        MagicMock(message=MagicMock(content=content))
    ]
    return sdk


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
class TestProviderRegistry:
    @pytest.mark.parametrize(
        ("name", "model", "env_var"),
        [
            ("anthropic", "claude-sonnet-4-20250514", "ANTHROPIC_API_KEY"),
            ("openai", "gpt-4o-mini", "OPENAI_API_KEY"),
            ("gemini", "gemini-2.5-flash", "GEMINI_API_KEY"),
            ("ollama", "llama3", None),
        ],
    )
    def test_get_provider(self, name: str, model: str, env_var: str | None) -> None:
        provider = get_provider(name)
        assert isinstance(provider, LLMProvider)
        assert provider.provider_id == name
        assert provider.default_model == model
        assert provider.env_var == env_var

    def test_unknown_provider_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown LLM provider 'nope'. Available: anthropic"):
            get_provider("nope")

    def test_available_providers_sorted(self) -> None:
        assert available_providers() == ["anthropic", "gemini", "ollama", "openai"]


# ---------------------------------------------------------------------------
# Credentials and SDK loading
# ---------------------------------------------------------------------------
class TestCredentialsAndSdk:
    @pytest.mark.parametrize("name", ["anthropic", "openai", "gemini"])
    def test_missing_api_key(self, name: str) -> None:
        provider = get_provider(name)
        with (
            patch.dict("os.environ", {}, clear=True),
            pytest.raises(ConfigurationError, match=str(provider.env_var)),
        ):
            provider.complete(PROMPT)

    @pytest.mark.parametrize(
        ("name", "blocked", "extra"),
        [
            ("anthropic", {"anthropic": None}, "anthropic"),
            ("openai", {"openai": None}, "openai"),
            ("gemini", {"google": None, "google.genai": None}, "gemini"),
            ("ollama", {"openai": None}, "openai"),
        ],
    )
    def test_missing_sdk_names_extra(self, name: str, blocked: dict, extra: str) -> None:
        provider = get_provider(name)
        env = {provider.env_var: "test-key"} if provider.env_var else {}
        with (
            patch.dict("os.environ", env),
            patch.dict("sys.modules", blocked),
            pytest.raises(ImportError, match=f"candidate-sourcing\\[{extra}\\]"),
        ):
            provider.complete(PROMPT)


# ---------------------------------------------------------------------------
# Call shapes
# ---------------------------------------------------------------------------
class TestAnthropicProvider:
    def test_sends_scoring_system_prompt(self) -> None:
        fake_sdk = MagicMock()
        fake_sdk.Anthropic.return_value.messages.create.return_value.content = [
            MagicMock(text='{"score": 70}')
        ]
        with (
            patch.dict("os.environ", {"ANTHROPIC_API_KEY": "test-key"}),
            patch.dict("sys.modules", {"anthropic": fake_sdk}),
        ):
            assert get_provider("anthropic").complete(PROMPT) == '{"score": 70}'

        fake_sdk.Anthropic.assert_called_once_with(api_key="test-key")
        kwargs = fake_sdk.Anthropic.return_value.messages.create.call_args.kwargs
        assert kwargs["system"] == SCORING_SYSTEM_PROMPT
        assert kwargs["model"] == "claude-sonnet-4-20250514"
        assert kwargs["max_tokens"] == SCORING_MAX_TOKENS
        assert kwargs["temperature"] == 0
        assert kwargs["messages"] == [{"role": "user", "content": PROMPT}]


class TestOpenAIProvider:
    def test_requests_json_mode(self) -> None:
        fake_sdk = _chat_sdk('{"score": 55}')
        with (
            patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"}),
            patch.dict("sys.modules", {"openai": fake_sdk}),
        ):
            assert get_provider("openai").complete(PROMPT, system="Be strict") == '{"score": 55}'

        fake_sdk.OpenAI.assert_called_once_with(api_key="test-key")
        kwargs = fake_sdk.OpenAI.return_value.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["temperature"] == 0
        assert kwargs["messages"][0] == {"role": "system", "content": "Be strict"}

    def test_empty_content_becomes_empty_string(self) -> None:
        fake_sdk = _chat_sdk(None)  # type: ignore[arg-type]
        with (
            patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"}),
            patch.dict("sys.modules", {"openai": fake_sdk}),
        ):
            assert get_provider("openai").complete(PROMPT) == ""


class TestOllamaProvider:
    def test_uses_base_url_from_env(self) -> None:
        fake_sdk = _chat_sdk('{"score": 10}')
        with (
            patch.dict("os.environ", {"OLLAMA_BASE_URL": "http://gpu-box:11434/v1"}),
            patch.dict("sys.modules", {"openai": fake_sdk}),
        ):
            assert get_provider("ollama").complete(PROMPT, model="mistral") == '{"score": 10}'

        fake_sdk.OpenAI.assert_called_once_with(base_url="http://gpu-box:11434/v1", api_key="ollama")
        kwargs = fake_sdk.OpenAI.return_value.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "mistral"


# ---------------------------------------------------------------------------
# Score response parsing
# ---------------------------------------------------------------------------
class TestParseScoreResponse:
    def test_plain_json(self) -> None:
        raw = json.dumps({"score": 82, "reasoning": "Strong fit", "pros": ["Python"], "cons": []})
        result = parse_score_response(raw, version="llm:test")
        assert result.match_score == 82.0
        assert result.notes == {"reasoning": "Strong fit", "pros": ["Python"], "cons": []}
        assert result.version == "llm:test"

    def test_markdown_fenced(self) -> None:
        raw = '```json\n{"score": 40, "reasoning": "Partial"}\n```'
        result = parse_score_response(raw)
        assert result.match_score == 40.0
        assert result.notes["pros"] == []

    def test_clamps_out_of_range(self) -> None:
        assert parse_score_response('{"score": 140}').match_score == 100.0
        assert parse_score_response('{"score": -5}').match_score == 0.0

    def test_invalid_json_raises(self) -> None:
        with pytest.raises(ValueError, match="Failed to parse"):
            parse_score_response("not json")

    def test_missing_score_raises(self) -> None:
        with pytest.raises(ValueError, match="missing 'score'"):
            parse_score_response('{"reasoning": "no score"}')

    def test_non_numeric_score_raises(self) -> None:
        with pytest.raises(ValueError, match="not a number"):
            parse_score_response('{"score": "high"}')

    @pytest.mark.parametrize("raw", ['{"score": NaN}', '{"score": -Infinity}', '{"score": "nan"}'])
    def test_non_finite_score_raises(self, raw: str) -> None:
        with pytest.raises(ValueError, match="not finite"):
            parse_score_response(raw)
