"""Anthropic Claude scoring provider."""

from typing import Any

from src.llm.base import SCORING_MAX_TOKENS, LLMProvider


class AnthropicProvider(LLMProvider):
    sdk_module = "anthropic"
    sdk_extra = "anthropic"

    @property
    def provider_id(self) -> str:
        return "anthropic"

    @property
    def default_model(self) -> str:
        return "claude-sonnet-4-20250514"

    @property
    def env_var(self) -> str:
        return "ANTHROPIC_API_KEY"

    def _send(self, sdk: Any, api_key: str | None, prompt: str, model: str, system: str) -> str:
        message = sdk.Anthropic(api_key=api_key).messages.create(
            model=model,
            max_tokens=SCORING_MAX_TOKENS,
            temperature=0,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        return message.content[0].text  # type: ignore[no-any-return]
