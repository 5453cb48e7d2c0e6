"""OpenAI scoring provider, plus the chat-completions call shared with Ollama."""

from typing import Any

from src.llm.base import SCORING_MAX_TOKENS, LLMProvider


def json_chat_completion(client: Any, prompt: str, model: str, system: str) -> str:
    """One JSON-mode chat completion against an OpenAI-compatible client."""
    response = client.chat.completions.create(
        model=model,
        max_tokens=SCORING_MAX_TOKENS,
        temperature=0,
        response_format={"type": "json_object"},
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
    )
    return response.choices[0].message.content or ""


class OpenAIProvider(LLMProvider):
    sdk_module = "openai"
    sdk_extra = "openai"

    @property
    def provider_id(self) -> str:
        return "openai"

    @property
    def default_model(self) -> str:
        return "gpt-4o-mini"

    @property
    def env_var(self) -> str:
        return "OPENAI_API_KEY"

    def _send(self, sdk: Any, api_key: str | None, prompt: str, model: str, system: str) -> str:
        return json_chat_completion(sdk.OpenAI(api_key=api_key), prompt, model, system)
