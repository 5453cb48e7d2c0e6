"""Ollama scoring provider (local models behind the OpenAI-compatible API)."""

import os
from typing import Any

from src.llm.base import LLMProvider
from src.llm.openai import json_chat_completion

_DEFAULT_BASE_URL = "http://localhost:11434/v1"


class OllamaProvider(LLMProvider):
    """No API key; the server address comes from OLLAMA_BASE_URL."""

    sdk_module = "openai"
    sdk_extra = "openai"

    @property
    def provider_id(self) -> str:
        return "ollama"

    @property
    def default_model(self) -> str:
        return "llama3"

    @property
    def env_var(self) -> None:
        return None

    def _send(self, sdk: Any, api_key: str | None, prompt: str, model: str, system: str) -> str:
        base_url = os.environ.get("OLLAMA_BASE_URL", _DEFAULT_BASE_URL)
        client = sdk.OpenAI(base_url=base_url, api_key="ollama")
        return json_chat_completion(client, prompt, model, system)
