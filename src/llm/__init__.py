"""Scoring LLM registry. Provider modules (and their SDKs) load on first use.

    provider = get_provider(settings.scoring.llm_provider)
    result = parse_score_response(provider.complete(prompt))
"""

import importlib

from src.llm.base import LLMProvider, parse_score_response

__all__ = ["LLMProvider", "available_providers", "get_provider", "parse_score_response"]

# name -> "module:Class"
_REGISTRY: dict[str, str] = {
    "anthropic": "src.llm.anthropic:AnthropicProvider",
    "openai": "src.llm.openai:OpenAIProvider",
    "gemini": "src.llm.gemini:GeminiProvider",
    "ollama": "src.llm.ollama:OllamaProvider",
}


def get_provider(name: str) -> LLMProvider:
    """Instantiate a scoring provider by name. Raises ValueError for unknown names."""
    target = _REGISTRY.get(name)
    if target is None:
        msg = f"Unknown LLM provider '{name}'. Available: {', '.join(available_providers())}"
        raise ValueError(msg)

    module_path, class_name = target.split(":")
    provider_cls = getattr(importlib.import_module(module_path), class_name)
    return provider_cls()  # type: ignore[no-any-return]


def available_providers() -> list[str]:
    return sorted(_REGISTRY)
