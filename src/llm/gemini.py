"""Google Gemini scoring provider (google-genai SDK)."""

import importlib
from typing import Any

from src.llm.base import SCORING_MAX_TOKENS, LLMProvider


class GeminiProvider(LLMProvider):
    sdk_module = "google.genai"
    sdk_extra = "gemini"

    @property
    def provider_id(self) -> str:
        return "gemini"

    @property
    def default_model(self) -> str:
        return "gemini-2.5-flash"

    @property
    def env_var(self) -> str:
        return "GEMINI_API_KEY"

    def _send(self, sdk: Any, api_key: str | None, prompt: str, model: str, system: str) -> str:
        response = sdk.Client(api_key=api_key).models.generate_content(
            model=model,
            contents=prompt,
            config=importlib.import_module("google.genai.types").GenerateContentConfig(
                system_instruction=system,
                temperature=0,
                max_output_tokens=SCORING_MAX_TOKENS,
                response_mime_type="application/json",
            ),
        )
        return response.text or ""
