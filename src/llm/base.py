"""Abstract base class for LLM providers and the candidate-scoring prompt contract."""

import importlib
import json
import logging
import math
import re
from abc import ABC, abstractmethod
from typing import Any

from src.core.http import require_env
from src.core.schemas import ScoreResult

logger = logging.getLogger(__name__)

# Token budget for one score object.
SCORING_MAX_TOKENS = 512

SCORING_SYSTEM_PROMPT = (
    "You are a senior technical recruiter evaluating candidate fit.\n\n"
    "Given a hiring query, its structured criteria and a candidate profile, score how "
    "well the candidate matches on a 0-100 scale using this rubric:\n"
    "  90-100: Exceptional match, role, skills, seniority and location all align\n"
    "  70-89:  Strong match with minor gaps in one or two areas\n"
    "  50-69:  Partial match, relevant background but notable mismatches\n"
    "  30-49:  Weak match, some overlap but significant gaps\n"
    "  0-29:   Poor match, fundamentally different role or stack\n\n"
    "Evaluation criteria (in priority order):\n"
    "  1. Current and past role titles versus the requested role\n"
    "  2. Skills overlap with the requested skills\n"
    "  3. Years and seniority of relevant experience\n"
    "  4. Location and industry fit\n\n"
    "Return ONLY a JSON object (no markdown, no explanation):\n"
    '{"score": <integer 0-100>, "reasoning": "<1-2 sentences>", '
    '"pros": ["<strength>", ...], "cons": ["<gap>", ...]}'
)


def parse_score_response(raw_text: str, version: str | None = None) -> ScoreResult:
    """Parse an LLM scoring response into a ScoreResult.

    Handles markdown-wrapped JSON (```json ... ```) and plain JSON. Clamps the
    score to 0-100. Raises ValueError on a malformed response.
    """
    cleaned = re.sub(r"^```(?:json)?\s*\n?", "", raw_text.strip())
    cleaned = re.sub(r"\n?```\s*$", "", cleaned)

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        msg = f"Failed to parse LLM score response as JSON: {e}"
        raise ValueError(msg) from e

    if not isinstance(data, dict) or "score" not in data:
        msg = "LLM response missing 'score' field"
        raise ValueError(msg)

    try:
        raw_score = float(data["score"])
    except (TypeError, ValueError) as e:
        msg = f"LLM score is not a number: {data['score']!r}"
        raise ValueError(msg) from e
    if not math.isfinite(raw_score):
        msg = f"LLM score is not finite: {data['score']!r}"
        raise ValueError(msg)

    notes: dict[str, Any] = {
        "reasoning": str(data.get("reasoning", "")),
        "pros": [str(p) for p in data.get("pros") or []],
        "cons": [str(c) for c in data.get("cons") or []],
    }
    return ScoreResult(match_score=max(0.0, min(100.0, raw_score)), notes=notes, version=version)


class LLMProvider(ABC):
    """Base class for the scoring LLMs.

    ``complete`` resolves the API key, the SDK and the model once; providers only
    implement ``_send`` with their SDK's call shape.
    """

    # Import name of the SDK module and the pip extra that installs it.
    sdk_module: str = ""
    sdk_extra: str = ""

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique identifier for this provider (e.g. 'anthropic')."""

    @property
    @abstractmethod
    def default_model(self) -> str:
        """The default model ID used when no override is specified."""

    @property
    @abstractmethod
    def env_var(self) -> str | None:
        """Environment variable name for the API key, or None if not needed."""

    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> str:
        """Send a scoring prompt and return the raw response text (expected to be JSON).

        Raises ConfigurationError when the API key is missing and ImportError
        when the provider's SDK is not installed.
        """
        api_key = require_env(self.env_var) if self.env_var else None
        sdk = self._import_sdk()
        use_model = model or self.default_model
        use_system = system if system is not None else SCORING_SYSTEM_PROMPT

        logger.debug("Scoring prompt sent to %s (%s)", self.provider_id, use_model)
        return self._send(sdk, api_key, prompt, use_model, use_system)

    def _import_sdk(self) -> Any:
        try:
            return importlib.import_module(self.sdk_module)
        except ImportError:
            msg = (
                f"{self.sdk_module} is required for LLM scoring with {self.provider_id}. "
                f"Install with: pip install 'candidate-sourcing[{self.sdk_extra}]'"
            )
            raise ImportError(msg) from None

    @abstractmethod
    def _send(self, sdk: Any, api_key: str | None, prompt: str, model: str, system: str) -> str:
        """Make one completion call with an already-imported SDK module."""
