"""Scoring capabilities: the external scoring API and an LLM-backed fallback."""

import asyncio
import json
import logging
import math
import uuid
from abc import ABC, abstractmethod
from typing import Any

import httpx

from src.core.config import ScoringConfig
from src.core.errors import ProviderError
from src.core.http import client_scope, request_json
from src.core.schemas import ScoreResult, SearchCriteria
from src.llm import get_provider
from src.llm.base import LLMProvider, parse_score_response

logger = logging.getLogger(__name__)


class ScoringService(ABC):
    """Scores one prepared candidate profile against a search's criteria."""

    @property
    @abstractmethod
    def service_id(self) -> str:
        """Unique identifier for this scoring backend (e.g. 'http')."""

    @abstractmethod
    async def score(
        self,
        candidate: dict[str, Any],
        criteria: SearchCriteria,
        query_text: str,
        candidate_id: str,
    ) -> ScoreResult:
        """Return a 0-100 match score with structured notes. Raises on failure."""


class HttpScoringService(ScoringService):
    """Calls the v2 candidate scoring endpoint."""

    version = "v2"

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/api/v2/candidates/score"
        self._client = client
        self._timeout = timeout

    @property
    def service_id(self) -> str:
        return "http"

    async def score(
        self,
        candidate: dict[str, Any],
        criteria: SearchCriteria,
        query_text: str,
        candidate_id: str,
    ) -> ScoreResult:
        body = {
            "raw_text": query_text,
            "parsed_with_criteria": criteria.model_dump(exclude_none=True),
            "candidate": candidate,
            "request_id": f"score_{uuid.uuid4().hex[:12]}",
            "candidate_id": candidate_id,
        }
        async with client_scope(self._client, self._timeout) as client:
            data = await request_json(client, "scoring", "POST", self._url, json=body)

        score = data.get("match_score") if isinstance(data, dict) else None
        if score is None:
            msg = "no match_score in response"
            raise ProviderError("scoring", msg)
        try:
            value = float(score)
        except (TypeError, ValueError) as e:
            msg = f"match_score is not numeric: {score!r}"
            raise ProviderError("scoring", msg) from e
        if not math.isfinite(value):
            msg = f"match_score is not finite: {score!r}"
            raise ProviderError("scoring", msg)
        return ScoreResult(match_score=max(0.0, min(100.0, value)), notes=data, version=self.version)


def build_scoring_prompt(
    candidate: dict[str, Any], criteria: SearchCriteria, query_text: str
) -> str:
    """Assemble the user prompt from the hiring query and the candidate profile."""
    return (
        "HIRING QUERY\n"
        f"{query_text}\n\n"
        "STRUCTURED CRITERIA\n"
        f"{json.dumps(criteria.model_dump(exclude_none=True), indent=2)}\n\n"
        "CANDIDATE PROFILE\n"
        f"{json.dumps(candidate, indent=2, default=str)}\n"
    )


class LLMScoringService(ScoringService):
    """Scores with one of the registered LLM providers.

    Provider SDKs are synchronous, so each call runs in a worker thread.
    """

    def __init__(self, provider: LLMProvider, model: str | None = None) -> None:
        self._provider = provider
        self._model = model

    @property
    def service_id(self) -> str:
        return f"llm:{self._provider.provider_id}"

    async def score(
        self,
        candidate: dict[str, Any],
        criteria: SearchCriteria,
        query_text: str,
        candidate_id: str,
    ) -> ScoreResult:
        prompt = build_scoring_prompt(candidate, criteria, query_text)
        raw = await asyncio.to_thread(self._provider.complete, prompt, self._model)
        model = self._model or self._provider.default_model
        result = parse_score_response(raw, version=f"llm:{model}")
        logger.debug("LLM scored %s: %.0f", candidate_id, result.match_score)
        return result


def build_scoring_service(
    config: ScoringConfig, client: httpx.AsyncClient | None = None
) -> ScoringService:
    if config.backend == "llm":
        return LLMScoringService(get_provider(config.llm_provider), config.llm_model)
    return HttpScoringService(config.api_base_url, client=client, timeout=config.timeout_s)
