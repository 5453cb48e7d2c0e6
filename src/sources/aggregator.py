"""Parallel fan-out across source providers with per-provider isolation."""

import asyncio
import logging

from pydantic import BaseModel, Field

from src.core.schemas import SearchCriteria
from src.sources.base import SourceProvider, canonical_profile_url

logger = logging.getLogger(__name__)


class ProviderResult(BaseModel):
    provider: str
    urls: list[str] = Field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AggregateResult(BaseModel):
    """Union of every provider's URLs, first-seen order, plus per-provider detail."""

    urls: list[str] = Field(default_factory=list)
    results: list[ProviderResult] = Field(default_factory=list)

    @property
    def failed_providers(self) -> list[str]:
        return [r.provider for r in self.results if not r.ok]


class SourceAggregator:
    """Queries every registered provider concurrently.

    A provider that raises contributes zero URLs and is logged; it never
    fails the aggregate. No retries.
    """

    def __init__(self, providers: list[SourceProvider]) -> None:
        self._providers = providers

    @property
    def providers(self) -> list[SourceProvider]:
        return list(self._providers)

    async def search(self, criteria: SearchCriteria, page: int = 1) -> AggregateResult:
        outcomes = await asyncio.gather(
            *(p.search(criteria, page) for p in self._providers),
            return_exceptions=True,
        )

        seen: dict[str, None] = {}
        results: list[ProviderResult] = []
        for provider, outcome in zip(self._providers, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning(
                    "Provider %s failed: %s", provider.provider_id, outcome,
                    exc_info=outcome,
                )
                results.append(ProviderResult(provider=provider.provider_id, error=str(outcome)))
                continue

            urls: list[str] = []
            for raw in outcome or []:
                url = canonical_profile_url(raw)
                if url:
                    urls.append(url)
                    seen[url] = None
            results.append(ProviderResult(provider=provider.provider_id, urls=urls))
            logger.info("Provider %s: %d URLs", provider.provider_id, len(urls))

        logger.info("Aggregated %d unique URLs from %d providers", len(seen), len(self._providers))
        return AggregateResult(urls=list(seen), results=results)
