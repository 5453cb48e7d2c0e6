"""Serper (Google search) provider restricted to LinkedIn profile pages."""

import logging

import httpx

from src.core.errors import ProviderError
from src.core.http import client_scope, request_json, require_env
from src.core.schemas import SearchCriteria
from src.sources.base import (
    SourceProvider,
    canonical_profile_url,
    linkedin_username,
)

logger = logging.getLogger(__name__)

SERPER_API_URL = "https://google.serper.dev/search"


def build_query(criteria: SearchCriteria) -> str:
    """``site:linkedin.com/in/`` followed by each search term quoted separately."""
    quoted = " ".join(f'"{term}"' for term in criteria.terms())
    return f"site:linkedin.com/in/ {quoted}".strip()


class SerperProvider(SourceProvider):
    """Google results via serper.dev, keeping only ``linkedin.com/in/`` links."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        results_per_page: int = 10,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._num = results_per_page

    @property
    def provider_id(self) -> str:
        return "serper"

    async def search(self, criteria: SearchCriteria, page: int = 1) -> list[str]:
        api_key = require_env("SERPER_API_KEY")
        query = build_query(criteria)
        logger.debug("Serper query: %s (page %d)", query, page)

        async with client_scope(self._client, self._timeout) as client:
            data = await request_json(
                client,
                self.provider_id,
                "POST",
                SERPER_API_URL,
                json={"q": query, "num": self._num, "page": page},
                headers={"X-API-KEY": api_key},
            )

        if not isinstance(data, dict):
            msg = "unexpected response shape"
            raise ProviderError(self.provider_id, msg)

        urls: dict[str, None] = {}
        for result in data.get("organic") or []:
            link = result.get("link") if isinstance(result, dict) else None
            if not isinstance(link, str) or linkedin_username(link) is None:
                continue
            url = canonical_profile_url(link)
            if url:
                urls[url] = None

        logger.info("Serper page %d: %d profile URLs", page, len(urls))
        return list(urls)
