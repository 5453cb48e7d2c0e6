"""Forager person-role search provider."""

import logging
import re
from typing import Any

import httpx

from src.core.errors import ProviderError
from src.core.http import client_scope, request_json, require_env
from src.core.schemas import CriteriaValue, SearchCriteria, criteria_values
from src.sources.base import (
    LINKEDIN_BASE_URL,
    SourceProvider,
    canonical_profile_url,
)

logger = logging.getLogger(__name__)

FORAGER_API_URL = "https://api-v2.forager.ai/api"
_AUTOCOMPLETE_URL = f"{FORAGER_API_URL}/datastorage/autocomplete"

# criteria field -> (autocomplete endpoint, payload key)
_ID_FILTERS: dict[str, tuple[str, str]] = {
    "skills": ("person_skills", "person_skills"),
    "location": ("locations", "person_locations"),
    "industry": ("industries", "person_industries"),
}


def boolean_search(value: CriteriaValue) -> str | None:
    """Quote each value and join them with the field's operator: ``"React" OR "Vue"``.

    A lone plain string is quoted; a single-element multi-value is passed bare.
    """
    values = criteria_values(value)
    if not values:
        return None
    if isinstance(value, str):
        return f'"{values[0]}"'
    if len(values) == 1:
        return values[0]
    operator = "OR"
    if isinstance(value, dict) and str(value.get("operator", "")).upper() in ("AND", "OR"):
        operator = str(value["operator"]).upper()
    return f" {operator} ".join(f'"{v}"' for v in values)


def years_range(value: CriteriaValue) -> tuple[int | None, int | None]:
    """Parse "3 years", "3-5 years" or "5+ years" into (start, end).

    A multi-value field spans its smallest to largest number.
    """
    if not value:
        return None, None
    if not isinstance(value, str):
        found = [int(m.group(1)) for v in criteria_values(value) if (m := re.search(r"(\d+)", v))]
        return (min(found), max(found)) if found else (None, None)
    match = re.search(r"(\d+)\s*-\s*(\d+)", value)
    if match:
        return int(match.group(1)), int(match.group(2))
    match = re.search(r"(\d+)", value)
    if match:
        years = int(match.group(1))
        return years, years + 5
    return None, None


def extract_profile_url(result: dict[str, Any]) -> str | None:
    """Prefer ``public_profile_url``; fall back to building one from ``public_identifier``."""
    person = result.get("person")
    if not isinstance(person, dict):
        return None
    info = person.get("linkedin_info")
    if not isinstance(info, dict):
        return None

    if info.get("public_profile_url"):
        return canonical_profile_url(info["public_profile_url"])
    if info.get("public_identifier"):
        return canonical_profile_url(f"{LINKEDIN_BASE_URL}/in/{info['public_identifier']}")
    return None


class ForagerProvider(SourceProvider):
    """Searches Forager's person-role index and returns LinkedIn profile URLs."""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 30.0) -> None:
        self._client = client
        self._timeout = timeout

    @property
    def provider_id(self) -> str:
        return "forager"

    async def search(self, criteria: SearchCriteria, page: int = 1) -> list[str]:
        api_key = require_env("FORAGER_API_KEY")
        account_id = require_env("FORAGER_ACCOUNT_ID")
        headers = {"X-API-KEY": api_key}

        async with client_scope(self._client, self._timeout) as client:
            ids = await self._resolve_ids(client, headers, criteria)
            payload = self.build_payload(criteria, ids, page)
            logger.debug("Forager payload: %s", payload)

            url = f"{FORAGER_API_URL}/{account_id}/datastorage/person_role_search/"
            data = await request_json(client, self.provider_id, "POST", url, json=payload, headers=headers)

        if not isinstance(data, dict):
            msg = "unexpected response shape"
            raise ProviderError(self.provider_id, msg)

        results = data.get("search_results") or []
        urls: dict[str, None] = {}
        for result in results:
            if not isinstance(result, dict):
                continue
            url = extract_profile_url(result)
            if url:
                urls[url] = None
            else:
                logger.warning("Forager result %s has no LinkedIn URL", result.get("id"))

        logger.info(
            "Forager page %d: %d results, %d unique profile URLs (total %s)",
            page, len(results), len(urls), data.get("total_search_results"),
        )
        return list(urls)

    @staticmethod
    def build_payload(
        criteria: SearchCriteria, ids: dict[str, list[int]], page: int
    ) -> dict[str, Any]:
        """Map criteria and resolved filter ids to a person_role_search body.

        Forager pages are 0-based; ``page`` here is 1-based.
        """
        payload: dict[str, Any] = {"page": max(page - 1, 0)}

        role_title = boolean_search(criteria.job_title)
        if role_title:
            payload["role_title"] = role_title

        start, end = years_range(criteria.years_of_experience)
        if start is not None:
            payload["role_years_on_position_start"] = start
        if end is not None:
            payload["role_years_on_position_end"] = end

        for key, values in ids.items():
            if values:
                payload[key] = values
        return payload

    async def _resolve_ids(
        self,
        client: httpx.AsyncClient,
        headers: dict[str, str],
        criteria: SearchCriteria,
    ) -> dict[str, list[int]]:
        """Resolve free-text filter values to Forager ids, best match per value."""
        resolved: dict[str, list[int]] = {}
        for field, (endpoint, payload_key) in _ID_FILTERS.items():
            ids: list[int] = []
            for value in criteria_values(getattr(criteria, field)):
                match = await self._autocomplete(client, headers, endpoint, value)
                if match is not None:
                    ids.append(match)
            resolved[payload_key] = ids
        return resolved

    async def _autocomplete(
        self,
        client: httpx.AsyncClient,
        headers: dict[str, str],
        endpoint: str,
        query: str,
    ) -> int | None:
        # An unresolved filter only widens the search, so failures degrade to None.
        try:
            data = await request_json(
                client,
                self.provider_id,
                "GET",
                f"{_AUTOCOMPLETE_URL}/{endpoint}/",
                params={"q": query},
                headers=headers,
            )
        except ProviderError:
            logger.warning("Forager autocomplete %s failed for %r", endpoint, query, exc_info=True)
            return None

        results = data.get("results") if isinstance(data, dict) else None
        for item in results or []:
            try:
                return int(item["id"])
            except (KeyError, TypeError, ValueError):
                continue
        return None
