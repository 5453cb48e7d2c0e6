"""Tests for canonical URLs, the source provider registry, Forager and Serper."""

import json
from unittest.mock import patch

import httpx
import pytest

from src.core.errors import ConfigurationError, ProviderError
from src.core.schemas import SearchCriteria
from src.sources import available_providers, get_provider
from src.sources.base import SourceProvider, canonical_profile_url, linkedin_username
from src.sources.forager import (
    ForagerProvider,
    boolean_search,
    extract_profile_url,
    years_range,
)
from src.sources.serper import SerperProvider, build_query

FORAGER_ENV = {"FORAGER_API_KEY": "fk", "FORAGER_ACCOUNT_ID": "42"}


# ---------------------------------------------------------------------------
# Canonical URLs
# ---------------------------------------------------------------------------
class TestCanonicalProfileUrl:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("https://www.linkedin.com/in/ada/", "https://www.linkedin.com/in/ada"),
            ("http://linkedin.com/in/ada?trk=abc#top", "https://www.linkedin.com/in/ada"),
            ("https://uk.linkedin.com/in/ada", "https://www.linkedin.com/in/ada"),
            ("linkedin.com/in/ada", "https://www.linkedin.com/in/ada"),
            ("  https://WWW.LinkedIn.com/in/ada  ", "https://www.linkedin.com/in/ada"),
            ("https://example.com:8080/people/ada/", "https://example.com:8080/people/ada"),
        ],
    )
    def test_normalizes(self, raw: str, expected: str) -> None:
        assert canonical_profile_url(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "https://www.linkedin.com", "https://www.linkedin.com/"])
    def test_unusable(self, raw: str | None) -> None:
        assert canonical_profile_url(raw) is None

    def test_idempotent(self) -> None:
        once = canonical_profile_url("https://de.linkedin.com/in/ada/?x=1")
        assert canonical_profile_url(once) == once

    def test_linkedin_username(self) -> None:
        assert linkedin_username("https://www.linkedin.com/in/ada-l/") == "ada-l"
        assert linkedin_username("https://www.linkedin.com/company/acme") is None


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
class TestProviderRegistry:
    def test_get_known_providers(self) -> None:
        for name in ("forager", "serper"):
            provider = get_provider(name)
            assert isinstance(provider, SourceProvider)
            assert provider.provider_id == name

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError, match="Unknown source provider 'nope'"):
            get_provider("nope")

    def test_available_providers(self) -> None:
        assert available_providers() == ["forager", "serper"]


# ---------------------------------------------------------------------------
# Forager
# ---------------------------------------------------------------------------
class TestForagerHelpers:
    def test_boolean_search(self) -> None:
        assert boolean_search("Data Engineer") == '"Data Engineer"'
        assert boolean_search(["React", "Vue"]) == '"React" OR "Vue"'
        assert boolean_search({"values": ["Go", "Rust"], "operator": "and"}) == '"Go" AND "Rust"'
        assert boolean_search(["Solo"]) == "Solo"
        assert boolean_search(None) is None
        assert boolean_search([]) is None

    def test_years_range(self) -> None:
        assert years_range("3-5 years") == (3, 5)
        assert years_range("5+ years") == (5, 10)
        assert years_range(["2 years", "7 years"]) == (2, 7)
        assert years_range("senior") == (None, None)
        assert years_range(None) == (None, None)

    def test_extract_profile_url_prefers_public_url(self) -> None:
        result = {
            "person": {
                "linkedin_info": {
                    "public_profile_url": "https://linkedin.com/in/ada/",
                    "public_identifier": "other",
                }
            }
        }
        assert extract_profile_url(result) == "https://www.linkedin.com/in/ada"

    def test_extract_profile_url_from_identifier(self) -> None:
        result = {"person": {"linkedin_info": {"public_identifier": "bob"}}}
        assert extract_profile_url(result) == "https://www.linkedin.com/in/bob"

    def test_extract_profile_url_missing(self) -> None:
        assert extract_profile_url({"person": {}}) is None
        assert extract_profile_url({}) is None

    def test_build_payload_page_is_zero_based(self) -> None:
        criteria = SearchCriteria(job_title="Engineer", years_of_experience="3-5")
        payload = ForagerProvider.build_payload(
            criteria, {"person_skills": [7], "person_locations": []}, page=2
        )
        assert payload == {
            "page": 1,
            "role_title": '"Engineer"',
            "role_years_on_position_start": 3,
            "role_years_on_position_end": 5,
            "person_skills": [7],
        }


class TestForagerSearch:
    async def test_search_resolves_ids_and_collects_urls(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if "autocomplete/person_skills" in request.url.path:
                return httpx.Response(200, json={"results": [{"id": 11, "text": "Python"}]})
            if "autocomplete" in request.url.path:
                return httpx.Response(500, text="down")
            return httpx.Response(
                200,
                json={
                    "total_search_results": 2,
                    "search_results": [
                        {"person": {"linkedin_info": {"public_profile_url": "https://linkedin.com/in/ada/"}}},
                        {"person": {"linkedin_info": {"public_identifier": "ada"}}},
                        {"id": 3, "person": {}},
                    ],
                },
            )

        criteria = SearchCriteria(job_title="Engineer", skills=["Python"], location="Berlin")
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with patch.dict("os.environ", FORAGER_ENV):
                urls = await ForagerProvider(client=client).search(criteria, page=1)

        assert urls == ["https://www.linkedin.com/in/ada"]
        search_request = seen[-1]
        assert search_request.url.path == "/api/42/datastorage/person_role_search/"
        assert search_request.headers["X-API-KEY"] == "fk"
        body = json.loads(search_request.content)
        assert body["person_skills"] == [11]
        assert "person_locations" not in body
        assert body["page"] == 0

    async def test_search_http_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, text="forbidden")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with patch.dict("os.environ", FORAGER_ENV), pytest.raises(ProviderError, match="HTTP 403"):
                await ForagerProvider(client=client).search(SearchCriteria(job_title="Engineer"))

    async def test_missing_credentials(self) -> None:
        with patch.dict("os.environ", {}, clear=True), pytest.raises(ConfigurationError, match="FORAGER_API_KEY"):
            await ForagerProvider().search(SearchCriteria(job_title="Engineer"))


# ---------------------------------------------------------------------------
# Serper
# ---------------------------------------------------------------------------
class TestSerper:
    def test_build_query(self) -> None:
        criteria = SearchCriteria(job_title="Data Engineer", skills=["Spark", "Airflow"], location="Lisbon")
        assert build_query(criteria) == 'site:linkedin.com/in/ "Data Engineer" "Spark" "Airflow" "Lisbon"'

    def test_build_query_without_terms(self) -> None:
        assert build_query(SearchCriteria()) == "site:linkedin.com/in/"

    async def test_search_keeps_profile_links(self) -> None:
        captured: dict[str, object] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["body"] = json.loads(request.content)
            captured["key"] = request.headers["X-API-KEY"]
            return httpx.Response(
                200,
                json={
                    "organic": [
                        {"link": "https://pt.linkedin.com/in/joana/"},
                        {"link": "https://www.linkedin.com/company/acme"},
                        {"link": "https://www.linkedin.com/in/joana?trk=x"},
                        {"title": "no link"},
                    ]
                },
            )

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with patch.dict("os.environ", {"SERPER_API_KEY": "sk"}):
                provider = SerperProvider(client=client, results_per_page=20)
                urls = await provider.search(SearchCriteria(job_title="Engineer"), page=3)

        assert urls == ["https://www.linkedin.com/in/joana"]
        assert captured["key"] == "sk"
        assert captured["body"] == {"q": 'site:linkedin.com/in/ "Engineer"', "num": 20, "page": 3}

    async def test_invalid_json_is_provider_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with patch.dict("os.environ", {"SERPER_API_KEY": "sk"}), pytest.raises(ProviderError, match="not valid JSON"):
                await SerperProvider(client=client).search(SearchCriteria(job_title="Engineer"))
