"""Full-profile fetchers that turn a profile URL into a raw candidate record."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from src.core.errors import InvalidInputError, ProviderError
from src.core.http import client_scope, request_json, require_env
from src.core.schemas import RawCandidate
from src.sources.base import (
    canonical_profile_url,
    linkedin_username,
)

logger = logging.getLogger(__name__)

RAPIDAPI_HOST = "fresh-linkedin-scraper-api.p.rapidapi.com"
RAPIDAPI_PROFILE_URL = f"https://{RAPIDAPI_HOST}/api/v1/user/profile"

_INCLUDE_FLAGS = (
    "follower_and_connection", "experiences", "skills", "certifications",
    "publications", "educations", "volunteers", "honors", "interests", "bio",
)


class ProfileFetcher(ABC):
    """Base class for services that resolve a profile URL to a full record."""

    @property
    @abstractmethod
    def fetcher_id(self) -> str:
        """Unique identifier for this fetcher (e.g. 'rapidapi')."""

    @abstractmethod
    async def fetch(self, url: str) -> RawCandidate:
        """Fetch one profile. Raises on any failure."""

    async def fetch_many(self, urls: list[str]) -> list[RawCandidate]:
        """Fetch profiles concurrently; failed URLs are logged and left out."""
        outcomes = await asyncio.gather(*(self.fetch(u) for u in urls), return_exceptions=True)
        records: list[RawCandidate] = []
        for url, outcome in zip(urls, outcomes, strict=True):
            if isinstance(outcome, Exception):
                logger.warning("Profile fetch failed for %s: %s", url, outcome)
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            records.append(outcome)
        logger.info("Fetched %d/%d profiles", len(records), len(urls))
        return records


def url_only_records(urls: list[str]) -> list[RawCandidate]:
    """Minimal records used when no profile fetcher is configured."""
    return [
        RawCandidate(linkedin_url=u, public_identifier=linkedin_username(u))
        for u in urls
    ]


def _date_text(value: Any) -> str | None:
    """Render ``{"year": 2020, "month": 3}`` as ``2020-03``; strings pass through."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and value.get("year"):
        text = str(value["year"])
        if value.get("month"):
            text += f"-{int(value['month']):02d}"
            if value.get("day"):
                text += f"-{int(value['day']):02d}"
        return text
    return None


def _as_list(value: Any) -> list[Any] | None:
    if value is None:
        return None
    return value if isinstance(value, list) else [value]


def _company_name(company: Any) -> str | None:
    if isinstance(company, str):
        return company
    if isinstance(company, dict):
        return company.get("name")
    return None


def _experience(exp: dict[str, Any]) -> dict[str, Any]:
    dates = exp.get("date") if isinstance(exp.get("date"), dict) else {}
    end = dates.get("end") or _date_text(exp.get("end_date"))
    return {
        "title": exp.get("title"),
        "companyName": _company_name(exp.get("company")),
        "location": exp.get("location"),
        "startDate": dates.get("start") or _date_text(exp.get("start_date")),
        "endDate": end,
        "isCurrent": not end or end == "Present",
        "duration": exp.get("duration"),
        "description": exp.get("description"),
        "employmentType": exp.get("employment_type"),
    }


def _education(edu: dict[str, Any]) -> dict[str, Any]:
    return {
        "schoolName": edu.get("school_name"),
        "degree": edu.get("degree"),
        "fieldOfStudy": edu.get("field_of_study"),
        "startDate": _date_text(edu.get("start_date")),
        "endDate": _date_text(edu.get("end_date")),
        "description": edu.get("description"),
        "grade": edu.get("grade"),
        "activities": edu.get("activities"),
    }


def profile_to_candidate(profile: dict[str, Any], url: str, username: str) -> RawCandidate:
    """Map a fresh-linkedin-scraper profile payload to a RawCandidate."""
    location = profile.get("location") if isinstance(profile.get("location"), dict) else None
    location_text = (
        ", ".join(p for p in (location.get("city"), location.get("country")) if p)
        if location
        else None
    )

    avatar = profile.get("avatar")
    photo = None
    if isinstance(avatar, list) and avatar and isinstance(avatar[0], dict):
        photo = avatar[0].get("url")
    photo = photo or profile.get("profile_picture")

    counts = profile.get("follower_and_connection") or {}
    full_name = profile.get("full_name") or " ".join(
        p for p in (profile.get("first_name"), profile.get("last_name")) if p
    )

    experiences = [_experience(e) for e in _as_list(profile.get("experiences")) or [] if isinstance(e, dict)]
    educations = [_education(e) for e in _as_list(profile.get("educations")) or [] if isinstance(e, dict)]
    skills = [
        s.get("skill") or s.get("name") if isinstance(s, dict) else s
        for s in _as_list(profile.get("skills")) or []
    ]

    return RawCandidate(
        linkedin_url=url,
        public_identifier=profile.get("public_identifier") or username,
        provider_id=profile.get("id"),
        urn=profile.get("urn"),
        full_name=full_name or None,
        first_name=profile.get("first_name"),
        last_name=profile.get("last_name"),
        headline=profile.get("headline"),
        summary=profile.get("summary") or profile.get("bio"),
        location=location,
        location_text=location_text or None,
        photo_url=photo,
        follower_count=counts.get("follower_count") or profile.get("followers"),
        connection_count=counts.get("connection_count") or profile.get("connections"),
        is_premium=bool(profile.get("is_premium")),
        skills=[s for s in skills if s],
        experiences=experiences,
        educations=educations,
        certifications=_as_list(profile.get("certifications")),
        publications=_as_list(profile.get("publications")),
        volunteering=_as_list(profile.get("volunteers")),
        honors_and_awards=_as_list(profile.get("honors")),
        languages=_as_list(profile.get("languages")),
        raw_data=profile,
    )


class RapidApiProfileFetcher(ProfileFetcher):
    """Fetches LinkedIn profiles through the Fresh LinkedIn Scraper API on RapidAPI."""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 30.0) -> None:
        self._client = client
        self._timeout = timeout

    @property
    def fetcher_id(self) -> str:
        return "rapidapi"

    async def fetch(self, url: str) -> RawCandidate:
        canonical = canonical_profile_url(url)
        username = linkedin_username(canonical or "")
        if not canonical or not username:
            msg = f"Not a LinkedIn profile URL: {url!r}"
            raise InvalidInputError(msg)

        api_key = require_env("RAPIDAPI_KEY")
        params = {"username": username, **{f"include_{flag}": "true" for flag in _INCLUDE_FLAGS}}

        async with client_scope(self._client, self._timeout) as client:
            data = await request_json(
                client,
                self.fetcher_id,
                "GET",
                RAPIDAPI_PROFILE_URL,
                params=params,
                headers={"x-rapidapi-host": RAPIDAPI_HOST, "x-rapidapi-key": api_key},
            )

        if not isinstance(data, dict) or not data.get("success") or not isinstance(data.get("data"), dict):
            message = data.get("message") if isinstance(data, dict) else None
            msg = f"unsuccessful response: {message or 'no data'}"
            raise ProviderError(self.fetcher_id, msg)

        return profile_to_candidate(data["data"], canonical, username)


def get_profile_fetcher(name: str | None, **kwargs: Any) -> ProfileFetcher | None:
    """Resolve a configured fetcher name; None means URL-only records."""
    if name is None:
        return None
    if name == "rapidapi":
        return RapidApiProfileFetcher(**kwargs)
    msg = f"Unknown profile fetcher '{name}'. Available: rapidapi"
    raise ValueError(msg)
