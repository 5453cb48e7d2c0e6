"""Abstract base class for candidate-directory providers."""

import re
from abc import ABC, abstractmethod
from urllib.parse import urlsplit

from src.core.schemas import SearchCriteria

LINKEDIN_BASE_URL = "https://www.linkedin.com"

_LINKEDIN_HOST_RE = re.compile(r"(^|\.)linkedin\.com$")
_LINKEDIN_PROFILE_RE = re.compile(r"linkedin\.com/in/([^/?#]+)", re.IGNORECASE)


def canonical_profile_url(url: str | None) -> str | None:
    """Normalize a profile URL to scheme + host + path, no trailing slash, no query.

    LinkedIn hosts (``linkedin.com``, ``uk.linkedin.com``, ...) collapse to
    ``https://www.linkedin.com``. Returns None for anything that is not a
    usable profile locator.
    """
    if not isinstance(url, str):
        return None
    raw = url.strip()
    if not raw:
        return None
    if "://" not in raw:
        raw = f"https://{raw}"

    try:
        parts = urlsplit(raw)
        port = parts.port
    except ValueError:
        return None

    host = (parts.hostname or "").lower()
    path = parts.path.rstrip("/")
    if not host or not path:
        return None

    if _LINKEDIN_HOST_RE.search(host):
        return f"{LINKEDIN_BASE_URL}{path}"

    scheme = (parts.scheme or "https").lower()
    netloc = f"{host}:{port}" if port else host
    return f"{scheme}://{netloc}{path}"


def linkedin_username(url: str) -> str | None:
    """Extract the ``/in/<username>`` segment of a LinkedIn profile URL."""
    match = _LINKEDIN_PROFILE_RE.search(url)
    return match.group(1) if match else None


class SourceProvider(ABC):
    """Base class that every candidate-directory provider must implement."""

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique identifier for this provider (e.g. 'forager')."""

    @abstractmethod
    async def search(self, criteria: SearchCriteria, page: int = 1) -> list[str]:
        """Return canonical profile URLs for one 1-based page of results.

        May raise; the aggregator isolates each provider's failure.
        """
