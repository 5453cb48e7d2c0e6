"""Contact enrichment providers: initiate a job, then poll its callback."""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from src.core.errors import ProviderError
from src.core.http import request_json, require_env
from src.core.schemas import ContactType, EnrichmentJob

logger = logging.getLogger(__name__)

SURFE_BASE_URL = "https://api.surfe.com"


class EnrichmentProvider(ABC):
    """Async initiate-then-poll contact reveal."""

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Short identifier used in logs and errors."""

    @abstractmethod
    async def initiate(self, profile_url: str, contact_type: ContactType) -> EnrichmentJob:
        """Start a job. Raises ProviderError or ConfigurationError."""

    @abstractmethod
    async def poll(self, job: EnrichmentJob) -> httpx.Response:
        """Fetch the job's current state. Non-2xx responses are returned, not raised."""


class SurfeEnrichmentProvider(EnrichmentProvider):
    """Surfe v2 people enrichment."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = SURFE_BASE_URL,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    @property
    def provider_id(self) -> str:
        return "surfe"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {require_env('SURFE_API_KEY')}",
            "Content-Type": "application/json",
        }

    async def initiate(self, profile_url: str, contact_type: ContactType) -> EnrichmentJob:
        body: dict[str, Any] = {
            "include": {"email": contact_type.wants_email, "mobile": contact_type.wants_phone},
            "people": [{"linkedinUrl": profile_url}],
        }
        data = await request_json(
            self._client,
            self.provider_id,
            "POST",
            f"{self._base_url}/v2/people/enrich",
            headers=self._headers(),
            json=body,
        )
        enrichment_id = data.get("enrichmentID") if isinstance(data, dict) else None
        callback_url = data.get("enrichmentCallbackURL") if isinstance(data, dict) else None
        if not enrichment_id or not callback_url:
            msg = "initiate response is missing enrichmentID or enrichmentCallbackURL"
            raise ProviderError(self.provider_id, msg)

        logger.debug("Enrichment %s started for %s", enrichment_id, profile_url)
        return EnrichmentJob(enrichment_id=enrichment_id, callback_url=callback_url)

    async def poll(self, job: EnrichmentJob) -> httpx.Response:
        return await self._client.get(job.callback_url, headers=self._headers())
