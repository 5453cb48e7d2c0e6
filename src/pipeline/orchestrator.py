"""Orchestrator: wires providers, repository, scoring, workflow and continuation.

Data flow:
  1. Search created with structured criteria
  2. Background workflow → aggregator fan-out → profile fetch
  3. Candidate repository (dedup/upsert + link + attribution)
  4. Scoring orchestrator over unscored links
  5. Continuation planner re-runs the best strategies on demand
"""

import logging
import sqlite3
from typing import Any

import httpx

from src.core import db
from src.core.access import AccessPolicy, AllowAllAccess
from src.core.config import Settings, SourcesConfig
from src.core.events import EventPublisher, LoggingEventPublisher
from src.core.schemas import Search, SearchCriteria
from src.enrichment.provider import SurfeEnrichmentProvider
from src.pipeline.continuation import ContinuationPlanner
from src.pipeline.listing import CandidateListing
from src.pipeline.scorers import ScoringService, build_scoring_service
from src.pipeline.scoring import ScoringOrchestrator
from src.pipeline.workflow import BackgroundWorkflowTrigger, SourcingWorkflow
from src.sources import get_provider
from src.sources.aggregator import SourceAggregator
from src.sources.base import SourceProvider
from src.sources.profiles import get_profile_fetcher

logger = logging.getLogger(__name__)


def build_providers(config: SourcesConfig, client: httpx.AsyncClient | None = None) -> list[SourceProvider]:
    providers: list[SourceProvider] = []
    for name in config.providers:
        kwargs: dict[str, Any] = {"client": client, "timeout": config.timeout_s}
        if name == "serper":
            kwargs["results_per_page"] = config.results_per_page
        providers.append(get_provider(name, **kwargs))
    return providers


class Pipeline:
    """Every component of one configured pipeline, sharing a connection and HTTP client."""

    def __init__(
        self,
        settings: Settings,
        conn: sqlite3.Connection,
        client: httpx.AsyncClient,
        access: AccessPolicy | None = None,
        events: EventPublisher | None = None,
        scoring_service: ScoringService | None = None,
        providers: list[SourceProvider] | None = None,
    ) -> None:
        self.settings = settings
        self.conn = conn
        self.client = client
        self.access = access or AllowAllAccess()
        self.events = events or LoggingEventPublisher()

        self.aggregator = SourceAggregator(providers or build_providers(settings.sources, client))
        self.scoring = ScoringOrchestrator(
            conn,
            scoring_service or build_scoring_service(settings.scoring, client),
            self.access,
            self.events,
        )
        self.workflow = SourcingWorkflow(
            conn,
            self.aggregator,
            fetcher=get_profile_fetcher(
                settings.sources.profile_fetcher, client=client, timeout=settings.sources.timeout_s,
            ),
            scoring=self.scoring,
            events=self.events,
        )
        self.trigger = BackgroundWorkflowTrigger(conn, self.workflow, self.events)
        self.planner = ContinuationPlanner(
            conn, self.trigger, settings.continuation, self.access, self.events,
        )
        self.listing = CandidateListing(conn, self.access)
        self.enrichment = SurfeEnrichmentProvider(client, settings.enrichment.base_url)

    async def start_search(
        self,
        organization_id: str,
        query: str,
        criteria: SearchCriteria,
        name: str = "",
    ) -> Search:
        """Create a search and schedule its sourcing run in the background."""
        self.access.assert_write_allowed(organization_id)
        search = db.create_search(self.conn, organization_id, query, criteria, name)
        result = await self.trigger.trigger(query, criteria, search.id)
        if not result.success:
            logger.error("Search %s did not start: %s", search.id, result.error)
        return db.get_search(self.conn, search.id) or search
