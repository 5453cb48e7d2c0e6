"""Integration test: search → sourcing → scoring → listing → continuation, with fake providers."""

import sqlite3
from typing import Any

import httpx
import pytest

from src.core import db
from src.core.config import ContinuationConfig, Settings
from src.core.events import SCORING_COMPLETED, SEARCH_COMPLETED, InMemoryEventPublisher
from src.core.schemas import ScoreResult, SearchCriteria, SearchStatus, StrategyStatus
from src.pipeline.orchestrator import Pipeline
from src.pipeline.scorers import ScoringService
from src.sources.base import SourceProvider

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class CityProvider(SourceProvider):
    """Two profiles per page, named after the searched location."""

    def __init__(self, name: str) -> None:
        self._name = name
        self.pages: list[tuple[str, int]] = []

    @property
    def provider_id(self) -> str:
        return self._name

    async def search(self, criteria: SearchCriteria, page: int = 1) -> list[str]:
        city = str(criteria.location).lower()
        self.pages.append((city, page))
        return [f"https://www.linkedin.com/in/{city}-{page}-{i}" for i in range(2)]


class CityScorer(ScoringService):
    """Scores Porto profiles high and everyone else low."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    @property
    def service_id(self) -> str:
        return "city"

    async def score(
        self, candidate: dict[str, Any], criteria: SearchCriteria, query_text: str, candidate_id: str
    ) -> ScoreResult:
        row = db.get_candidate(self._conn, candidate_id)
        assert row is not None
        return ScoreResult(match_score=85 if "/porto-" in row["profile_url"] else 20, version="city-1")


@pytest.fixture()
def conn(tmp_path):  # type: ignore[no-untyped-def]
    c = db.init_db(tmp_path / "pipeline.db")
    yield c
    c.close()


@pytest.fixture()
async def client():  # type: ignore[no-untyped-def]
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500))) as c:
        yield c


def _pipeline(conn, client, events, providers):  # type: ignore[no-untyped-def]
    settings = Settings(continuation=ContinuationConfig(target_candidates=4, candidates_per_run=2))
    return Pipeline(
        settings, conn, client, events=events, scoring_service=CityScorer(conn), providers=providers,
    )


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestSourcingPipeline:
    async def test_search_runs_scores_and_lists(self, conn, client) -> None:  # type: ignore[no-untyped-def]
        events = InMemoryEventPublisher()
        # Both providers return the same profiles; they must be stored once.
        pipeline = _pipeline(conn, client, events, [CityProvider("a"), CityProvider("b")])
        criteria = SearchCriteria(job_title="Engineer", location="Porto")

        search = await pipeline.start_search("org-1", "engineers in porto", criteria)
        assert search.status == SearchStatus.PROCESSING
        (result,) = await pipeline.trigger.wait()

        assert result.status == SearchStatus.COMPLETED
        assert (result.candidates_linked, result.scored, result.scoring_errors) == (2, 2, 0)
        assert events.named(SEARCH_COMPLETED)[0].payload["candidatesCount"] == 2
        assert events.named(SCORING_COMPLETED)

        progress = pipeline.scoring.progress(search.id)
        assert (progress.total, progress.scored, progress.excellent) == (2, 2, 2)
        assert progress.is_scoring_complete

        page = pipeline.listing.list_candidates(search.id, sort_by="score-desc", include_total=True)
        assert page.total == 2
        assert {item.profile_url for item in page.items} == {
            "https://www.linkedin.com/in/porto-1-0",
            "https://www.linkedin.com/in/porto-1-1",
        }
        assert all(item.match_score == 85 for item in page.items)

    async def test_continuation_reruns_best_strategy(self, conn, client) -> None:  # type: ignore[no-untyped-def]
        events = InMemoryEventPublisher()
        provider = CityProvider("a")
        pipeline = _pipeline(conn, client, events, [provider])
        criteria = SearchCriteria(job_title="Engineer", location="Lisbon")

        search = db.create_search(conn, "org-1", "engineers", criteria)
        porto = db.insert_strategy(conn, search.id, "Porto", {"location": "Porto"})
        db.insert_strategy(conn, search.id, "Faro", {"location": "Faro"})
        await pipeline.trigger.trigger(search.query, criteria, search.id)
        await pipeline.trigger.wait()
        assert db.get_scoring_progress(conn, search.id).total == 4

        plan = await pipeline.planner.continue_search(search.id)
        assert plan.success
        assert plan.strategy_ids == [porto.id, porto.id]
        (result,) = await pipeline.trigger.wait()

        assert result.status == SearchStatus.COMPLETED
        assert sorted(provider.pages) == [("faro", 1), ("porto", 1), ("porto", 2), ("porto", 3)]
        stored = db.get_strategies(conn, [porto.id])[porto.id]
        assert stored.status == StrategyStatus.COMPLETED
        assert stored.candidates_found == 6

        progress = pipeline.scoring.progress(search.id)
        assert (progress.total, progress.scored, progress.excellent) == (8, 8, 6)
