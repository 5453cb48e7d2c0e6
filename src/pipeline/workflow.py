"""Background sourcing workflow and the trigger that detaches it from callers."""

import asyncio
import logging
import sqlite3
import uuid
from abc import ABC, abstractmethod
from collections import Counter

from pydantic import BaseModel

from src.core import db
from src.core.errors import SourcingError
from src.core.events import (
    SEARCH_COMPLETED,
    SEARCH_FAILED,
    EventPublisher,
    LoggingEventPublisher,
    search_channel,
)
from src.core.schemas import (
    SearchCriteria,
    SearchStatus,
    SourcingStrategy,
    StrategyStatus,
    TriggerResult,
)
from src.pipeline.repository import CandidateRepository
from src.pipeline.scoring import ScoringOrchestrator
from src.pipeline.strategies import StrategyTracker, tag_with_strategy
from src.sources.aggregator import SourceAggregator
from src.sources.profiles import ProfileFetcher, url_only_records

logger = logging.getLogger(__name__)

DEFAULT_STRATEGY_NAME = "Default search"


class Execution(BaseModel):
    strategy: SourcingStrategy
    page: int


class WorkflowResult(BaseModel):
    search_id: str
    status: SearchStatus
    executions: int = 0
    failed_executions: int = 0
    candidates_linked: int = 0
    scored: int = 0
    scoring_errors: int = 0
    error: str | None = None


def plan_executions(
    strategies: dict[str, SourcingStrategy], strategy_ids: list[str]
) -> list[Execution]:
    """Expand a continuation schedule into (strategy, page) runs.

    The n-th occurrence of a strategy runs page ``start_page + n`` so repeats
    never re-fetch a page already sourced. Unknown ids are skipped.
    """
    seen: Counter[str] = Counter()
    executions: list[Execution] = []
    for sid in strategy_ids:
        strategy = strategies.get(sid)
        if strategy is None:
            logger.warning("Skipping unknown strategy %s", sid)
            continue
        seen[sid] += 1
        executions.append(Execution(strategy=strategy, page=strategy.start_page + seen[sid]))
    return executions


class SourcingWorkflow:
    """Runs strategies through the aggregator and repository, then scores the results.

    Executions run one after another; the repository's writes must not overlap.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        aggregator: SourceAggregator,
        fetcher: ProfileFetcher | None = None,
        scoring: ScoringOrchestrator | None = None,
        events: EventPublisher | None = None,
    ) -> None:
        self._conn = conn
        self._aggregator = aggregator
        self._fetcher = fetcher
        self._scoring = scoring
        self._events = events or LoggingEventPublisher()
        self._repository = CandidateRepository(conn)
        self._tracker = StrategyTracker(conn)

    async def run(
        self,
        search_id: str,
        query_text: str,
        criteria: SearchCriteria,
        strategy_ids: list[str] | None = None,
    ) -> WorkflowResult:
        channel = search_channel(search_id)
        try:
            db.update_search_status(self._conn, search_id, SearchStatus.PROCESSING, 10)
            executions = self._resolve(search_id, strategy_ids)
            if not executions:
                msg = "no runnable strategies"
                raise SourcingError(msg)

            db.update_search_status(self._conn, search_id, SearchStatus.EXECUTING, 15)
            self._events.status_updated(
                search_id, SearchStatus.EXECUTING, f"Running {len(executions)} strategies...", 15
            )

            result = WorkflowResult(search_id=search_id, status=SearchStatus.EXECUTING)
            for i, execution in enumerate(executions, start=1):
                linked = await self._execute(search_id, criteria, execution)
                result.executions += 1
                if linked is None:
                    result.failed_executions += 1
                else:
                    result.candidates_linked += linked

                progress = 15 + (75 * i) // len(executions)
                db.update_search_status(self._conn, search_id, SearchStatus.EXECUTING, progress)
                self._events.status_updated(
                    search_id,
                    SearchStatus.EXECUTING,
                    f"Completed {i}/{len(executions)} strategies",
                    progress,
                )

            all_failed = result.failed_executions == result.executions
            result.status = SearchStatus.FAILED if all_failed else SearchStatus.COMPLETED
            db.update_search_status(self._conn, search_id, result.status, 100)
            total = db.count_search_candidates(self._conn, search_id)
            self._events.emit(
                channel,
                SEARCH_COMPLETED,
                {"candidatesCount": total, "status": str(result.status)},
            )
            logger.info(
                "Search %s %s: %d executions (%d failed), %d new links, %d total candidates",
                search_id, result.status, result.executions, result.failed_executions,
                result.candidates_linked, total,
            )
        except Exception as e:
            logger.error("Sourcing workflow failed for search %s", search_id, exc_info=True)
            db.update_search_status(self._conn, search_id, SearchStatus.ERROR, 0)
            self._events.emit(channel, SEARCH_FAILED, {"error": str(e)})
            return WorkflowResult(search_id=search_id, status=SearchStatus.ERROR, error=str(e))

        if self._scoring is not None and result.status == SearchStatus.COMPLETED:
            try:
                batch = await self._scoring.score_batch(search_id)
                result.scored, result.scoring_errors = batch.scored, batch.errors
            except Exception:
                # Sourcing already succeeded; unscored rows can be scored later.
                logger.error("Scoring after sourcing failed for search %s", search_id, exc_info=True)
        return result

    def _resolve(self, search_id: str, strategy_ids: list[str] | None) -> list[Execution]:
        if strategy_ids:
            strategies = {
                sid: s for sid, s in self._tracker.get_many(strategy_ids).items()
                if s.search_id == search_id
            }
            return plan_executions(strategies, strategy_ids)

        pending = self._tracker.for_search(search_id, StrategyStatus.PENDING)
        if not pending:
            pending = [self._tracker.create(search_id, DEFAULT_STRATEGY_NAME, {})]
        return [Execution(strategy=s, page=s.start_page) for s in pending]

    async def _execute(
        self, search_id: str, criteria: SearchCriteria, execution: Execution
    ) -> int | None:
        """Run one strategy page. Returns new links, or None if the run failed."""
        strategy = execution.strategy
        self._tracker.start(strategy.id)
        try:
            found = await self._aggregator.search(criteria.merged(strategy.params), execution.page)
            if found.results and not any(r.ok for r in found.results):
                msg = "; ".join(f"{r.provider}: {r.error}" for r in found.results)
                raise SourcingError(msg)

            if self._fetcher is not None:
                records = await self._fetcher.fetch_many(found.urls)
            else:
                records = url_only_records(found.urls)
            saved = self._repository.save_from_search(search_id, tag_with_strategy(records, strategy.id))
        except Exception as e:
            logger.warning("Strategy %s page %d failed", strategy.id, execution.page, exc_info=True)
            self._tracker.fail(strategy.id, str(e) or type(e).__name__)
            return None

        current = self._tracker.get_many([strategy.id]).get(strategy.id, strategy)
        self._tracker.complete(
            strategy.id,
            candidates_found=current.candidates_found + saved.linked,
            params={**current.params, "start_page": execution.page},
        )
        logger.info(
            "Strategy %s page %d: %d URLs, %d saved, %d linked",
            strategy.id, execution.page, len(found.urls), saved.saved, saved.linked,
        )
        return saved.linked


class WorkflowTrigger(ABC):
    """Starts a sourcing workflow without waiting for it to finish."""

    @abstractmethod
    async def trigger(
        self,
        query_text: str,
        criteria: SearchCriteria,
        search_id: str,
        strategy_ids: list[str] | None = None,
    ) -> TriggerResult:
        """Schedule a run. Never raises; failures come back in the result."""


class BackgroundWorkflowTrigger(WorkflowTrigger):
    """Runs workflows as detached asyncio tasks in the current event loop."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        workflow: SourcingWorkflow,
        events: EventPublisher | None = None,
    ) -> None:
        self._conn = conn
        self._workflow = workflow
        self._events = events or LoggingEventPublisher()
        self._tasks: set[asyncio.Task[WorkflowResult]] = set()

    async def trigger(
        self,
        query_text: str,
        criteria: SearchCriteria,
        search_id: str,
        strategy_ids: list[str] | None = None,
    ) -> TriggerResult:
        message = "Starting continuation..." if strategy_ids else "Starting search..."
        try:
            db.update_search_status(self._conn, search_id, SearchStatus.PROCESSING, 5)
            self._events.status_updated(search_id, SearchStatus.PROCESSING, message, 5)

            run_id = uuid.uuid4().hex
            task = asyncio.create_task(
                self._workflow.run(search_id, query_text, criteria, strategy_ids),
                name=f"sourcing-{run_id}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        except Exception as e:
            logger.error("Could not start workflow for search %s", search_id, exc_info=True)
            db.update_search_status(self._conn, search_id, SearchStatus.ERROR, 0)
            return TriggerResult(success=False, error=str(e) or type(e).__name__)

        logger.info("Search %s: workflow %s started (%s)", search_id, run_id, message)
        return TriggerResult(success=True, run_id=run_id)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait(self) -> list[WorkflowResult]:
        """Await every workflow started so far."""
        results = await asyncio.gather(*list(self._tasks), return_exceptions=True)
        return [r for r in results if isinstance(r, WorkflowResult)]
