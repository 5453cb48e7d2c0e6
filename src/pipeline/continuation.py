"""Continuation planner: extend a search by re-running its best strategies."""

import logging
import sqlite3
from collections import defaultdict

from pydantic import BaseModel, Field

from src.core import db
from src.core.access import AccessPolicy, AllowAllAccess
from src.core.config import ContinuationConfig
from src.core.errors import NotFoundError, SourcingError
from src.core.events import EventPublisher, LoggingEventPublisher
from src.core.schemas import SearchStatus, StrategyStatus
from src.pipeline.strategies import StrategyTracker
from src.pipeline.workflow import WorkflowTrigger

logger = logging.getLogger(__name__)


class StrategyMetrics(BaseModel):
    strategy_id: str
    median: float
    count: int


class ContinuationResult(BaseModel):
    success: bool
    strategy_ids: list[str] = Field(default_factory=list)
    metrics: list[StrategyMetrics] = Field(default_factory=list)
    used_fallback: bool = False
    run_id: str | None = None
    error: str | None = None


def median(values: list[float]) -> float:
    """Median of a non-empty list; even lengths average the two middle values."""
    if not values:
        msg = "median of empty list"
        raise ValueError(msg)
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return float(ordered[mid])
    return (ordered[mid - 1] + ordered[mid]) / 2


def compute_strategy_metrics(pairs: list[tuple[str, float]]) -> list[StrategyMetrics]:
    """Group (strategy_id, score) pairs and rank strategies by descending median.

    Ties go to the strategy with more scored candidates, then to the lower id.
    """
    grouped: dict[str, list[float]] = defaultdict(list)
    for strategy_id, score in pairs:
        grouped[strategy_id].append(score)
    metrics = [
        StrategyMetrics(strategy_id=sid, median=median(scores), count=len(scores))
        for sid, scores in grouped.items()
    ]
    return sorted(metrics, key=lambda m: (-m.median, -m.count, m.strategy_id))


def select_strategies(
    metrics: list[StrategyMetrics],
    primary_threshold: float = 50.0,
    relaxed_threshold: float = 30.0,
    max_strategies: int = 6,
) -> list[str]:
    """Pick strategies above the primary threshold, else the relaxed one, else the best.

    ``metrics`` must already be sorted by descending median.
    """
    if not metrics:
        return []
    for threshold in (primary_threshold, relaxed_threshold):
        selected = [m.strategy_id for m in metrics if m.median >= threshold]
        if selected:
            return selected[:max_strategies]
    return [metrics[0].strategy_id]


def build_run_schedule(strategy_ids: list[str], needed_runs: int) -> list[str]:
    """Round-robin the strategies until the schedule holds ``needed_runs`` entries."""
    if not strategy_ids or needed_runs <= 0:
        return []
    return [strategy_ids[i % len(strategy_ids)] for i in range(needed_runs)]


class ContinuationPlanner:
    """Decides which strategies to re-run for "get more candidates" and triggers them."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        trigger: WorkflowTrigger,
        config: ContinuationConfig | None = None,
        access: AccessPolicy | None = None,
        events: EventPublisher | None = None,
    ) -> None:
        self._conn = conn
        self._trigger = trigger
        self._config = config or ContinuationConfig()
        self._access = access or AllowAllAccess()
        self._events = events or LoggingEventPublisher()
        self._tracker = StrategyTracker(conn)

    async def continue_search(self, search_id: str) -> ContinuationResult:
        """Plan and trigger a new sourcing round.

        Any failure after the search is marked ``processing`` resets it to
        ``completed``/100 and is reported in the result rather than raised.
        """
        search = db.get_search(self._conn, search_id)
        if search is None:
            msg = f"Search {search_id} not found"
            raise NotFoundError(msg)
        self._access.assert_read_access(search_id)
        self._access.assert_write_allowed(search.organization_id)

        db.update_search_status(self._conn, search_id, SearchStatus.PROCESSING, 5)
        self._events.status_updated(search_id, SearchStatus.PROCESSING, "Analyzing strategies...", 5)

        try:
            criteria = search.criteria()
            metrics: list[StrategyMetrics] = []
            pairs = self._tracker.scored_pairs(search_id)

            if pairs:
                metrics = compute_strategy_metrics(pairs)
                selected = select_strategies(
                    metrics,
                    self._config.primary_threshold,
                    self._config.relaxed_threshold,
                    self._config.max_strategies,
                )
                logger.info(
                    "Search %s: strategy medians %s, selected %s",
                    search_id, {m.strategy_id: m.median for m in metrics}, selected,
                )
            else:
                selected = [
                    s.id for s in self._tracker.for_search(search_id, StrategyStatus.COMPLETED)
                ]
                if not selected:
                    msg = "no scored candidates and no completed strategies to re-run"
                    raise SourcingError(msg)
                logger.info(
                    "Search %s: no scored candidates, re-running %d completed strategies",
                    search_id, len(selected),
                )

            schedule = build_run_schedule(selected, self._config.needed_runs)
            trigger = await self._trigger.trigger(search.query, criteria, search_id, schedule)
            if not trigger.success:
                raise SourcingError(trigger.error or "workflow trigger failed")
        except Exception as e:
            logger.error("Continuation failed for search %s", search_id, exc_info=True)
            db.update_search_status(self._conn, search_id, SearchStatus.COMPLETED, 100)
            self._events.status_updated(
                search_id, SearchStatus.COMPLETED, f"Continuation failed: {e}", 100
            )
            return ContinuationResult(success=False, error=str(e) or type(e).__name__)

        return ContinuationResult(
            success=True,
            strategy_ids=schedule,
            metrics=metrics,
            used_fallback=not pairs,
            run_id=trigger.run_id,
        )
