"""Strategy tracker: records sourcing-strategy executions and what they found."""

import logging
import sqlite3
from typing import Any

from src.core import db
from src.core.schemas import RawCandidate, SourcingStrategy, StrategyStatus

logger = logging.getLogger(__name__)


def tag_with_strategy(records: list[RawCandidate], strategy_id: str) -> list[RawCandidate]:
    """Copy records, adding ``strategy_id`` to each one's source strategies."""
    tagged: list[RawCandidate] = []
    for record in records:
        ids = list(record.source_strategy_ids)
        if strategy_id not in ids:
            ids.append(strategy_id)
        tagged.append(record.model_copy(update={"source_strategy_ids": ids}))
    return tagged


class StrategyTracker:
    """Lifecycle of SourcingStrategy rows: pending → running → completed | failed."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def create(
        self,
        search_id: str,
        name: str,
        params: dict[str, Any] | None = None,
        description: str = "",
    ) -> SourcingStrategy:
        strategy = db.insert_strategy(self._conn, search_id, name, params, description)
        logger.info("Search %s: created strategy %s (%s)", search_id, strategy.id, name)
        return strategy

    def get_many(self, strategy_ids: list[str]) -> dict[str, SourcingStrategy]:
        return db.get_strategies(self._conn, strategy_ids)

    def for_search(
        self, search_id: str, status: StrategyStatus | None = None
    ) -> list[SourcingStrategy]:
        return db.list_strategies(self._conn, search_id, status)

    def start(self, strategy_id: str) -> None:
        db.update_strategy(self._conn, strategy_id, status=StrategyStatus.RUNNING, clear_error=True)

    def complete(
        self,
        strategy_id: str,
        candidates_found: int,
        params: dict[str, Any] | None = None,
    ) -> None:
        db.update_strategy(
            self._conn,
            strategy_id,
            status=StrategyStatus.COMPLETED,
            candidates_found=candidates_found,
            params=params,
        )

    def fail(self, strategy_id: str, error: str) -> None:
        logger.warning("Strategy %s failed: %s", strategy_id, error)
        db.update_strategy(self._conn, strategy_id, status=StrategyStatus.FAILED, error=error[:2000])

    def scored_pairs(self, search_id: str) -> list[tuple[str, float]]:
        """(strategy_id, score) for every scored candidate attributed to a strategy."""
        return db.scored_strategy_pairs(self._conn, search_id)
