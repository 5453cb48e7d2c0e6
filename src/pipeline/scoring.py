"""Scoring orchestrator: score linked candidates and derive scoring progress."""

import asyncio
import json
import logging
import sqlite3
from collections.abc import Mapping
from typing import Any

from src.core import db
from src.core.access import AccessPolicy, AllowAllAccess
from src.core.errors import NotFoundError
from src.core.events import (
    SCORING_COMPLETED,
    SCORING_PROGRESS,
    EventPublisher,
    LoggingEventPublisher,
    search_channel,
)
from src.core.schemas import (
    BatchScoreResult,
    ScoreOutcome,
    ScoringFailure,
    ScoringProgress,
    Search,
)
from src.pipeline.scorers import ScoringService

logger = logging.getLogger(__name__)


def _load_json(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return None
    return value


def prepare_candidate_for_scoring(candidate: Mapping[str, Any]) -> dict[str, Any]:
    """Reduce a stored candidate row to the profile shape the scorer expects."""
    experiences = _load_json(candidate["experiences"])
    educations = _load_json(candidate["educations"])

    return {
        "headline": candidate["headline"],
        "about": candidate["summary"],
        "summary": candidate["summary"],
        "location": _load_json(candidate["location"]),
        "location_text": candidate["location_text"],
        "position": candidate["position"],
        "experiences": [
            {
                "position": exp.get("position") or exp.get("title"),
                "skills": exp.get("skills"),
                "startDate": exp.get("startDate"),
                "endDate": exp.get("endDate"),
                "isCurrent": exp.get("isCurrent"),
                "description": exp.get("description"),
            }
            for exp in (experiences if isinstance(experiences, list) else [])
            if isinstance(exp, dict)
        ],
        "educations": [
            {
                "schoolName": edu.get("school") or edu.get("schoolName"),
                "degree": edu.get("degree"),
                "skills": edu.get("skills"),
                "fieldOfStudy": edu.get("fieldOfStudy"),
                "startDate": edu.get("startDate"),
                "endDate": edu.get("endDate"),
            }
            for edu in (educations if isinstance(educations, list) else [])
            if isinstance(edu, dict)
        ],
        "skills": _load_json(candidate["skills"]),
    }


class ScoringOrchestrator:
    """Scores SearchCandidates through an external scoring capability.

    Authorization is checked once per call, before any write. Batch scoring
    runs every task at once; each task only ever writes its own row.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        service: ScoringService,
        access: AccessPolicy | None = None,
        events: EventPublisher | None = None,
    ) -> None:
        self._conn = conn
        self._service = service
        self._access = access or AllowAllAccess()
        self._events = events or LoggingEventPublisher()

    async def score_one(self, search_candidate_id: str) -> ScoreOutcome:
        """Score a single SearchCandidate, returning the score or a typed failure."""
        row = db.get_search_candidate(self._conn, search_candidate_id)
        if row is None:
            return self._fail(search_candidate_id, ScoringFailure.NOT_FOUND, "search candidate not found")

        search = db.get_search(self._conn, row["search_id"])
        if search is None:
            return self._fail(
                search_candidate_id, ScoringFailure.INCOMPLETE_CONTEXT, "search not found",
            )

        self._access.assert_read_access(search.id)
        self._access.assert_write_allowed(search.organization_id)
        return await self._score(search_candidate_id, search)

    async def score_batch(
        self, search_id: str, search_candidate_ids: list[str] | None = None
    ) -> BatchScoreResult:
        """Score many SearchCandidates concurrently. Defaults to every unscored one."""
        search = db.get_search(self._conn, search_id)
        if search is None:
            msg = f"Search {search_id} not found"
            raise NotFoundError(msg)

        self._access.assert_read_access(search.id)
        self._access.assert_write_allowed(search.organization_id)

        ids = (
            list(dict.fromkeys(search_candidate_ids))
            if search_candidate_ids is not None
            else db.unscored_search_candidate_ids(self._conn, search_id)
        )
        if not ids:
            logger.info("Search %s: nothing to score", search_id)
            return BatchScoreResult()

        logger.info("Search %s: scoring %d candidates", search_id, len(ids))
        outcomes = await asyncio.gather(
            *(self._score(sc_id, search) for sc_id in ids), return_exceptions=True
        )

        result = BatchScoreResult()
        for sc_id, outcome in zip(ids, outcomes, strict=True):
            if isinstance(outcome, ScoreOutcome) and outcome.success:
                result.scored += 1
                continue
            result.errors += 1
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error("Scoring task for %s crashed", sc_id, exc_info=outcome)

        logger.info("Search %s: scored %d, errors %d", search_id, result.scored, result.errors)
        if result.errors:
            progress = db.get_scoring_progress(self._conn, search_id)
            self._events.emit(
                search_channel(search_id),
                SCORING_COMPLETED,
                {"scored": progress.scored, "errors": result.errors},
            )
        return result

    def progress(self, search_id: str) -> ScoringProgress:
        self._access.assert_read_access(search_id)
        return db.get_scoring_progress(self._conn, search_id)

    async def _score(self, search_candidate_id: str, search: Search) -> ScoreOutcome:
        row = db.get_search_candidate(self._conn, search_candidate_id)
        if row is None or row["search_id"] != search.id:
            return self._fail(search_candidate_id, ScoringFailure.NOT_FOUND, "search candidate not found")

        candidate = db.get_candidate(self._conn, row["candidate_id"])
        if candidate is None:
            return self._fail(
                search_candidate_id, ScoringFailure.NOT_FOUND, "candidate not found", record=True,
            )
        if not search.query.strip() or not search.criteria_json:
            return self._fail(
                search_candidate_id,
                ScoringFailure.INCOMPLETE_CONTEXT,
                "search has no query text or criteria",
                record=True,
            )
        try:
            criteria = search.criteria()
        except ValueError as e:
            return self._fail(
                search_candidate_id, ScoringFailure.UNPARSEABLE_CRITERIA, str(e), record=True,
            )

        profile = prepare_candidate_for_scoring(candidate)
        try:
            result = await self._service.score(profile, criteria, search.query, candidate["id"])
        except Exception as e:
            logger.warning("Scoring failed for %s", search_candidate_id, exc_info=True)
            return self._fail(
                search_candidate_id, ScoringFailure.SCORING_FAILED, str(e) or type(e).__name__, record=True,
            )

        db.record_score(
            self._conn,
            search_candidate_id,
            result.match_score,
            json.dumps(result.notes, default=str),
            result.version,
        )
        self._emit_progress(search.id, candidate["id"], search_candidate_id, result.match_score)
        return ScoreOutcome(search_candidate_id=search_candidate_id, score=result.match_score)

    def _emit_progress(
        self, search_id: str, candidate_id: str, search_candidate_id: str, score: float
    ) -> None:
        progress = db.get_scoring_progress(self._conn, search_id)
        logger.debug(
            "Scored %s: %.0f (%d/%d)", search_candidate_id, score, progress.scored, progress.total,
        )
        channel = search_channel(search_id)
        self._events.emit(
            channel,
            SCORING_PROGRESS,
            {
                "candidateId": candidate_id,
                "searchCandidateId": search_candidate_id,
                "score": score,
                "scored": progress.scored,
                "total": progress.total,
            },
        )
        if progress.scored >= progress.total:
            self._events.emit(
                channel,
                SCORING_COMPLETED,
                {"scored": progress.scored, "errors": progress.total - progress.scored},
            )

    def _fail(
        self,
        search_candidate_id: str,
        failure: ScoringFailure,
        error: str,
        *,
        record: bool = False,
    ) -> ScoreOutcome:
        if record:
            db.record_scoring_error(self._conn, search_candidate_id, f"{failure}: {error}")
        return ScoreOutcome(search_candidate_id=search_candidate_id, failure=failure, error=error)
