"""Paginated, filtered reads of a search's candidates, plus status updates."""

import base64
import binascii
import json
import logging
import math
import sqlite3
from typing import Any

from src.core import db
from src.core.access import AccessPolicy, AllowAllAccess
from src.core.errors import InvalidInputError, NotFoundError
from src.core.schemas import CandidatePage, CandidateStatus, SearchCandidateView

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
DEFAULT_SORT = "date-desc"

# Null scores sort last in both directions.
_NULL_SCORE_DESC = -1.0
_NULL_SCORE_ASC = 101.0


def encode_cursor(cursor: dict[str, Any]) -> str:
    raw = json.dumps(cursor, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> dict[str, Any] | None:
    """Decode an opaque cursor. Returns None when it is not one of ours."""
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (binascii.Error, ValueError, UnicodeError):
        return None
    if not isinstance(data, dict) or "sort_by" not in data or "last_id" not in data:
        return None
    return data


def score_range(score_min: float | None, score_max: float | None) -> tuple[float, float] | None:
    """The effective filter; None when the bounds leave the full 0-100 range open.

    An explicit filter excludes unscored candidates; no filter keeps them.
    """
    low = 0.0 if score_min is None else float(score_min)
    high = 100.0 if score_max is None else float(score_max)
    if low > high:
        msg = f"score_min ({low}) is greater than score_max ({high})"
        raise InvalidInputError(msg)
    if low > 0 or high < 100:
        return low, high
    return None


def _score_key(sort_by: str, score: float | None) -> float:
    if score is not None:
        return float(score)
    return _NULL_SCORE_DESC if sort_by == "score-desc" else _NULL_SCORE_ASC


def _cursor_for(sort_by: str, row: sqlite3.Row) -> dict[str, Any]:
    cursor: dict[str, Any] = {
        "sort_by": sort_by,
        "last_id": row["id"],
        "created_at": row["created_at"],
    }
    if sort_by.startswith("score"):
        cursor["score_key"] = _score_key(sort_by, row["match_score"])
    return cursor


def _keyset(sort_by: str, cursor: dict[str, Any]) -> tuple[Any, ...]:
    if sort_by.startswith("score"):
        if "score_key" not in cursor:
            msg = "cursor is missing score_key"
            raise InvalidInputError(msg)
        return (cursor["score_key"], cursor["created_at"], cursor["last_id"])
    return (cursor["created_at"], cursor["last_id"])


class CandidateListing:
    """Read side of SearchCandidates for UI/API consumers."""

    def __init__(self, conn: sqlite3.Connection, access: AccessPolicy | None = None) -> None:
        self._conn = conn
        self._access = access or AllowAllAccess()

    def list_candidates(
        self,
        search_id: str,
        *,
        score_min: float | None = None,
        score_max: float | None = None,
        sort_by: str = DEFAULT_SORT,
        limit: int = DEFAULT_LIMIT,
        page: int | None = None,
        cursor: str | None = None,
        include_total: bool = False,
    ) -> CandidatePage:
        """List a search's candidates by offset ``page`` (1-based) or keyset ``cursor``.

        Cursor mode is used whenever ``page`` is None; an empty cursor starts
        from the top.
        """
        self._access.assert_read_access(search_id)
        if sort_by not in db.SORT_KEYS:
            msg = f"Unknown sort '{sort_by}'. Available: {', '.join(db.SORT_KEYS)}"
            raise InvalidInputError(msg)
        limit = max(1, min(int(limit), MAX_LIMIT))
        scores = score_range(score_min, score_max)

        if page is not None:
            return self._offset_page(search_id, scores, sort_by, limit, max(1, page))
        return self._cursor_page(search_id, scores, sort_by, limit, cursor, include_total)

    def _offset_page(
        self,
        search_id: str,
        scores: tuple[float, float] | None,
        sort_by: str,
        limit: int,
        page: int,
    ) -> CandidatePage:
        total = db.count_search_candidates(self._conn, search_id, scores)
        rows = db.query_search_candidates(
            self._conn, search_id,
            sort_by=sort_by, limit=limit, score_range=scores, offset=(page - 1) * limit,
        )
        return CandidatePage(
            items=[SearchCandidateView.model_validate(dict(r)) for r in rows],
            limit=limit,
            has_more=page * limit < total,
            total=total,
            page=page,
            total_pages=math.ceil(total / limit) if total else 0,
        )

    def _cursor_page(
        self,
        search_id: str,
        scores: tuple[float, float] | None,
        sort_by: str,
        limit: int,
        cursor: str | None,
        include_total: bool,
    ) -> CandidatePage:
        after: tuple[Any, ...] | None = None
        if cursor:
            decoded = decode_cursor(cursor)
            if decoded is None or decoded["sort_by"] != sort_by:
                msg = "invalid cursor for this sort"
                raise InvalidInputError(msg)
            after = _keyset(sort_by, decoded)

        rows = db.query_search_candidates(
            self._conn, search_id,
            sort_by=sort_by, limit=limit + 1, score_range=scores, after=after,
        )
        has_more = len(rows) > limit
        rows = rows[:limit]
        next_cursor = encode_cursor(_cursor_for(sort_by, rows[-1])) if has_more and rows else None

        return CandidatePage(
            items=[SearchCandidateView.model_validate(dict(r)) for r in rows],
            limit=limit,
            has_more=has_more,
            next_cursor=next_cursor,
            total=db.count_search_candidates(self._conn, search_id, scores) if include_total else None,
        )

    def update_status(
        self,
        search_candidate_id: str,
        status: CandidateStatus | str,
        notes: str | None = None,
    ) -> None:
        """Move a linked candidate through the hiring pipeline."""
        try:
            status = CandidateStatus(status)
        except ValueError as e:
            msg = f"Unknown candidate status '{status}'"
            raise InvalidInputError(msg) from e

        row = db.get_search_candidate(self._conn, search_candidate_id)
        search = db.get_search(self._conn, row["search_id"]) if row is not None else None
        if row is None or search is None:
            msg = f"Search candidate {search_candidate_id} not found"
            raise NotFoundError(msg)

        self._access.assert_write_allowed(search.organization_id)
        db.update_search_candidate_status(self._conn, search_candidate_id, status, notes)
        logger.info("Search candidate %s → %s", search_candidate_id, status)
