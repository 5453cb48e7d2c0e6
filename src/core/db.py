"""SQLite database layer for searches, strategies, candidates and their links."""

import json
import sqlite3
import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

from src.core.schemas import (
    CandidateStatus,
    ScoringProgress,
    Search,
    SearchCriteria,
    SearchStatus,
    SourcingStrategy,
    StrategyStatus,
)

_SEARCHES_TABLE = """
CREATE TABLE IF NOT EXISTS searches (
    id              TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    name            TEXT NOT NULL DEFAULT '',
    query           TEXT NOT NULL,
    criteria_json   TEXT,
    status          TEXT NOT NULL DEFAULT 'created',
    progress        INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT NOT NULL
);
"""

_STRATEGIES_TABLE = """
CREATE TABLE IF NOT EXISTS sourcing_strategies (
    id               TEXT PRIMARY KEY,
    search_id        TEXT NOT NULL REFERENCES searches(id) ON DELETE CASCADE,
    name             TEXT NOT NULL,
    description      TEXT NOT NULL DEFAULT '',
    params_json      TEXT NOT NULL DEFAULT '{}',
    status           TEXT NOT NULL DEFAULT 'pending',
    candidates_found INTEGER NOT NULL DEFAULT 0,
    error            TEXT,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);
"""

_CANDIDATES_TABLE = """
CREATE TABLE IF NOT EXISTS candidates (
    id                 TEXT PRIMARY KEY,
    profile_url        TEXT NOT NULL UNIQUE,
    username           TEXT,
    provider_urn       TEXT,
    full_name          TEXT,
    first_name         TEXT,
    last_name          TEXT,
    headline           TEXT,
    position           TEXT,
    summary            TEXT,
    photo_url          TEXT,
    location           TEXT,
    location_text      TEXT,
    email              TEXT,
    is_premium         INTEGER NOT NULL DEFAULT 0,
    open_to_work       INTEGER NOT NULL DEFAULT 0,
    hiring             INTEGER NOT NULL DEFAULT 0,
    verified           INTEGER NOT NULL DEFAULT 0,
    follower_count     INTEGER,
    connection_count   INTEGER,
    top_skills         TEXT,
    current_positions  TEXT,
    experiences        TEXT,
    educations         TEXT,
    certifications     TEXT,
    skills             TEXT,
    languages          TEXT,
    projects           TEXT,
    publications       TEXT,
    volunteering       TEXT,
    courses            TEXT,
    patents            TEXT,
    honors_and_awards  TEXT,
    causes             TEXT,
    source_data        TEXT,
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL
);
"""

_SEARCH_CANDIDATES_TABLE = """
CREATE TABLE IF NOT EXISTS search_candidates (
    id                 TEXT PRIMARY KEY,
    search_id          TEXT NOT NULL REFERENCES searches(id) ON DELETE CASCADE,
    candidate_id       TEXT NOT NULL REFERENCES candidates(id) ON DELETE CASCADE,
    match_score        REAL,
    notes              TEXT,
    scoring_version    TEXT,
    scoring_error      TEXT,
    scoring_updated_at TEXT,
    status             TEXT NOT NULL DEFAULT 'new',
    source_provider    TEXT,
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL,
    UNIQUE(search_id, candidate_id)
);
"""

_ATTRIBUTION_TABLE = """
CREATE TABLE IF NOT EXISTS search_candidate_strategies (
    id                  TEXT PRIMARY KEY,
    search_candidate_id TEXT NOT NULL REFERENCES search_candidates(id) ON DELETE CASCADE,
    strategy_id         TEXT NOT NULL REFERENCES sourcing_strategies(id) ON DELETE CASCADE,
    UNIQUE(search_candidate_id, strategy_id)
);
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_sc_search_created ON search_candidates(search_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_strategies_search ON sourcing_strategies(search_id)",
)

# Columns written from a normalized candidate record (id and timestamps excluded).
CANDIDATE_COLUMNS: tuple[str, ...] = (
    "profile_url", "username", "provider_urn", "full_name", "first_name", "last_name",
    "headline", "position", "summary", "photo_url", "location", "location_text", "email",
    "is_premium", "open_to_work", "hiring", "verified", "follower_count",
    "connection_count", "top_skills", "current_positions", "experiences", "educations",
    "certifications", "skills", "languages", "projects", "publications", "volunteering",
    "courses", "patents", "honors_and_awards", "causes", "source_data",
)

# Sort key -> (ORDER BY key expressions, ascending?)
_SORTS: dict[str, tuple[tuple[str, ...], bool]] = {
    "date-desc": (("sc.created_at", "sc.id"), False),
    "date-asc": (("sc.created_at", "sc.id"), True),
    "score-desc": (("COALESCE(sc.match_score, -1)", "sc.created_at", "sc.id"), False),
    "score-asc": (("COALESCE(sc.match_score, 101)", "sc.created_at", "sc.id"), True),
}
SORT_KEYS = tuple(_SORTS)


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    for ddl in (
        _SEARCHES_TABLE,
        _STRATEGIES_TABLE,
        _CANDIDATES_TABLE,
        _SEARCH_CANDIDATES_TABLE,
        _ATTRIBUTION_TABLE,
        *_INDEXES,
    ):
        conn.execute(ddl)
    conn.commit()
    return conn


def new_id() -> str:
    return uuid.uuid4().hex


def _now() -> str:
    return datetime.now().isoformat()


def _placeholders(n: int) -> str:
    return ", ".join("?" for _ in range(n))


def strip_nul(value: str | None) -> str | None:
    """Remove NUL characters, which the store rejects inside text."""
    if not value:
        return value if value is not None else None
    return value.replace("\x00", "")


def sanitize_for_json(value: Any) -> Any:
    if isinstance(value, str):
        return strip_nul(value)
    if isinstance(value, list):
        return [sanitize_for_json(v) for v in value]
    if isinstance(value, dict):
        return {k: sanitize_for_json(v) for k, v in value.items()}
    return value


def dumps_clean(value: Any) -> str | None:
    """Serialize a JSON-able value with NULs stripped. None stays None."""
    if value is None:
        return None
    return json.dumps(sanitize_for_json(value))


# ---------------------------------------------------------------------------
# Searches
# ---------------------------------------------------------------------------


def _search_from_row(row: sqlite3.Row) -> Search:
    return Search(
        id=row["id"],
        organization_id=row["organization_id"],
        name=row["name"],
        query=row["query"],
        criteria_json=row["criteria_json"],
        status=row["status"],
        progress=row["progress"],
        created_at=row["created_at"],
    )


def create_search(
    conn: sqlite3.Connection,
    organization_id: str,
    query: str,
    criteria: SearchCriteria | dict[str, Any] | None,
    name: str = "",
) -> Search:
    """Insert a new search in ``created`` state."""
    if isinstance(criteria, SearchCriteria):
        criteria_json = criteria.model_dump_json(exclude_none=True)
    else:
        criteria_json = dumps_clean(criteria)
    search_id = new_id()
    conn.execute(
        """
        INSERT INTO searches (id, organization_id, name, query, criteria_json, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (search_id, organization_id, name or query[:80], query, criteria_json, _now()),
    )
    conn.commit()
    search = get_search(conn, search_id)
    assert search is not None
    return search


def get_search(conn: sqlite3.Connection, search_id: str) -> Search | None:
    row = conn.execute("SELECT * FROM searches WHERE id = ?", (search_id,)).fetchone()
    return _search_from_row(row) if row is not None else None


def update_search_status(
    conn: sqlite3.Connection,
    search_id: str,
    status: SearchStatus,
    progress: int | None = None,
) -> None:
    if progress is None:
        conn.execute("UPDATE searches SET status = ? WHERE id = ?", (str(status), search_id))
    else:
        conn.execute(
            "UPDATE searches SET status = ?, progress = ? WHERE id = ?",
            (str(status), progress, search_id),
        )
    conn.commit()


# ---------------------------------------------------------------------------
# Sourcing strategies
# ---------------------------------------------------------------------------


def _strategy_from_row(row: sqlite3.Row) -> SourcingStrategy:
    try:
        params = json.loads(row["params_json"] or "{}")
    except json.JSONDecodeError:
        params = {}
    return SourcingStrategy(
        id=row["id"],
        search_id=row["search_id"],
        name=row["name"],
        description=row["description"],
        params=params if isinstance(params, dict) else {},
        status=row["status"],
        candidates_found=row["candidates_found"],
        error=row["error"],
    )


def insert_strategy(
    conn: sqlite3.Connection,
    search_id: str,
    name: str,
    params: dict[str, Any] | None = None,
    description: str = "",
) -> SourcingStrategy:
    strategy_id = new_id()
    now = _now()
    conn.execute(
        """
        INSERT INTO sourcing_strategies
            (id, search_id, name, description, params_json, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (strategy_id, search_id, name, description, json.dumps(params or {}), now, now),
    )
    conn.commit()
    return get_strategies(conn, [strategy_id])[strategy_id]


def get_strategies(conn: sqlite3.Connection, ids: Iterable[str]) -> dict[str, SourcingStrategy]:
    unique = list(dict.fromkeys(ids))
    if not unique:
        return {}
    rows = conn.execute(
        f"SELECT * FROM sourcing_strategies WHERE id IN ({_placeholders(len(unique))})",
        unique,
    ).fetchall()
    return {row["id"]: _strategy_from_row(row) for row in rows}


def list_strategies(
    conn: sqlite3.Connection,
    search_id: str,
    status: StrategyStatus | None = None,
) -> list[SourcingStrategy]:
    sql = "SELECT * FROM sourcing_strategies WHERE search_id = ?"
    args: list[Any] = [search_id]
    if status is not None:
        sql += " AND status = ?"
        args.append(str(status))
    sql += " ORDER BY created_at, id"
    return [_strategy_from_row(row) for row in conn.execute(sql, args).fetchall()]


def update_strategy(
    conn: sqlite3.Connection,
    strategy_id: str,
    *,
    status: StrategyStatus | None = None,
    params: dict[str, Any] | None = None,
    candidates_found: int | None = None,
    error: str | None = None,
    clear_error: bool = False,
) -> None:
    sets: list[str] = ["updated_at = ?"]
    args: list[Any] = [_now()]
    if status is not None:
        sets.append("status = ?")
        args.append(str(status))
    if params is not None:
        sets.append("params_json = ?")
        args.append(json.dumps(params))
    if candidates_found is not None:
        sets.append("candidates_found = ?")
        args.append(candidates_found)
    if error is not None or clear_error:
        sets.append("error = ?")
        args.append(error)
    args.append(strategy_id)
    conn.execute(f"UPDATE sourcing_strategies SET {', '.join(sets)} WHERE id = ?", args)
    conn.commit()


def existing_strategy_ids(conn: sqlite3.Connection, ids: Iterable[str]) -> set[str]:
    unique = list(dict.fromkeys(ids))
    if not unique:
        return set()
    rows = conn.execute(
        f"SELECT id FROM sourcing_strategies WHERE id IN ({_placeholders(len(unique))})",
        unique,
    ).fetchall()
    return {row["id"] for row in rows}


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------


def find_candidates_by_url(conn: sqlite3.Connection, urls: Sequence[str]) -> dict[str, str]:
    """Resolve already-known candidates for a batch of canonical URLs in one query."""
    unique = list(dict.fromkeys(urls))
    if not unique:
        return {}
    rows = conn.execute(
        f"SELECT id, profile_url FROM candidates WHERE profile_url IN ({_placeholders(len(unique))})",
        unique,
    ).fetchall()
    return {row["profile_url"]: row["id"] for row in rows}


def insert_candidates(conn: sqlite3.Connection, rows: Sequence[dict[str, Any]]) -> None:
    """Insert new candidates as one write. All-or-nothing."""
    if not rows:
        return
    columns = ("id", *CANDIDATE_COLUMNS, "created_at", "updated_at")
    now = _now()
    values = [
        (row["id"], *(row.get(col) for col in CANDIDATE_COLUMNS), now, now)
        for row in rows
    ]
    try:
        conn.executemany(
            f"INSERT INTO candidates ({', '.join(columns)}) VALUES ({_placeholders(len(columns))})",
            values,
        )
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise


def update_candidate(conn: sqlite3.Connection, candidate_id: str, row: dict[str, Any]) -> None:
    """Overwrite every stored field of an existing candidate."""
    assignments = ", ".join(f"{col} = ?" for col in CANDIDATE_COLUMNS)
    args = [row.get(col) for col in CANDIDATE_COLUMNS]
    try:
        conn.execute(
            f"UPDATE candidates SET {assignments}, updated_at = ? WHERE id = ?",
            (*args, _now(), candidate_id),
        )
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise


def get_candidate(conn: sqlite3.Connection, candidate_id: str) -> sqlite3.Row | None:
    return conn.execute("SELECT * FROM candidates WHERE id = ?", (candidate_id,)).fetchone()


# ---------------------------------------------------------------------------
# Search <-> candidate links and strategy attribution
# ---------------------------------------------------------------------------


def find_links(
    conn: sqlite3.Connection,
    search_id: str,
    candidate_ids: Sequence[str],
) -> dict[str, str]:
    """Return {candidate_id: search_candidate_id} for already-linked candidates."""
    unique = list(dict.fromkeys(candidate_ids))
    if not unique:
        return {}
    rows = conn.execute(
        f"""
        SELECT id, candidate_id FROM search_candidates
        WHERE search_id = ? AND candidate_id IN ({_placeholders(len(unique))})
        """,
        (search_id, *unique),
    ).fetchall()
    return {row["candidate_id"]: row["id"] for row in rows}


def insert_links(conn: sqlite3.Connection, links: Sequence[dict[str, Any]]) -> None:
    """Insert search_candidates rows as one write. All-or-nothing."""
    if not links:
        return
    now = _now()
    try:
        conn.executemany(
            """
            INSERT INTO search_candidates
                (id, search_id, candidate_id, source_provider, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    link["id"],
                    link["search_id"],
                    link["candidate_id"],
                    link.get("source_provider"),
                    str(CandidateStatus.NEW),
                    now,
                    now,
                )
                for link in links
            ],
        )
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise


def insert_attributions(
    conn: sqlite3.Connection,
    pairs: Iterable[tuple[str, str]],
) -> int:
    """Insert (search_candidate_id, strategy_id) pairs, ignoring duplicates.

    Returns the number of rows actually created.
    """
    rows = [(new_id(), sc_id, strategy_id) for sc_id, strategy_id in pairs]
    if not rows:
        return 0
    before = conn.total_changes
    try:
        conn.executemany(
            """
            INSERT OR IGNORE INTO search_candidate_strategies
                (id, search_candidate_id, strategy_id)
            VALUES (?, ?, ?)
            """,
            rows,
        )
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    return conn.total_changes - before


def scored_strategy_pairs(conn: sqlite3.Connection, search_id: str) -> list[tuple[str, float]]:
    """(strategy_id, match_score) for every scored candidate attributed to a strategy."""
    rows = conn.execute(
        """
        SELECT scs.strategy_id, sc.match_score
        FROM search_candidate_strategies scs
        JOIN search_candidates sc ON sc.id = scs.search_candidate_id
        WHERE sc.search_id = ? AND sc.match_score IS NOT NULL
        ORDER BY scs.strategy_id, sc.id
        """,
        (search_id,),
    ).fetchall()
    return [(row["strategy_id"], float(row["match_score"])) for row in rows]


# ---------------------------------------------------------------------------
# Search candidates: scoring and status
# ---------------------------------------------------------------------------


def get_search_candidate(conn: sqlite3.Connection, search_candidate_id: str) -> sqlite3.Row | None:
    return conn.execute(
        "SELECT * FROM search_candidates WHERE id = ?", (search_candidate_id,)
    ).fetchone()


def unscored_search_candidate_ids(conn: sqlite3.Connection, search_id: str) -> list[str]:
    rows = conn.execute(
        """
        SELECT id FROM search_candidates
        WHERE search_id = ? AND match_score IS NULL
        ORDER BY created_at, id
        """,
        (search_id,),
    ).fetchall()
    return [row["id"] for row in rows]


def record_score(
    conn: sqlite3.Connection,
    search_candidate_id: str,
    score: float,
    notes_json: str | None,
    version: str | None = None,
) -> None:
    now = _now()
    conn.execute(
        """
        UPDATE search_candidates
        SET match_score = ?, notes = ?, scoring_version = ?, scoring_error = NULL,
            scoring_updated_at = ?, updated_at = ?
        WHERE id = ?
        """,
        (score, notes_json, version, now, now, search_candidate_id),
    )
    conn.commit()


def record_scoring_error(conn: sqlite3.Connection, search_candidate_id: str, error: str) -> None:
    now = _now()
    conn.execute(
        """
        UPDATE search_candidates
        SET scoring_error = ?, scoring_updated_at = ?, updated_at = ?
        WHERE id = ?
        """,
        (error[:2000], now, now, search_candidate_id),
    )
    conn.commit()


def update_search_candidate_status(
    conn: sqlite3.Connection,
    search_candidate_id: str,
    status: CandidateStatus,
    notes: str | None = None,
) -> bool:
    """Set a linked candidate's pipeline status. Returns False if the row is missing."""
    if notes is not None:
        cursor = conn.execute(
            "UPDATE search_candidates SET status = ?, notes = ?, updated_at = ? WHERE id = ?",
            (str(status), notes, _now(), search_candidate_id),
        )
    else:
        cursor = conn.execute(
            "UPDATE search_candidates SET status = ?, updated_at = ? WHERE id = ?",
            (str(status), _now(), search_candidate_id),
        )
    conn.commit()
    return cursor.rowcount > 0


def get_scoring_progress(conn: sqlite3.Connection, search_id: str) -> ScoringProgress:
    """Derive scored/unscored counts from the rows themselves."""
    row = conn.execute(
        """
        SELECT
            COUNT(*) AS total,
            COUNT(match_score) AS scored,
            COALESCE(SUM(CASE WHEN match_score IS NULL AND scoring_error IS NOT NULL
                              THEN 1 ELSE 0 END), 0) AS errors,
            COALESCE(SUM(CASE WHEN match_score >= 80 THEN 1 ELSE 0 END), 0) AS excellent,
            COALESCE(SUM(CASE WHEN match_score >= 70 THEN 1 ELSE 0 END), 0) AS good,
            COALESCE(SUM(CASE WHEN match_score >= 50 THEN 1 ELSE 0 END), 0) AS fair
        FROM search_candidates
        WHERE search_id = ?
        """,
        (search_id,),
    ).fetchone()
    search = get_search(conn, search_id)

    total = row["total"]
    scored = row["scored"]
    unscored = total - scored
    return ScoringProgress(
        total=total,
        scored=scored,
        unscored=unscored,
        errors=row["errors"],
        excellent=row["excellent"],
        good=row["good"],
        fair=row["fair"],
        is_scoring_complete=total > 0 and unscored == 0,
        search_status=str(search.status) if search else "unknown",
        search_progress=search.progress if search else 0,
    )


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


def _filter_clause(
    search_id: str,
    score_range: tuple[float, float] | None,
) -> tuple[str, list[Any]]:
    where = "sc.search_id = ?"
    args: list[Any] = [search_id]
    if score_range is not None:
        where += " AND sc.match_score >= ? AND sc.match_score <= ?"
        args.extend(score_range)
    return where, args


def count_search_candidates(
    conn: sqlite3.Connection,
    search_id: str,
    score_range: tuple[float, float] | None = None,
) -> int:
    where, args = _filter_clause(search_id, score_range)
    row = conn.execute(f"SELECT COUNT(*) FROM search_candidates sc WHERE {where}", args).fetchone()
    return int(row[0])


def query_search_candidates(
    conn: sqlite3.Connection,
    search_id: str,
    *,
    sort_by: str,
    limit: int,
    score_range: tuple[float, float] | None = None,
    offset: int | None = None,
    after: tuple[Any, ...] | None = None,
) -> list[sqlite3.Row]:
    """Read linked candidates joined with their profile summary.

    ``after`` is a keyset position matching the sort's key expressions; rows
    strictly past it (in sort order) are returned.
    """
    if sort_by not in _SORTS:
        msg = f"Unknown sort '{sort_by}'. Available: {', '.join(SORT_KEYS)}"
        raise ValueError(msg)
    keys, ascending = _SORTS[sort_by]
    where, args = _filter_clause(search_id, score_range)

    if after is not None:
        if len(after) != len(keys):
            msg = "cursor does not match sort keys"
            raise ValueError(msg)
        op = ">" if ascending else "<"
        where += f" AND ({', '.join(keys)}) {op} ({_placeholders(len(keys))})"
        args.extend(after)

    direction = "ASC" if ascending else "DESC"
    order = ", ".join(f"{k} {direction}" for k in keys)
    sql = f"""
        SELECT sc.id, sc.search_id, sc.candidate_id, sc.match_score, sc.status, sc.notes,
               sc.source_provider, sc.created_at,
               c.profile_url, c.full_name, c.headline, c.photo_url, c.location_text
        FROM search_candidates sc
        JOIN candidates c ON c.id = sc.candidate_id
        WHERE {where}
        ORDER BY {order}
        LIMIT ?
    """
    args.append(limit)
    if offset:
        sql += " OFFSET ?"
        args.append(offset)
    return conn.execute(sql, args).fetchall()
