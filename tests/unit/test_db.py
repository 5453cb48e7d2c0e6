"""Tests for the database layer: init, searches, strategies, links, progress, listing."""

import sqlite3

import pytest

from src.core import db
from src.core.schemas import CandidateStatus, SearchStatus, StrategyStatus


@pytest.fixture()
def conn(tmp_path):  # type: ignore[no-untyped-def]
    """Provide a fresh SQLite connection per test."""
    c = db.init_db(tmp_path / "test.db")
    yield c
    c.close()


def _candidate(conn: sqlite3.Connection, url: str, **fields: object) -> str:
    cid = db.new_id()
    db.insert_candidates(conn, [{"id": cid, "profile_url": url, **fields}])
    return cid


def _link(conn: sqlite3.Connection, search_id: str, candidate_id: str) -> str:
    sc_id = db.new_id()
    db.insert_links(conn, [{"id": sc_id, "search_id": search_id, "candidate_id": candidate_id}])
    return sc_id


class TestInitDb:
    def test_creates_tables(self, conn) -> None:  # type: ignore[no-untyped-def]
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        }
        assert {
            "searches",
            "sourcing_strategies",
            "candidates",
            "search_candidates",
            "search_candidate_strategies",
        } <= tables

    def test_idempotent(self, tmp_path) -> None:  # type: ignore[no-untyped-def]
        """Calling init_db twice on the same path doesn't error."""
        p = tmp_path / "double.db"
        db.init_db(p).close()
        db.init_db(p).close()

    def test_creates_parent_directory(self, tmp_path) -> None:  # type: ignore[no-untyped-def]
        p = tmp_path / "nested" / "dir" / "sourcing.db"
        db.init_db(p).close()
        assert p.exists()


class TestSanitizing:
    def test_strip_nul(self) -> None:
        assert db.strip_nul("a\x00b") == "ab"
        assert db.strip_nul(None) is None
        assert db.strip_nul("") == ""

    def test_dumps_clean_nested(self) -> None:
        assert db.dumps_clean({"k": ["x\x00y", {"z": "\x00"}]}) == '{"k": ["xy", {"z": ""}]}'
        assert db.dumps_clean(None) is None


class TestSearches:
    def test_create_and_get(self, conn) -> None:  # type: ignore[no-untyped-def]
        search = db.create_search(conn, "org-1", "senior python engineer", {"job_title": "Engineer"})
        loaded = db.get_search(conn, search.id)
        assert loaded is not None
        assert loaded.status == SearchStatus.CREATED
        assert loaded.progress == 0
        assert loaded.name == "senior python engineer"
        assert loaded.criteria().job_title == "Engineer"

    def test_get_missing(self, conn) -> None:  # type: ignore[no-untyped-def]
        assert db.get_search(conn, "nope") is None

    def test_update_status(self, conn) -> None:  # type: ignore[no-untyped-def]
        search = db.create_search(conn, "org-1", "q", {})
        db.update_search_status(conn, search.id, SearchStatus.EXECUTING, 40)
        loaded = db.get_search(conn, search.id)
        assert loaded is not None
        assert (loaded.status, loaded.progress) == (SearchStatus.EXECUTING, 40)

        db.update_search_status(conn, search.id, SearchStatus.COMPLETED)
        loaded = db.get_search(conn, search.id)
        assert loaded is not None
        assert (loaded.status, loaded.progress) == (SearchStatus.COMPLETED, 40)


class TestStrategies:
    def test_insert_and_list(self, conn) -> None:  # type: ignore[no-untyped-def]
        search = db.create_search(conn, "org-1", "q", {})
        s = db.insert_strategy(conn, search.id, "Broad", {"location": "Berlin"})
        assert s.status == StrategyStatus.PENDING
        assert s.params == {"location": "Berlin"}
        assert [x.id for x in db.list_strategies(conn, search.id)] == [s.id]
        assert db.list_strategies(conn, search.id, StrategyStatus.COMPLETED) == []

    def test_update_and_clear_error(self, conn) -> None:  # type: ignore[no-untyped-def]
        search = db.create_search(conn, "org-1", "q", {})
        s = db.insert_strategy(conn, search.id, "Broad")
        db.update_strategy(conn, s.id, status=StrategyStatus.FAILED, error="boom")
        assert db.get_strategies(conn, [s.id])[s.id].error == "boom"

        db.update_strategy(conn, s.id, status=StrategyStatus.RUNNING, clear_error=True)
        updated = db.get_strategies(conn, [s.id])[s.id]
        assert updated.status == StrategyStatus.RUNNING
        assert updated.error is None

    def test_existing_ids_filters_unknown(self, conn) -> None:  # type: ignore[no-untyped-def]
        search = db.create_search(conn, "org-1", "q", {})
        s = db.insert_strategy(conn, search.id, "Broad")
        assert db.existing_strategy_ids(conn, [s.id, "ghost"]) == {s.id}
        assert db.existing_strategy_ids(conn, []) == set()


class TestCandidatesAndLinks:
    def test_unique_profile_url(self, conn) -> None:  # type: ignore[no-untyped-def]
        _candidate(conn, "https://www.linkedin.com/in/ada")
        with pytest.raises(sqlite3.IntegrityError):
            _candidate(conn, "https://www.linkedin.com/in/ada")

    def test_failed_batch_insert_rolls_back(self, conn) -> None:  # type: ignore[no-untyped-def]
        rows = [
            {"id": db.new_id(), "profile_url": "https://www.linkedin.com/in/a"},
            {"id": db.new_id(), "profile_url": "https://www.linkedin.com/in/a"},
        ]
        with pytest.raises(sqlite3.IntegrityError):
            db.insert_candidates(conn, rows)
        assert conn.execute("SELECT COUNT(*) FROM candidates").fetchone()[0] == 0

    def test_find_by_url(self, conn) -> None:  # type: ignore[no-untyped-def]
        cid = _candidate(conn, "https://www.linkedin.com/in/ada")
        found = db.find_candidates_by_url(
            conn, ["https://www.linkedin.com/in/ada", "https://www.linkedin.com/in/bob"]
        )
        assert found == {"https://www.linkedin.com/in/ada": cid}

    def test_link_unique_per_search(self, conn) -> None:  # type: ignore[no-untyped-def]
        search = db.create_search(conn, "org-1", "q", {})
        cid = _candidate(conn, "https://www.linkedin.com/in/ada")
        sc_id = _link(conn, search.id, cid)
        assert db.find_links(conn, search.id, [cid]) == {cid: sc_id}
        with pytest.raises(sqlite3.IntegrityError):
            _link(conn, search.id, cid)

    def test_attribution_insert_or_ignore(self, conn) -> None:  # type: ignore[no-untyped-def]
        search = db.create_search(conn, "org-1", "q", {})
        strategy = db.insert_strategy(conn, search.id, "Broad")
        sc_id = _link(conn, search.id, _candidate(conn, "https://www.linkedin.com/in/ada"))

        assert db.insert_attributions(conn, [(sc_id, strategy.id)]) == 1
        assert db.insert_attributions(conn, [(sc_id, strategy.id)]) == 0
        count = conn.execute("SELECT COUNT(*) FROM search_candidate_strategies").fetchone()[0]
        assert count == 1


class TestScoringProgress:
    def test_derived_counts_and_bands(self, conn) -> None:  # type: ignore[no-untyped-def]
        search = db.create_search(conn, "org-1", "q", {})
        ids = [
            _link(conn, search.id, _candidate(conn, f"https://www.linkedin.com/in/p{i}"))
            for i in range(5)
        ]
        for sc_id, score in zip(ids, (90, 75, 55, 20), strict=False):
            db.record_score(conn, sc_id, score, None, "v2")
        db.record_scoring_error(conn, ids[4], "scoring_failed: boom")

        progress = db.get_scoring_progress(conn, search.id)
        assert (progress.total, progress.scored, progress.unscored) == (5, 4, 1)
        assert progress.errors == 1
        assert (progress.excellent, progress.good, progress.fair) == (1, 2, 3)
        assert progress.is_scoring_complete is False
        assert progress.search_status == "created"

    def test_empty_search_is_not_complete(self, conn) -> None:  # type: ignore[no-untyped-def]
        search = db.create_search(conn, "org-1", "q", {})
        progress = db.get_scoring_progress(conn, search.id)
        assert progress.total == 0
        assert progress.is_scoring_complete is False

    def test_score_clears_previous_error(self, conn) -> None:  # type: ignore[no-untyped-def]
        search = db.create_search(conn, "org-1", "q", {})
        sc_id = _link(conn, search.id, _candidate(conn, "https://www.linkedin.com/in/ada"))
        db.record_scoring_error(conn, sc_id, "boom")
        db.record_score(conn, sc_id, 64, '{"reasoning": "ok"}', "v2")
        row = db.get_search_candidate(conn, sc_id)
        assert row["scoring_error"] is None
        assert row["match_score"] == 64
        assert db.get_scoring_progress(conn, search.id).is_scoring_complete is True

    def test_status_update(self, conn) -> None:  # type: ignore[no-untyped-def]
        search = db.create_search(conn, "org-1", "q", {})
        sc_id = _link(conn, search.id, _candidate(conn, "https://www.linkedin.com/in/ada"))
        assert db.update_search_candidate_status(conn, sc_id, CandidateStatus.CONTACTED, "called") is True
        row = db.get_search_candidate(conn, sc_id)
        assert (row["status"], row["notes"]) == ("contacted", "called")
        assert db.update_search_candidate_status(conn, "missing", CandidateStatus.HIRED) is False


class TestScoredStrategyPairs:
    def test_ordered_by_strategy(self, conn) -> None:  # type: ignore[no-untyped-def]
        search = db.create_search(conn, "org-1", "q", {})
        strategies = [db.insert_strategy(conn, search.id, f"s{i}").id for i in range(3)]
        for i, strategy_id in enumerate(reversed(strategies)):
            sc_id = _link(conn, search.id, _candidate(conn, f"https://www.linkedin.com/in/p{i}"))
            db.insert_attributions(conn, [(sc_id, strategy_id)])
            db.record_score(conn, sc_id, 60, None)
        unscored = _link(conn, search.id, _candidate(conn, "https://www.linkedin.com/in/none"))
        db.insert_attributions(conn, [(unscored, strategies[0])])

        pairs = db.scored_strategy_pairs(conn, search.id)
        assert [s for s, _ in pairs] == sorted(strategies)
        assert all(score == 60.0 for _, score in pairs)


class TestQuerySearchCandidates:
    def test_unknown_sort(self, conn) -> None:  # type: ignore[no-untyped-def]
        with pytest.raises(ValueError, match="Unknown sort"):
            db.query_search_candidates(conn, "s", sort_by="name", limit=10)

    def test_score_desc_puts_nulls_last(self, conn) -> None:  # type: ignore[no-untyped-def]
        search = db.create_search(conn, "org-1", "q", {})
        unscored = _link(conn, search.id, _candidate(conn, "https://www.linkedin.com/in/u"))
        low = _link(conn, search.id, _candidate(conn, "https://www.linkedin.com/in/l"))
        high = _link(conn, search.id, _candidate(conn, "https://www.linkedin.com/in/h"))
        db.record_score(conn, low, 10, None)
        db.record_score(conn, high, 95, None)

        desc = db.query_search_candidates(conn, search.id, sort_by="score-desc", limit=10)
        asc = db.query_search_candidates(conn, search.id, sort_by="score-asc", limit=10)
        assert [r["id"] for r in desc] == [high, low, unscored]
        assert [r["id"] for r in asc] == [low, high, unscored]

    def test_score_range_excludes_nulls(self, conn) -> None:  # type: ignore[no-untyped-def]
        search = db.create_search(conn, "org-1", "q", {})
        _link(conn, search.id, _candidate(conn, "https://www.linkedin.com/in/u"))
        scored = _link(conn, search.id, _candidate(conn, "https://www.linkedin.com/in/s"))
        db.record_score(conn, scored, 60, None)

        assert db.count_search_candidates(conn, search.id) == 2
        assert db.count_search_candidates(conn, search.id, (50.0, 100.0)) == 1
        rows = db.query_search_candidates(
            conn, search.id, sort_by="date-desc", limit=10, score_range=(50.0, 100.0)
        )
        assert [r["id"] for r in rows] == [scored]
        assert rows[0]["profile_url"] == "https://www.linkedin.com/in/s"
