"""Candidate repository: normalize, upsert and link discovered profiles to a search."""

import logging
import sqlite3
from collections.abc import Iterable
from typing import Any

from src.core import db
from src.core.db import dumps_clean, strip_nul
from src.core.schemas import RawCandidate, SaveResult
from src.sources.base import canonical_profile_url

logger = logging.getLogger(__name__)


def _is_present(end_date: Any) -> bool:
    """True when an experience end date marks the role as current."""
    if not end_date:
        return True
    text = end_date.get("text") if isinstance(end_date, dict) else end_date
    return isinstance(text, str) and text.strip().lower() == "present"


def _current_position(experiences: list[Any] | None) -> str | None:
    for exp in experiences or []:
        if not isinstance(exp, dict):
            continue
        current = exp.get("isCurrent")
        if current is True or (current is None and _is_present(exp.get("endDate"))):
            return exp.get("position") or exp.get("title")
    return None


def _text(value: Any) -> str | None:
    return strip_nul(value) or None if isinstance(value, str) else None


def _int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def candidate_row(raw: RawCandidate) -> dict[str, Any] | None:
    """Normalize a raw provider record into the stored candidate shape.

    Returns None when the record has no usable canonical profile URL.
    Typed fields win; ``raw_data`` (the provider's own payload) and extra
    keys fill what the typed fields leave empty.
    """
    url = canonical_profile_url(raw.linkedin_url)
    if not url:
        return None

    data = raw.raw_data or {}
    extra = raw.model_extra or {}

    def pick(*values: Any) -> Any:
        for value in values:
            if value not in (None, "", [], {}):
                return value
        return None

    experiences = pick(data.get("experience"), raw.experiences)
    educations = pick(data.get("education"), raw.educations)
    location = raw.location
    location_text = raw.location_text
    if not location_text and isinstance(location, dict):
        location_text = location.get("linkedinText")
    if isinstance(location, str):
        location_text = location_text or location
        location = None

    picture = data.get("profilePicture")
    photo = pick(
        extra.get("photo_url"),
        picture.get("url") if isinstance(picture, dict) else None,
        data.get("photo"),
    )

    return {
        "profile_url": url,
        "username": _text(raw.public_identifier),
        "provider_urn": _text(pick(extra.get("urn"), raw.provider_id)),
        "full_name": _text(raw.full_name),
        "first_name": _text(raw.first_name),
        "last_name": _text(raw.last_name),
        "headline": _text(raw.headline),
        "position": _text(raw.position or _current_position(experiences)),
        "summary": _text(raw.summary or data.get("about")),
        "photo_url": _text(photo),
        "location": dumps_clean(location),
        "location_text": _text(location_text),
        "email": _text(raw.email),
        "is_premium": int(bool(pick(extra.get("is_premium"), data.get("premium")))),
        "open_to_work": int(bool(data.get("openToWork"))),
        "hiring": int(bool(data.get("hiring"))),
        "verified": int(bool(data.get("verified"))),
        "follower_count": _int(pick(extra.get("follower_count"), data.get("followerCount"))),
        "connection_count": _int(pick(extra.get("connection_count"), data.get("connectionsCount"))),
        "top_skills": dumps_clean(data.get("topSkills")),
        "current_positions": dumps_clean(data.get("currentPosition")),
        "experiences": dumps_clean(experiences),
        "educations": dumps_clean(educations),
        "certifications": dumps_clean(pick(extra.get("certifications"), data.get("certifications"))),
        "skills": dumps_clean(raw.skills),
        "languages": dumps_clean(pick(extra.get("languages"), data.get("languages"))),
        "projects": dumps_clean(data.get("projects")),
        "publications": dumps_clean(pick(extra.get("publications"), data.get("publications"))),
        "volunteering": dumps_clean(pick(extra.get("volunteering"), data.get("volunteering"))),
        "courses": dumps_clean(data.get("courses")),
        "patents": dumps_clean(data.get("patents")),
        "honors_and_awards": dumps_clean(pick(extra.get("honors_and_awards"), data.get("honorsAndAwards"))),
        "causes": dumps_clean(data.get("causes")),
        "source_data": dumps_clean(data or None),
    }


class CandidateRepository:
    """Persists discovered candidates for a search.

    One batched lookup, one batched insert, then strictly sequential updates;
    the store does not tolerate concurrent writers from this caller.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def save_from_search(
        self,
        search_id: str,
        records: list[RawCandidate],
        source_provider: str = "api",
    ) -> SaveResult:
        """Upsert candidates, link them to the search and attribute strategies.

        Raises sqlite3.Error only when the batched insert of new candidates
        fails; update, link and attribution failures reduce the counts instead.
        """
        rows: dict[str, dict[str, Any]] = {}
        strategy_ids: dict[str, list[str]] = {}
        for record in records:
            row = candidate_row(record)
            if row is None:
                logger.debug("Skipping record without a profile URL: %s", record.full_name)
                continue
            url = row["profile_url"]
            rows[url] = row
            merged = strategy_ids.setdefault(url, [])
            merged.extend(s for s in record.source_strategy_ids if s not in merged)

        if not rows:
            logger.info("Search %s: no valid candidates in batch of %d", search_id, len(records))
            return SaveResult()

        existing = db.find_candidates_by_url(self._conn, list(rows))
        to_insert: list[dict[str, Any]] = []
        to_update: list[tuple[str, dict[str, Any]]] = []
        candidate_ids: dict[str, str] = {}
        for url, row in rows.items():
            if url in existing:
                candidate_ids[url] = existing[url]
                to_update.append((existing[url], row))
            else:
                new_id = db.new_id()
                candidate_ids[url] = new_id
                to_insert.append({"id": new_id, **row})

        if to_insert:
            try:
                db.insert_candidates(self._conn, to_insert)
            except sqlite3.Error:
                logger.error("Search %s: batch insert of %d candidates failed", search_id, len(to_insert))
                raise
            logger.info("Search %s: inserted %d candidates", search_id, len(to_insert))

        updated = 0
        update_errors = 0
        for candidate_id, row in to_update:
            try:
                db.update_candidate(self._conn, candidate_id, row)
                updated += 1
            except Exception:
                update_errors += 1
                logger.error("Update failed for candidate %s", candidate_id, exc_info=True)
        if to_update:
            logger.debug("Search %s: updated %d/%d candidates", search_id, updated, len(to_update))

        link_ids, linked = self._link(search_id, list(candidate_ids.values()), source_provider)

        attributed = self._attribute(
            (link_ids[candidate_ids[url]], strategy_id)
            for url, ids in strategy_ids.items()
            if candidate_ids[url] in link_ids
            for strategy_id in ids
        )

        result = SaveResult(
            saved=len(to_insert),
            linked=linked,
            updated=updated,
            update_errors=update_errors,
            attributed=attributed,
        )
        logger.info(
            "Search %s: saved %d, linked %d, updated %d (%d failed), attributed %d",
            search_id, result.saved, result.linked, result.updated,
            result.update_errors, result.attributed,
        )
        return result

    def _link(
        self, search_id: str, candidate_ids: list[str], source_provider: str
    ) -> tuple[dict[str, str], int]:
        """Link candidates not yet attached to the search.

        Returns ({candidate_id: search_candidate_id} for every linked pair, new link count).
        """
        try:
            links = db.find_links(self._conn, search_id, candidate_ids)
        except sqlite3.Error:
            # Without the existing pairs any insert could collide with one of them.
            logger.error("Search %s: existing link lookup failed", search_id, exc_info=True)
            return {}, 0

        new_links = [
            {
                "id": db.new_id(),
                "search_id": search_id,
                "candidate_id": cid,
                "source_provider": source_provider,
            }
            for cid in candidate_ids
            if cid not in links
        ]
        created = 0
        if new_links:
            try:
                db.insert_links(self._conn, new_links)
                created = len(new_links)
                links.update({link["candidate_id"]: link["id"] for link in new_links})
            except sqlite3.Error:
                # Candidates stay committed; linking can be retried on the next save.
                logger.error("Search %s: linking %d candidates failed", search_id, len(new_links), exc_info=True)
        return links, created

    def _attribute(self, pairs: Iterable[tuple[str, str]]) -> int:
        """Insert strategy attributions for strategy ids that exist; duplicates are ignored."""
        pairs = list(pairs)
        if not pairs:
            return 0
        try:
            valid = db.existing_strategy_ids(self._conn, (s for _, s in pairs))
            dropped = {s for _, s in pairs if s not in valid}
            if dropped:
                logger.warning("Dropping attribution to unknown strategies: %s", sorted(dropped))
            return db.insert_attributions(self._conn, ((sc, s) for sc, s in pairs if s in valid))
        except sqlite3.Error:
            logger.error("Strategy attribution failed", exc_info=True)
            return 0
