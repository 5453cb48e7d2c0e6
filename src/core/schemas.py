"""Core data models for the sourcing pipeline."""

import json
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SearchStatus(StrEnum):
    CREATED = "created"
    PROCESSING = "processing"
    PENDING = "pending"
    GENERATING = "generating"
    GENERATED = "generated"
    EXECUTING = "executing"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    ERROR = "error"


class StrategyStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class CandidateStatus(StrEnum):
    NEW = "new"
    REVIEWING = "reviewing"
    CONTACTED = "contacted"
    REJECTED = "rejected"
    HIRED = "hired"


# A single value, a list, or {"values": [...], "operator": "OR"|"AND"}.
CriteriaValue = str | list[str] | dict[str, Any] | None


def criteria_values(value: CriteriaValue) -> list[str]:
    """All non-empty strings held by a single- or multi-valued criteria field."""
    if isinstance(value, dict):
        value = value.get("values")
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, list):
        return [v.strip() for v in value if isinstance(v, str) and v.strip()]
    return []


class SearchCriteria(BaseModel):
    """Structured criteria produced by the (external) query parser.

    Opaque to the pipeline apart from the few fields providers build queries from;
    anything else the parser emits is kept as extra fields and passed through.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    job_title: CriteriaValue = None
    skills: CriteriaValue = None
    location: CriteriaValue = None
    industry: CriteriaValue = None
    years_of_experience: CriteriaValue = None

    def merged(self, params: dict[str, Any]) -> "SearchCriteria":
        """Overlay a strategy's parameters on top of these criteria."""
        overrides = {k: v for k, v in params.items() if k != "start_page"}
        return SearchCriteria.model_validate({**self.model_dump(), **overrides})

    def terms(self) -> list[str]:
        """Flatten the searchable fields into plain search terms, in priority order."""
        terms: list[str] = []
        for value in (self.job_title, self.skills, self.location, self.industry):
            terms.extend(criteria_values(value))
        return terms


class Search(BaseModel):
    """One user-initiated sourcing session."""

    id: str
    organization_id: str
    name: str = ""
    query: str
    criteria_json: str | None = None
    status: SearchStatus = SearchStatus.CREATED
    progress: int = 0
    created_at: datetime = Field(default_factory=datetime.now)

    def criteria(self) -> SearchCriteria:
        """Parse the stored criteria. Raises ValueError when missing or malformed."""
        if not self.criteria_json:
            msg = f"Search {self.id} has no criteria"
            raise ValueError(msg)
        try:
            data = json.loads(self.criteria_json)
        except json.JSONDecodeError as e:
            msg = f"Search {self.id} criteria is not valid JSON: {e}"
            raise ValueError(msg) from e
        if not isinstance(data, dict):
            msg = f"Search {self.id} criteria must be an object"
            raise ValueError(msg)
        return SearchCriteria.model_validate(data)


class SourcingStrategy(BaseModel):
    """One parameterized attempt to source candidates for a search."""

    id: str
    search_id: str
    name: str
    description: str = ""
    params: dict[str, Any] = Field(default_factory=dict)
    status: StrategyStatus = StrategyStatus.PENDING
    candidates_found: int = 0
    error: str | None = None

    @property
    def start_page(self) -> int:
        page = self.params.get("start_page", 1)
        return page if isinstance(page, int) and page >= 1 else 1


class RawCandidate(BaseModel):
    """A person record as returned by a directory or profile provider.

    Provider payloads are inconsistent, so everything is optional and unknown
    keys are kept.
    """

    model_config = ConfigDict(extra="allow")

    linkedin_url: str | None = None
    public_identifier: str | None = None
    provider_id: str | None = None
    full_name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    headline: str | None = None
    position: str | None = None
    summary: str | None = None
    location: dict[str, Any] | str | None = None
    location_text: str | None = None
    email: str | None = None
    skills: list[Any] | None = None
    experiences: list[Any] | None = None
    educations: list[Any] | None = None
    raw_data: dict[str, Any] = Field(default_factory=dict)
    source_strategy_ids: list[str] = Field(default_factory=list)


class SaveResult(BaseModel):
    """Outcome of persisting one batch of discovered candidates."""

    saved: int = 0
    linked: int = 0
    updated: int = 0
    update_errors: int = 0
    attributed: int = 0


class ScoreResult(BaseModel):
    """What a scoring capability returns for one candidate."""

    match_score: float = Field(ge=0.0, le=100.0)
    notes: dict[str, Any] = Field(default_factory=dict)
    version: str | None = None


class ScoringFailure(StrEnum):
    NOT_FOUND = "not_found"
    INCOMPLETE_CONTEXT = "incomplete_context"
    UNPARSEABLE_CRITERIA = "unparseable_criteria"
    SCORING_FAILED = "scoring_failed"


class ScoreOutcome(BaseModel):
    """Result of scoring a single SearchCandidate."""

    search_candidate_id: str
    score: float | None = None
    failure: ScoringFailure | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.failure is None and self.score is not None


class BatchScoreResult(BaseModel):
    scored: int = 0
    errors: int = 0


class ScoringProgress(BaseModel):
    """Derived scoring progress for a search. Never stored as a counter."""

    total: int = 0
    scored: int = 0
    unscored: int = 0
    errors: int = 0
    excellent: int = 0
    good: int = 0
    fair: int = 0
    is_scoring_complete: bool = False
    search_status: str = "unknown"
    search_progress: int = 0


class SearchCandidateView(BaseModel):
    """A linked candidate as surfaced by listing reads."""

    id: str
    search_id: str
    candidate_id: str
    match_score: float | None = None
    status: CandidateStatus = CandidateStatus.NEW
    notes: str | None = None
    source_provider: str | None = None
    created_at: str
    profile_url: str
    full_name: str | None = None
    headline: str | None = None
    photo_url: str | None = None
    location_text: str | None = None


class CandidatePage(BaseModel):
    items: list[SearchCandidateView] = Field(default_factory=list)
    limit: int
    has_more: bool = False
    next_cursor: str | None = None
    total: int | None = None
    page: int | None = None
    total_pages: int | None = None


class ContactType(StrEnum):
    EMAIL = "email"
    PHONE = "phone"
    BOTH = "both"

    @property
    def wants_email(self) -> bool:
        return self in (ContactType.EMAIL, ContactType.BOTH)

    @property
    def wants_phone(self) -> bool:
        return self in (ContactType.PHONE, ContactType.BOTH)


class EnrichmentState(StrEnum):
    INITIATED = "initiated"
    POLLING = "polling"
    FOUND = "found"
    PARTIAL = "partial"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    ERROR = "error"


class EnrichmentJob(BaseModel):
    """Handle returned by an enrichment provider's initiate call."""

    model_config = ConfigDict(frozen=True)

    enrichment_id: str
    callback_url: str


class EnrichmentResult(BaseModel):
    """Terminal outcome of one initiate-then-poll cycle."""

    profile_url: str
    contact_type: ContactType
    state: EnrichmentState
    emails: list[str] = Field(default_factory=list)
    phones: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
    job_status: str | None = None
    credits_used: int = 0
    attempts: int = 0
    error: str | None = None

    @property
    def success(self) -> bool:
        """Partial reveals count as success; ``missing`` says what was not found."""
        return self.state in (EnrichmentState.FOUND, EnrichmentState.PARTIAL)


class TriggerResult(BaseModel):
    success: bool
    run_id: str | None = None
    error: str | None = None
