"""Configuration models and YAML loader for the sourcing pipeline."""

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/sourcing.db"


class SourcesConfig(BaseModel):
    """Which candidate-directory providers to fan out to."""

    providers: list[str] = Field(default_factory=lambda: ["forager"])
    timeout_s: float = Field(default=30.0, gt=0)
    results_per_page: int = Field(default=25, ge=1, le=100)
    profile_fetcher: str | None = None

    @field_validator("providers")
    @classmethod
    def at_least_one_provider(cls, v: list[str]) -> list[str]:
        cleaned = [p.strip().lower() for p in v if p.strip()]
        if not cleaned:
            msg = "at least one source provider must be configured"
            raise ValueError(msg)
        return cleaned


class ScoringConfig(BaseModel):
    """Which scoring capability to call and how."""

    backend: Literal["http", "llm"] = "http"
    api_base_url: str = "http://localhost:8000"
    llm_provider: str = "anthropic"
    llm_model: str | None = None
    timeout_s: float = Field(default=60.0, gt=0)


class EnrichmentConfig(BaseModel):
    """Contact enrichment polling budget."""

    base_url: str = "https://api.surfe.com"
    warmup_s: float = Field(default=1.5, ge=0.0)
    poll_interval_s: float = Field(default=1.0, ge=0.0)
    max_attempts: int = Field(default=60, ge=1)
    # Per request (initiate or one poll).
    timeout_s: float = Field(default=5.0, gt=0)
    # Wall-clock cap on the whole reveal.
    deadline_s: float = Field(default=90.0, gt=0)


class ContinuationConfig(BaseModel):
    """Knobs for extending a search with its best strategies."""

    target_candidates: int = Field(default=150, ge=1)
    candidates_per_run: int = Field(default=25, ge=1)
    max_strategies: int = Field(default=6, ge=1)
    primary_threshold: float = Field(default=50.0, ge=0.0, le=100.0)
    relaxed_threshold: float = Field(default=30.0, ge=0.0, le=100.0)

    @property
    def needed_runs(self) -> int:
        return -(-self.target_candidates // self.candidates_per_run)


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    sources: SourcesConfig = Field(default_factory=SourcesConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    continuation: ContinuationConfig = Field(default_factory=ContinuationConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
