"""Curator config: YAML loader and Pydantic models."""

import os
from datetime import date
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


# ── Source ───────────────────────────────────────────────────────────


class RetryConfig(BaseModel):
    """Backoff policy for calls against the E-utilities API."""

    max_attempts: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=1.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=10.0, ge=0.0)
    # ceiling for server-provided Retry-After waits
    max_retry_after: float = Field(default=60.0, ge=0.0)


class SourceConfig(BaseModel):
    """Connection settings for PubMed Central."""

    base_url: str = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"
    database: str = "pmc"
    email: Optional[str] = None
    api_key: Optional[str] = None
    tool: str = "pmc-curator"
    timeout: float = Field(default=30.0, gt=0.0)
    fetch_batch_size: int = Field(default=200, ge=1, le=200)
    batch_delay: float = Field(default=0.35, ge=0.0)
    retry: RetryConfig = Field(default_factory=RetryConfig)


# ── Search ───────────────────────────────────────────────────────────


class SearchConfig(BaseModel):
    """Terms and windowing used by full and incremental syncs."""

    terms: list[str]
    floor_year: int = 1990
    window_years: int = Field(default=5, ge=1)
    max_per_term: int = Field(default=500, ge=1)
    keyword_terms: list[str] = Field(default_factory=list)

    @field_validator("terms")
    @classmethod
    def at_least_one_term(cls, v: list[str]) -> list[str]:
        terms = [t.strip() for t in v if t and t.strip()]
        if not terms:
            raise ValueError("At least one search term is required")
        return terms

    @field_validator("floor_year")
    @classmethod
    def floor_not_in_future(cls, v: int) -> int:
        if v > date.today().year:
            raise ValueError(f"Floor year ({v}) must not be in the future")
        return v


class ReconcileConfig(BaseModel):
    """Topic and paging for the store-vs-source comparison."""

    topic: str
    page_size: int = Field(default=500, ge=1, le=10000)


# ── Categorization ───────────────────────────────────────────────────


class CategorizationConfig(BaseModel):
    """Batch categorization and classifier settings."""

    use_ml: bool = False
    model: str = "qwen3:8b"
    batch_size: int = Field(default=50, ge=1)
    batch_delay: float = Field(default=0.2, ge=0.0)
    auto_approve_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    min_confidence: float = Field(default=0.55, ge=0.0, le=1.0)
    ml_min_confidence: float = Field(default=0.6, ge=0.0, le=1.0)


class RunStateConfig(BaseModel):
    cooldown_seconds: float = Field(default=60.0, ge=0.0)


# ── Curator Config (top-level) ───────────────────────────────────────


class CuratorConfig(BaseModel):
    """Top-level model for a curation site's ingestion settings."""

    name: str
    database_path: str = "data/publications.db"
    source: SourceConfig = Field(default_factory=SourceConfig)
    search: SearchConfig
    reconcile: ReconcileConfig
    categorization: CategorizationConfig = Field(default_factory=CategorizationConfig)
    run_state: RunStateConfig = Field(default_factory=RunStateConfig)

    @model_validator(mode="after")
    def apply_env_overrides(self) -> "CuratorConfig":
        api_key = os.environ.get("NCBI_API_KEY")
        if api_key:
            self.source.api_key = api_key
        email = os.environ.get("NCBI_EMAIL")
        if email:
            self.source.email = email
        return self


# ── Helpers ──────────────────────────────────────────────────────────


def load_config(path: str | Path) -> CuratorConfig:
    """Load a YAML curator config from disk and return a validated model."""
    path = Path(path)
    with open(path) as f:
        raw = yaml.safe_load(f)
    return CuratorConfig.model_validate(raw)
