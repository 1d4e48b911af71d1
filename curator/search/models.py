"""Shared data models for the PMC ingestion pipeline."""

from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNTITLED = "Untitled Publication"
UNKNOWN_AUTHORS = "Unknown"
UNKNOWN_JOURNAL = "Unknown Journal"

PublicationStatus = Literal["pending", "approved", "rejected"]


class PublicationRecord(BaseModel):
    """A single normalized publication parsed from a PMC article."""

    model_config = ConfigDict(frozen=True)

    external_id: str
    title: str = UNTITLED
    authors: str = UNKNOWN_AUTHORS
    journal: str = UNKNOWN_JOURNAL
    publication_date: date
    date_is_approximate: bool = False
    abstract: Optional[str] = None
    doi: Optional[str] = None
    accession_number: Optional[str] = None
    pmid: Optional[str] = None
    categories: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)

    @field_validator("categories", "keywords")
    @classmethod
    def unique_in_order(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    @property
    def is_complete(self) -> bool:
        return self.title != UNTITLED and self.authors != UNKNOWN_AUTHORS

    @property
    def status(self) -> PublicationStatus:
        """Incomplete records wait for manual review."""
        return "approved" if self.is_complete else "pending"

    @property
    def source_url(self) -> Optional[str]:
        if self.accession_number:
            return f"https://pmc.ncbi.nlm.nih.gov/articles/PMC{self.accession_number}/"
        if self.doi:
            return f"https://doi.org/{self.doi}"
        return None


class SearchResult(BaseModel):
    """IDs returned by one esearch call plus the total hit count."""

    ids: list[str] = Field(default_factory=list)
    count: int = 0
