from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


Source = Literal["MAIL", "FILES", "ALL"]
Mode = Literal["DIRECT", "BULK_EXPORT"]


def normalize_keywords(keywords: list[str]) -> list[str]:
    """Strip blanks and drop repeats, keeping first-seen order."""
    seen: list[str] = []
    for keyword in keywords:
        cleaned = keyword.strip()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


class SearchCreate(BaseModel):
    description: str | None = None
    keywords: list[str] = []
    start_date: datetime | None = None
    end_date: datetime | None = None
    source: Source = "ALL"
    mode: Mode = "DIRECT"
    exclude_drafts: bool = True
    include_all_matches: bool = False
    attachments_only: bool = False
    max_results: int | None = Field(None, ge=1, le=500)

    @field_validator("keywords")
    @classmethod
    def _clean_keywords(cls, value: list[str]) -> list[str]:
        return normalize_keywords(value)

    @field_validator("start_date", "end_date")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        # naive datetimes are read as UTC
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _check_range(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class SearchRequest(BaseModel):
    """Canonical, immutable search parameters stored with a job."""

    model_config = ConfigDict(frozen=True)

    keywords: tuple[str, ...]
    start_date: datetime | None = None
    end_date: datetime | None = None
    source: Source = "ALL"
    mode: Mode = "DIRECT"
    exclude_drafts: bool = True
    include_all: bool = False
    attachments_only: bool = False
    max_results: int = Field(100, ge=1)

    @property
    def wants_mail(self) -> bool:
        return self.source in ("MAIL", "ALL")

    @property
    def wants_files(self) -> bool:
        return self.source in ("FILES", "ALL")


class ContractCandidate(BaseModel):
    id: str
    name: str
    source: Literal["mail", "file"]
    locator: str | None = None
    discovered_at: str | None = None
    amount: float | None = None
    renewal_date: str | None = None
    parties: list[str] = []
    analyzed: bool = False
    sender: str | None = None
    mime_type: str | None = None
    attachment_count: int = 0
    description: str | None = None


class SearchCreateResponse(BaseModel):
    id: str
    status: str
    description: str
    mode: Mode
    matter_id: str | None = None


class SearchStatusResponse(BaseModel):
    id: str
    status: str
    description: str
    mode: Mode
    source: Source
    result_count: int
    error_message: str | None
    poll_failures: int = 0
    warning: str | None = None
    created_at: str
    updated_at: str


class SearchListResponse(BaseModel):
    searches: list[SearchStatusResponse]
    total: int


class ProcessResponse(BaseModel):
    search_id: str
    contracts: list[ContractCandidate]
    search_terms: list[str]
    note: str
