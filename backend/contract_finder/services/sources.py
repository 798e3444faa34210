"""Value types shared by the document source searchers."""
from dataclasses import dataclass, field
from datetime import datetime

from contract_finder.schemas.search import ContractCandidate, SearchRequest


@dataclass(frozen=True)
class DateRange:
    start: datetime | None = None
    end: datetime | None = None


@dataclass(frozen=True)
class SearchOptions:
    exclude_drafts: bool = True
    include_all: bool = False
    attachments_only: bool = False
    max_results: int = 100


@dataclass
class SearchOutcome:
    source: str
    status: str = "PROCESSING"
    total: int = 0
    processed: int = 0
    candidates: list[ContractCandidate] = field(default_factory=list)


def split_request(request: SearchRequest) -> tuple[DateRange, SearchOptions]:
    return (
        DateRange(start=request.start_date, end=request.end_date),
        SearchOptions(
            exclude_drafts=request.exclude_drafts,
            include_all=request.include_all,
            attachments_only=request.attachments_only,
            max_results=request.max_results,
        ),
    )
