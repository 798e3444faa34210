"""Persistence for search jobs.

Every accessor takes the owner id and filters on it, so a job is invisible to
anyone else. Status updates are a single compare-and-set UPDATE on the status
the caller last saw: a terminal job can never be moved again, and readers see
either the old row or the new one.
"""
import json
import uuid

from sqlalchemy.orm import Session

from contract_finder.errors import JobStateError
from contract_finder.models.search_job import SearchJob
from contract_finder.schemas.search import ContractCandidate, SearchRequest
from contract_finder.utils.timestamps import utc_now

CREATED = "CREATED"
PROCESSING = "PROCESSING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"
TERMINAL_STATUSES = {COMPLETED, FAILED}

ALLOWED_TRANSITIONS = {
    CREATED: {PROCESSING, FAILED},
    PROCESSING: {COMPLETED, FAILED},
    COMPLETED: set(),
    FAILED: set(),
}

_MUTABLE_FIELDS = {
    "error_message", "results", "result_count", "processed",
    "matter_id", "mail_export_id", "file_export_id", "poll_failures",
}


def dump_candidates(candidates: list[ContractCandidate]) -> str:
    return json.dumps([c.model_dump() for c in candidates])


def load_candidates(raw: str | None) -> list[dict]:
    return json.loads(raw) if raw else []


def create_job(db: Session, owner_id: str, description: str, request: SearchRequest) -> SearchJob:
    now = utc_now()
    job = SearchJob(
        id=str(uuid.uuid4()),
        user_id=owner_id,
        description=description,
        request_json=request.model_dump_json(),
        mode=request.mode,
        source=request.source,
        status=CREATED,
        result_count=0,
        processed=False,
        poll_failures=0,
        created_at=now,
        updated_at=now,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def get_job(db: Session, job_id: str, owner_id: str) -> SearchJob | None:
    return (
        db.query(SearchJob)
        .populate_existing()
        .filter(SearchJob.id == job_id, SearchJob.user_id == owner_id)
        .first()
    )


def list_jobs(db: Session, owner_id: str) -> list[SearchJob]:
    return (
        db.query(SearchJob)
        .filter(SearchJob.user_id == owner_id)
        .order_by(SearchJob.created_at.desc())
        .all()
    )


def load_request(job: SearchJob) -> SearchRequest:
    return SearchRequest.model_validate_json(job.request_json)


def update_job(db: Session, job_id: str, owner_id: str, status: str | None = None, **fields) -> SearchJob:
    unknown = set(fields) - _MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update search job fields: {sorted(unknown)}")

    job = get_job(db, job_id, owner_id)
    if job is None:
        raise LookupError(f"Search {job_id} not found")

    current = job.status
    if current in TERMINAL_STATUSES:
        raise JobStateError(f"Search {job_id} is already {current}")
    if status is not None and status != current and status not in ALLOWED_TRANSITIONS[current]:
        raise JobStateError(f"Illegal transition {current} -> {status}")

    values = dict(fields)
    if status == FAILED:
        if not values.get("error_message"):
            raise ValueError("A failed search needs an error message")
        # All-or-nothing: partial results never accompany a failure.
        values.update(results=None, result_count=0, processed=False)
    elif status == COMPLETED:
        if "results" not in values:
            raise ValueError("A completed search needs a result payload")
        values["error_message"] = None
    if status is not None:
        values["status"] = status
    values["updated_at"] = utc_now()

    updated = (
        db.query(SearchJob)
        .filter(SearchJob.id == job_id, SearchJob.user_id == owner_id, SearchJob.status == current)
        .update(values, synchronize_session=False)
    )
    db.commit()
    if updated == 0:
        raise JobStateError(f"Search {job_id} changed state concurrently")
    return get_job(db, job_id, owner_id)


def cache_results(db: Session, job_id: str, owner_id: str, candidates: list[ContractCandidate]) -> SearchJob:
    """Store materialized results on a completed job that has none yet.

    Only the first writer wins; later callers get the already cached payload.
    """
    (
        db.query(SearchJob)
        .filter(
            SearchJob.id == job_id,
            SearchJob.user_id == owner_id,
            SearchJob.status == COMPLETED,
            SearchJob.processed.is_(False),
        )
        .update(
            {
                "results": dump_candidates(candidates),
                "result_count": len(candidates),
                "processed": True,
                "updated_at": utc_now(),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return get_job(db, job_id, owner_id)
