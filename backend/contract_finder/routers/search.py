"""Search routes.

Clients poll ``GET /search/{id}`` until the status is final;
:class:`contract_finder.poller.SearchPoller` does this with the same
consecutive-failure bound (``poll_max_failures``) the status warning uses.
"""
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session

from contract_finder.config import settings
from contract_finder.database import get_db
from contract_finder.dependencies import credential_http_error, get_search_service, require_user, source_http_error
from contract_finder.errors import CredentialError, JobError, SourceSearchError
from contract_finder.models.search_job import SearchJob
from contract_finder.models.user import User
from contract_finder.schemas.search import (
    ProcessResponse,
    SearchCreate,
    SearchCreateResponse,
    SearchListResponse,
    SearchStatusResponse,
)
from contract_finder.services import job_store
from contract_finder.services.calendar_service import generate_renewal_ics
from contract_finder.services.search_service import SearchService

router = APIRouter(tags=["search"], dependencies=[Depends(require_user)])


def _job_to_response(job: SearchJob) -> SearchStatusResponse:
    warning = None
    if job.status == job_store.PROCESSING and job.poll_failures >= settings.poll_max_failures:
        warning = (
            f"Export status could not be checked {job.poll_failures} times in a row. "
            "The search is still running; check again later."
        )
    return SearchStatusResponse(
        id=job.id,
        status=job.status,
        description=job.description,
        mode=job.mode,
        source=job.source,
        result_count=job.result_count or 0,
        error_message=job.error_message,
        poll_failures=job.poll_failures or 0,
        warning=warning,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


def _owned_job(db: Session, job_id: str, user: User) -> SearchJob:
    job = job_store.get_job(db, job_id, user.id)
    if not job:
        raise HTTPException(status_code=404, detail="Search not found")
    return job


@router.post("/search", response_model=SearchCreateResponse, status_code=202)
async def create_search(
    body: SearchCreate,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
    service: SearchService = Depends(get_search_service),
):
    if not body.keywords:
        raise HTTPException(status_code=400, detail="At least one keyword is required")

    try:
        job, background = await service.start_search(db, user, body)
    except CredentialError as exc:
        raise credential_http_error(exc) from exc
    except SourceSearchError as exc:
        raise source_http_error(exc) from exc

    if background is not None:
        background_tasks.add_task(background)

    return SearchCreateResponse(
        id=job.id,
        status=job.status,
        description=job.description,
        mode=job.mode,
        matter_id=job.matter_id,
    )


@router.get("/search/{search_id}", response_model=SearchStatusResponse)
async def get_search(
    search_id: str,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
    service: SearchService = Depends(get_search_service),
):
    job = _owned_job(db, search_id, user)
    job = await service.refresh_status(db, user, job)
    return _job_to_response(job)


@router.post("/process/{search_id}", response_model=ProcessResponse)
async def process_search(
    search_id: str,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
    service: SearchService = Depends(get_search_service),
):
    job = _owned_job(db, search_id, user)
    try:
        return await service.process_results(db, user, job)
    except JobError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except CredentialError as exc:
        raise credential_http_error(exc) from exc
    except SourceSearchError as exc:
        raise source_http_error(exc) from exc


@router.get("/searches", response_model=SearchListResponse)
async def list_searches(user: User = Depends(require_user), db: Session = Depends(get_db)):
    jobs = job_store.list_jobs(db, user.id)
    return SearchListResponse(searches=[_job_to_response(j) for j in jobs], total=len(jobs))


@router.get("/search/{search_id}/reminders.ics")
async def search_reminders(search_id: str, user: User = Depends(require_user), db: Session = Depends(get_db)):
    job = _owned_job(db, search_id, user)
    if job.status != job_store.COMPLETED:
        raise HTTPException(status_code=400, detail="Search not completed yet")

    ics_data, count = generate_renewal_ics(job_store.load_candidates(job.results))
    if count == 0:
        raise HTTPException(status_code=404, detail="No renewal dates found in this search")
    return Response(
        content=ics_data,
        media_type="text/calendar",
        headers={"Content-Disposition": f'attachment; filename="renewals_{search_id[:8]}.ics"'},
    )
