"""Search job orchestration.

A job is created in CREATED, moved to PROCESSING before anything external is
called, and finishes in COMPLETED or FAILED. Direct searches (Gmail API, Drive
API) finish in a background task that talks back only through the job store.
Vault searches finish when a status poll sees every export done.

Candidates from different sources are concatenated (mail first); the same
document found in mail and in Drive appears twice.
"""
import logging
from functools import partial

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from contract_finder.config import Settings
from contract_finder.errors import CredentialError, JobError, JobStateError, SourceSearchError, Unresolvable
from contract_finder.models.search_job import SearchJob
from contract_finder.models.user import User
from contract_finder.schemas.search import ContractCandidate, SearchCreate, SearchRequest
from contract_finder.services import job_store
from contract_finder.services.credential_service import CredentialResolver
from contract_finder.services.drive_service import DriveSearcher
from contract_finder.services.gmail_service import GmailSearcher
from contract_finder.services.google_api import GoogleApiClient
from contract_finder.services.sources import SearchOutcome, split_request
from contract_finder.services.user_service import get_credential, save_credential
from contract_finder.services.vault_service import CORPUS_DRIVE, CORPUS_MAIL, ExportState, VaultSearcher, aggregate_export_states

logger = logging.getLogger("app.search")


def build_request(body: SearchCreate, default_max_results: int) -> SearchRequest:
    return SearchRequest(
        keywords=tuple(body.keywords),
        start_date=body.start_date,
        end_date=body.end_date,
        source=body.source,
        mode=body.mode,
        exclude_drafts=body.exclude_drafts,
        include_all=body.include_all_matches,
        attachments_only=body.attachments_only,
        max_results=body.max_results or default_max_results,
    )


def result_note(count: int) -> str:
    if count == 0:
        return "No contracts were found in the search results."
    return f"Found {count} contracts from search results."


class SearchService:
    def __init__(
        self,
        settings: Settings,
        resolver: CredentialResolver,
        http: httpx.AsyncClient,
        gmail: GmailSearcher,
        drive: DriveSearcher,
        vault: VaultSearcher,
    ):
        self.settings = settings
        self.resolver = resolver
        self.http = http
        self.gmail = gmail
        self.drive = drive
        self.vault = vault

    @classmethod
    def from_settings(cls, settings: Settings, http: httpx.AsyncClient, resolver: CredentialResolver, inferrer) -> "SearchService":
        gmail = GmailSearcher(
            inferrer,
            batch_size=settings.mail_batch_size,
            batch_pause=settings.mail_batch_pause_seconds,
        )
        return cls(settings, resolver, http, gmail, DriveSearcher(), VaultSearcher())

    async def connect(self, db: Session, user: User, timeout: float) -> GoogleApiClient:
        raw = get_credential(db, user.id)
        if raw is None:
            raise Unresolvable("Google credentials not found")
        handle = await self.resolver.resolve(raw, user.workspace_email)
        if handle.refreshed:
            save_credential(db, user.id, handle.refreshed)
        return GoogleApiClient(self.http, handle, source="google", timeout=timeout)

    # -- job creation ---------------------------------------------------

    async def start_search(self, db: Session, user: User, body: SearchCreate):
        """Create a job and dispatch it.

        Returns ``(job, background)``; ``background`` is a coroutine function
        the caller must schedule for direct searches, ``None`` otherwise.
        Credential errors are raised before any job exists.
        """
        request = build_request(body, self.settings.default_max_results)
        api = await self.connect(db, user, self.settings.search_timeout_seconds)

        description = body.description or "Contract Search"
        job = job_store.create_job(db, user.id, description, request)
        job = job_store.update_job(db, job.id, user.id, status=job_store.PROCESSING)
        logger.info("Search %s started (%s, %s)", job.id, request.mode, request.source)

        if request.mode == "BULK_EXPORT":
            job = await self._start_exports(db, user, job, api, request)
            return job, None

        session_factory = sessionmaker(bind=db.get_bind(), autoflush=False, autocommit=False)
        return job, partial(self.run_direct_search, session_factory, job.id, user.id, api, request)

    async def _start_exports(self, db: Session, user: User, job: SearchJob, api: GoogleApiClient, request: SearchRequest) -> SearchJob:
        vault_api = api.for_source("vault")
        date_range, options = split_request(request)
        try:
            matter_id = await self.vault.create_matter(vault_api, job.description)
            mail_export_id = file_export_id = None
            if request.wants_mail:
                mail_export_id = await self.vault.create_export(
                    vault_api, matter_id, CORPUS_MAIL, request.keywords, date_range, options,
                )
            if request.wants_files:
                file_export_id = await self.vault.create_export(
                    vault_api, matter_id, CORPUS_DRIVE, request.keywords, date_range, options,
                )
        except SourceSearchError as exc:
            logger.error("Search %s: could not start Vault exports: %s", job.id, exc)
            job_store.update_job(db, job.id, user.id, status=job_store.FAILED, error_message=str(exc))
            raise

        return job_store.update_job(
            db, job.id, user.id,
            matter_id=matter_id,
            mail_export_id=mail_export_id,
            file_export_id=file_export_id,
        )

    # -- direct searches ------------------------------------------------

    async def _run_sources(self, api: GoogleApiClient, request: SearchRequest) -> tuple[list[SearchOutcome], list[Exception]]:
        date_range, options = split_request(request)
        plan = []
        if request.wants_mail:
            plan.append((self.gmail, "gmail"))
        if request.wants_files:
            plan.append((self.drive, "drive"))

        outcomes: list[SearchOutcome] = []
        errors: list[Exception] = []
        for searcher, source in plan:
            try:
                outcomes.append(await searcher.search(api.for_source(source), request.keywords, date_range, options))
            except SourceSearchError as exc:
                logger.error("%s", exc)
                errors.append(exc)
            except Exception as exc:
                logger.exception("Unexpected %s search error", source)
                errors.append(JobError(f"{source} search failed: {exc}"))
        return outcomes, errors

    async def run_direct_search(self, session_factory, job_id: str, owner_id: str, api: GoogleApiClient, request: SearchRequest):
        outcomes, errors = await self._run_sources(api, request)

        with session_factory() as db:
            try:
                self._finish_direct(db, job_id, owner_id, outcomes, errors)
            except (JobStateError, LookupError) as exc:
                logger.error("Search %s could not be finalised: %s", job_id, exc)
            except SQLAlchemyError as exc:
                logger.exception("Storing the result of search %s failed", job_id)
                db.rollback()
                try:
                    job_store.update_job(
                        db, job_id, owner_id,
                        status=job_store.FAILED,
                        error_message=f"Search results could not be stored: {exc.__class__.__name__}",
                    )
                except (SQLAlchemyError, JobStateError, LookupError):
                    db.rollback()
                    logger.exception("Search %s left in PROCESSING", job_id)

    def _finish_direct(self, db: Session, job_id: str, owner_id: str, outcomes: list[SearchOutcome], errors: list[Exception]):
        if not outcomes:
            message = str(errors[0]) if errors else "No document source was searched"
            job_store.update_job(db, job_id, owner_id, status=job_store.FAILED, error_message=message)
            logger.info("Search %s failed: %s", job_id, message)
            return
        candidates: list[ContractCandidate] = [c for o in outcomes for c in o.candidates]
        job_store.update_job(
            db, job_id, owner_id,
            status=job_store.COMPLETED,
            results=job_store.dump_candidates(candidates),
            result_count=len(candidates),
            processed=True,
        )
        logger.info("Search %s completed with %d candidates", job_id, len(candidates))

    # -- status polling -------------------------------------------------

    def _export_ids(self, job: SearchJob) -> list[str]:
        return [eid for eid in (job.mail_export_id, job.file_export_id) if eid]

    async def refresh_status(self, db: Session, user: User, job: SearchJob) -> SearchJob:
        """Check Vault exports of a PROCESSING bulk job and advance its status."""
        if job.mode != "BULK_EXPORT" or job.status != job_store.PROCESSING or not job.matter_id:
            return job

        try:
            api = (await self.connect(db, user, self.settings.poll_timeout_seconds)).for_source("vault")
            statuses = [
                await self.vault.check_export_status(api, job.matter_id, export_id)
                for export_id in self._export_ids(job)
            ]
        except (SourceSearchError, CredentialError) as exc:
            logger.warning("Search %s: export status check failed: %s", job.id, exc)
            return self._record_poll_failure(db, user, job)

        outcome = aggregate_export_states(s.state for s in statuses)
        try:
            if outcome == job_store.FAILED:
                failed = [s for s in statuses if s.state == ExportState.FAILED]
                names = ", ".join(f"{(s.corpus or 'vault').lower()} export {s.export_id}" for s in failed)
                return job_store.update_job(
                    db, job.id, user.id,
                    status=job_store.FAILED,
                    error_message=f"One or more exports failed: {names}",
                )
            if outcome == job_store.COMPLETED:
                candidates = [c for s in statuses for c in self.vault.materialize_results(s)]
                return job_store.update_job(
                    db, job.id, user.id,
                    status=job_store.COMPLETED,
                    results=job_store.dump_candidates(candidates),
                    result_count=len(candidates),
                    processed=True,
                    poll_failures=0,
                )
            if job.poll_failures:
                return job_store.update_job(db, job.id, user.id, poll_failures=0)
        except JobStateError:
            logger.info("Search %s was finalised by a concurrent poll", job.id)
            return job_store.get_job(db, job.id, user.id)
        return job

    def _record_poll_failure(self, db: Session, user: User, job: SearchJob) -> SearchJob:
        try:
            return job_store.update_job(db, job.id, user.id, poll_failures=job.poll_failures + 1)
        except JobStateError:
            return job_store.get_job(db, job.id, user.id)

    # -- results ----------------------------------------------------------

    async def process_results(self, db: Session, user: User, job: SearchJob) -> dict:
        if job.status != job_store.COMPLETED:
            raise JobError("Search not completed yet")

        if not job.processed:
            # Bulk jobs completed before results were cached on completion.
            api = (await self.connect(db, user, self.settings.search_timeout_seconds)).for_source("vault")
            statuses = [
                await self.vault.check_export_status(api, job.matter_id, export_id)
                for export_id in self._export_ids(job)
            ]
            candidates = [c for s in statuses for c in self.vault.materialize_results(s)]
            job = job_store.cache_results(db, job.id, user.id, candidates)
        else:
            logger.info("Search %s already processed, returning cached results", job.id)

        contracts = job_store.load_candidates(job.results)
        return {
            "search_id": job.id,
            "contracts": contracts,
            "search_terms": list(job_store.load_request(job).keywords),
            "note": result_note(len(contracts)),
        }
