"""Google Vault bulk exports.

Vault runs exports asynchronously on its side. A search creates one matter and
one export per corpus, then each status poll checks the exports again; this
module never schedules its own polling.
"""
import logging
import mimetypes
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from contract_finder.errors import SourceErrorKind, SourceSearchError
from contract_finder.schemas.search import ContractCandidate
from contract_finder.services.google_api import VAULT_BASE, GoogleApiClient
from contract_finder.services.sources import DateRange, SearchOptions

logger = logging.getLogger("app.vault")

CORPUS_MAIL = "MAIL"
CORPUS_DRIVE = "DRIVE"


class ExportState(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class ExportArtifact:
    bucket: str
    object_name: str
    size: int | None = None


@dataclass(frozen=True)
class ExportStatus:
    export_id: str
    corpus: str
    state: ExportState
    name: str | None = None
    created_at: str | None = None
    artifacts: tuple[ExportArtifact, ...] = field(default_factory=tuple)


def map_export_state(raw: str | None) -> ExportState:
    if raw == "COMPLETED":
        return ExportState.COMPLETED
    if raw == "FAILED":
        return ExportState.FAILED
    return ExportState.PENDING  # IN_PROGRESS, EXPORT_STATE_UNSPECIFIED


def aggregate_export_states(states) -> str:
    """Combine per-export states into a job status.

    FAILED wins over everything, COMPLETED needs every export completed.
    """
    states = list(states)
    if any(s == ExportState.FAILED for s in states):
        return "FAILED"
    if states and all(s == ExportState.COMPLETED for s in states):
        return "COMPLETED"
    return "PROCESSING"


def _timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _guess_mime(object_name: str) -> str | None:
    if object_name.lower().endswith(".mbox"):
        return "application/mbox"
    return mimetypes.guess_type(object_name)[0]


class VaultSearcher:
    async def create_matter(self, api: GoogleApiClient, description: str) -> str:
        now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        matter = await api.post(f"{VAULT_BASE}/matters", json={
            "name": f"Contract Search {now}",
            "description": description or "Automated contract search",
            "state": "OPEN",
        })
        return matter["matterId"]

    def build_export_request(self, account_email: str, corpus: str, keywords, date_range: DateRange, options: SearchOptions) -> dict:
        query = {
            "corpus": corpus,
            "dataScope": "ALL_DATA",
            "searchMethod": "ACCOUNT",
            "accountInfo": {"emails": [account_email]},
            "terms": " OR ".join(keywords),
            "timeZone": "UTC",
        }
        if date_range.start:
            query["startTime"] = _timestamp(date_range.start)
        if date_range.end:
            query["endTime"] = _timestamp(date_range.end)

        if corpus == CORPUS_MAIL:
            query["mailOptions"] = {"excludeDrafts": options.exclude_drafts}
            export_options = {"mailOptions": {"exportFormat": "MBOX", "showConfidentialModeContent": True}}
        else:
            query["driveOptions"] = {"includeSharedDrives": True}
            export_options = {"driveOptions": {"includeAccessInfo": True}}

        label = "Gmail" if corpus == CORPUS_MAIL else "Drive"
        return {
            "name": f"{label} Contract Export {datetime.now(timezone.utc):%Y-%m-%dT%H:%M:%SZ}",
            "query": query,
            "exportOptions": export_options,
        }

    async def create_export(self, api: GoogleApiClient, matter_id: str, corpus: str, keywords, date_range: DateRange, options: SearchOptions) -> str:
        if not api.email:
            raise SourceSearchError(
                SourceErrorKind.MALFORMED_QUERY,
                "No Workspace account email specified for the export",
                source="vault",
            )
        body = self.build_export_request(api.email, corpus, keywords, date_range, options)
        export = await api.post(f"{VAULT_BASE}/matters/{matter_id}/exports", json=body)
        logger.info("Created %s export %s in matter %s", corpus, export["id"], matter_id)
        return export["id"]

    async def check_export_status(self, api: GoogleApiClient, matter_id: str, export_id: str) -> ExportStatus:
        data = await api.get(f"{VAULT_BASE}/matters/{matter_id}/exports/{export_id}")
        sink = data.get("cloudStorageSink") or {}
        artifacts = tuple(
            ExportArtifact(
                bucket=f.get("bucketName", ""),
                object_name=f.get("objectName", ""),
                size=int(f["size"]) if f.get("size") else None,
            )
            for f in sink.get("files", [])
            if f.get("objectName")
        )
        return ExportStatus(
            export_id=export_id,
            corpus=(data.get("query") or {}).get("corpus", ""),
            state=map_export_state(data.get("status")),
            name=data.get("name"),
            created_at=data.get("createTime"),
            artifacts=artifacts,
        )

    def materialize_results(self, status: ExportStatus) -> list[ContractCandidate]:
        """One candidate per exported artifact; no content is downloaded."""
        source = "mail" if status.corpus == CORPUS_MAIL else "file"
        candidates = []
        for artifact in status.artifacts:
            candidates.append(ContractCandidate(
                id=f"{status.export_id}:{artifact.object_name}",
                name=artifact.object_name.rsplit("/", 1)[-1] or "Vault export artifact",
                source=source,
                locator=f"gs://{artifact.bucket}/{artifact.object_name}",
                discovered_at=status.created_at,
                mime_type=_guess_mime(artifact.object_name),
                description=f"Found in {status.name or 'Vault export'}: {artifact.object_name}",
            ))
        return candidates
