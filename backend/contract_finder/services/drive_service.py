import logging

from contract_finder.schemas.search import ContractCandidate
from contract_finder.services.google_api import DRIVE_BASE, GoogleApiClient
from contract_finder.services.sources import DateRange, SearchOptions, SearchOutcome

logger = logging.getLogger("app.drive")

ALLOWED_MIME_TYPES = (
    "application/pdf",
    "application/vnd.google-apps.document",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
)
FILE_FIELDS = "files(id, name, mimeType, webViewLink, createdTime, modifiedTime, owners)"
PAGE_SIZE_LIMIT = 1000


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _rfc3339(value) -> str:
    return value.isoformat().replace("+00:00", "Z") if value.tzinfo else value.isoformat() + "Z"


def build_query(keywords, date_range: DateRange) -> str:
    text_terms = " or ".join(f"fullText contains '{_escape(k)}'" for k in keywords)
    clauses = [f"({text_terms})"]
    if date_range.start:
        clauses.append(f"modifiedTime >= '{_rfc3339(date_range.start)}'")
    if date_range.end:
        clauses.append(f"modifiedTime <= '{_rfc3339(date_range.end)}'")
    mime_terms = " or ".join(f"mimeType = '{m}'" for m in ALLOWED_MIME_TYPES)
    clauses.append(f"({mime_terms})")
    clauses.append("trashed = false")
    return " and ".join(clauses)


class DriveSearcher:
    """Lists matching Drive files; content is not fetched at this stage."""

    async def search(self, api: GoogleApiClient, keywords, date_range: DateRange, options: SearchOptions) -> SearchOutcome:
        query = build_query(keywords, date_range)
        logger.info("Searching Drive with query: %s", query)
        listing = await api.get(
            f"{DRIVE_BASE}/files",
            params={
                "q": query,
                "fields": FILE_FIELDS,
                "pageSize": min(options.max_results, PAGE_SIZE_LIMIT),
            },
        )
        files = listing.get("files", [])[:options.max_results]
        logger.info("Found %d potential contract files", len(files))

        candidates = []
        for item in files:
            owners = item.get("owners") or [{}]
            candidates.append(ContractCandidate(
                id=item["id"],
                name=item.get("name") or "Unnamed Document",
                source="file",
                locator=item.get("webViewLink"),
                discovered_at=item.get("createdTime") or item.get("modifiedTime"),
                sender=owners[0].get("displayName"),
                mime_type=item.get("mimeType"),
            ))
        return SearchOutcome(
            source="file",
            status="COMPLETED",
            total=len(files),
            processed=len(files),
            candidates=candidates,
        )
