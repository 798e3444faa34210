"""Gmail search: list matching messages, filter likely contracts, analyse attachments."""
import asyncio
import base64
import logging
from datetime import datetime, timedelta, timezone
from email.utils import parseaddr, parsedate_to_datetime

from contract_finder.schemas.search import ContractCandidate
from contract_finder.services import extraction_service
from contract_finder.services.extraction_service import ExtractionFailure
from contract_finder.services.google_api import GMAIL_BASE, GoogleApiClient
from contract_finder.services.inference_service import FieldInferrer
from contract_finder.services.sources import DateRange, SearchOptions, SearchOutcome

logger = logging.getLogger("app.gmail")

CONTRACT_TERMS = ("contract", "agreement")
LIST_PAGE_LIMIT = 500


def _quote(keyword: str) -> str:
    return f'"{keyword}"' if any(c.isspace() for c in keyword) else keyword


def build_query(keywords, date_range: DateRange, options: SearchOptions) -> str:
    parts = [" OR ".join(_quote(k) for k in keywords)]
    if date_range.start:
        parts.append(f"after:{date_range.start:%Y/%m/%d}")
    if date_range.end:
        # before: is exclusive in Gmail; shift a day to keep the end date.
        parts.append(f"before:{date_range.end + timedelta(days=1):%Y/%m/%d}")
    if options.attachments_only:
        parts.append("has:attachment")
    if options.exclude_drafts:
        parts.append("-in:drafts")
    return " ".join(parts)


def get_header(headers: list[dict], name: str) -> str:
    for header in headers or []:
        if header.get("name", "").lower() == name.lower():
            return header.get("value", "")
    return ""


def get_attachments(payload: dict) -> list[dict]:
    attachments = []

    def walk(part: dict):
        body = part.get("body") or {}
        if body.get("attachmentId") and part.get("filename"):
            attachments.append({
                "id": body["attachmentId"],
                "filename": part["filename"],
                "mime_type": part.get("mimeType", "application/octet-stream"),
                "size": body.get("size", 0),
            })
        for child in part.get("parts") or []:
            walk(child)

    walk(payload or {})
    return attachments


def is_likely_contract(subject: str, attachments: list[dict], keywords) -> bool:
    terms = [t.lower() for t in (*CONTRACT_TERMS, *keywords)]
    haystacks = [subject.lower()] + [a["filename"].lower() for a in attachments]
    return any(term in text for term in terms for text in haystacks)


def _message_date(date_header: str, internal_date: str | None) -> str | None:
    if date_header:
        try:
            return parsedate_to_datetime(date_header).isoformat()
        except (TypeError, ValueError):
            pass
    if internal_date:
        return datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc).isoformat()
    return None


class GmailSearcher:
    def __init__(self, inferrer: FieldInferrer, batch_size: int = 10, batch_pause: float = 1.0):
        self.inferrer = inferrer
        self.batch_size = max(1, batch_size)
        self.batch_pause = batch_pause

    async def _list_message_ids(self, api: GoogleApiClient, query: str, max_results: int) -> list[str]:
        ids: list[str] = []
        page_token = None
        while len(ids) < max_results:
            params = {"q": query, "maxResults": min(max_results - len(ids), LIST_PAGE_LIMIT)}
            if page_token:
                params["pageToken"] = page_token
            page = await api.get(f"{GMAIL_BASE}/messages", params=params)
            ids.extend(m["id"] for m in page.get("messages", []))
            page_token = page.get("nextPageToken")
            if not page_token:
                break
        return ids[:max_results]

    async def _download_attachment(self, api: GoogleApiClient, message_id: str, attachment_id: str) -> bytes:
        body = await api.get(f"{GMAIL_BASE}/messages/{message_id}/attachments/{attachment_id}")
        data = body.get("data")
        if not data:
            raise ValueError(f"No attachment data for {attachment_id}")
        return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))

    async def _analyse_attachments(self, api: GoogleApiClient, message_id: str, attachments: list[dict]) -> dict:
        info = {"amount": None, "renewal_date": None, "parties": [], "analyzed": False}
        for attachment in attachments:
            if not extraction_service.is_supported(attachment["mime_type"]):
                continue
            data = await self._download_attachment(api, message_id, attachment["id"])
            extracted = await asyncio.to_thread(extraction_service.extract, data, attachment["mime_type"])
            if isinstance(extracted, ExtractionFailure):
                logger.info("Skipping %s in message %s: %s", attachment["filename"], message_id, extracted.detail)
                continue
            if not extracted.text:
                continue
            result = await self.inferrer.infer(extracted.text)
            info["analyzed"] = True
            if info["amount"] is None and result.amount is not None:
                info["amount"] = result.amount
            if info["renewal_date"] is None and result.renewal_date is not None:
                info["renewal_date"] = result.renewal_date
            for party in result.parties:
                if party not in info["parties"]:
                    info["parties"].append(party)
        return info

    async def _process_message(self, api, message_id: str, keywords, options: SearchOptions) -> ContractCandidate | None:
        detail = await api.get(f"{GMAIL_BASE}/messages/{message_id}", params={"format": "full"})
        if options.exclude_drafts and "DRAFT" in detail.get("labelIds", []):
            return None

        payload = detail.get("payload") or {}
        headers = payload.get("headers", [])
        subject = get_header(headers, "Subject")
        sender = get_header(headers, "From")
        attachments = get_attachments(payload)

        if not options.include_all and not is_likely_contract(subject, attachments, keywords):
            return None

        info = await self._analyse_attachments(api, message_id, attachments)
        parties = info["parties"]
        if not parties and sender:
            display_name = parseaddr(sender)[0] or parseaddr(sender)[1]
            parties = [display_name] if display_name else []

        return ContractCandidate(
            id=message_id,
            name=subject or "Unnamed Contract",
            source="mail",
            locator=f"https://mail.google.com/mail/#all/{message_id}",
            discovered_at=_message_date(get_header(headers, "Date"), detail.get("internalDate")),
            amount=info["amount"],
            renewal_date=info["renewal_date"],
            parties=parties,
            analyzed=info["analyzed"],
            sender=sender or None,
            attachment_count=len(attachments),
        )

    async def _safe_process(self, api, message_id, keywords, options) -> ContractCandidate | None:
        try:
            return await self._process_message(api, message_id, keywords, options)
        except Exception as exc:
            logger.error("Error processing message %s: %s", message_id, exc)
            return None

    async def search(self, api: GoogleApiClient, keywords, date_range: DateRange, options: SearchOptions) -> SearchOutcome:
        query = build_query(keywords, date_range, options)
        logger.info("Searching Gmail with query: %s", query)
        message_ids = await self._list_message_ids(api, query, options.max_results)
        logger.info("Found %d potential contract emails", len(message_ids))

        outcome = SearchOutcome(source="mail", total=len(message_ids))
        for start in range(0, len(message_ids), self.batch_size):
            batch = message_ids[start:start + self.batch_size]
            results = await asyncio.gather(*(self._safe_process(api, mid, keywords, options) for mid in batch))
            outcome.candidates.extend(r for r in results if r is not None)
            outcome.processed += len(batch)
            if outcome.processed < outcome.total and self.batch_pause > 0:
                await asyncio.sleep(self.batch_pause)

        outcome.status = "COMPLETED"
        return outcome
