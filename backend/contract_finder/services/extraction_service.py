"""Plain-text extraction from PDF, Word, text and MBOX payloads.

``extract`` never raises: unsupported types and parse failures come back as an
``ExtractionFailure`` so a batch of documents keeps going.
"""
import codecs
import email
import email.policy
import io
import logging
import re
from dataclasses import dataclass
from enum import Enum

import docx
import pypdf

from contract_finder.config import settings

logger = logging.getLogger("app.extraction")

PDF_TYPES = {"application/pdf", "application/x-pdf"}
DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_TYPE = "application/msword"
MBOX_TYPES = {"application/mbox", "application/x-mbox"}
TEXT_LIKE_TYPES = {"application/json", "application/xml"}


class FailureKind(str, Enum):
    UNSUPPORTED_TYPE = "UNSUPPORTED_TYPE"
    PARSE_ERROR = "PARSE_ERROR"


@dataclass(frozen=True)
class ExtractedText:
    text: str
    truncated: bool = False


@dataclass(frozen=True)
class ExtractionFailure:
    kind: FailureKind
    detail: str = ""


def _base_type(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def is_supported(content_type: str | None) -> bool:
    base = _base_type(content_type)
    return (
        base in PDF_TYPES
        or base in (DOCX_TYPE, DOC_TYPE)
        or base in MBOX_TYPES
        or base in TEXT_LIKE_TYPES
        or base.startswith("text/")
    )


def _pdf_text(data: bytes) -> str:
    reader = pypdf.PdfReader(io.BytesIO(data))
    if reader.is_encrypted:
        # Empty owner passwords are common; anything else is unreadable.
        if not reader.decrypt(""):
            raise ValueError("PDF is password protected")
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n".join(pages)


def _docx_text(data: bytes) -> str:
    document = docx.Document(io.BytesIO(data))
    parts = [p.text for p in document.paragraphs if p.text]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                parts.append(" | ".join(cells))
    return "\n".join(parts)


_UTF16_RUN = re.compile(rb"(?:[\x20-\x7e]\x00){4,}")
_ASCII_RUN = re.compile(rb"[\x20-\x7e]{6,}")


def _legacy_doc_text(data: bytes) -> str:
    """Best-effort text from a binary .doc (OLE) file."""
    try:
        return _docx_text(data)
    except Exception:
        pass  # not a renamed .docx; scrape text runs instead
    runs = [m.decode("utf-16-le") for m in _UTF16_RUN.findall(data)]
    if not runs:
        runs = [m.decode("ascii") for m in _ASCII_RUN.findall(data)]
    text = "\n".join(r.strip() for r in runs if r.strip())
    if not text:
        raise ValueError("no readable text found in legacy Word document")
    return text


def _decode_text(data: bytes) -> str:
    if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return data.decode("utf-16")
    # utf-8-sig also reads plain UTF-8; latin-1 never fails
    for encoding in ("utf-8-sig", "cp1252"):
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    return data.decode("latin-1")


def _split_mbox(data: bytes) -> list[bytes]:
    messages: list[bytes] = []
    current: list[bytes] = []
    for line in data.splitlines(keepends=True):
        if line.startswith(b"From ") and current:
            messages.append(b"".join(current))
            current = []
        if line.startswith(b"From ") and not current:
            continue  # envelope line
        current.append(line)
    if current:
        messages.append(b"".join(current))
    return messages


def _mbox_text(data: bytes) -> str:
    sections = []
    for raw in _split_mbox(data):
        message = email.message_from_bytes(raw, policy=email.policy.default)
        header = "\n".join(
            f"{name}: {message[name]}" for name in ("Subject", "From", "To", "Date") if message[name]
        )
        body_part = message.get_body(preferencelist=("plain", "html"))
        body = body_part.get_content() if body_part is not None else ""
        if body_part is not None and body_part.get_content_type() == "text/html":
            body = re.sub(r"<[^>]+>", " ", body)
        sections.append(f"{header}\n\n{body.strip()}")
    if not sections:
        raise ValueError("MBOX contains no messages")
    return "\n\n---\n\n".join(sections)


def _dispatch(data: bytes, base: str) -> str:
    if base in PDF_TYPES:
        return _pdf_text(data)
    if base == DOCX_TYPE:
        return _docx_text(data)
    if base == DOC_TYPE:
        return _legacy_doc_text(data)
    if base in MBOX_TYPES:
        return _mbox_text(data)
    return _decode_text(data)


def extract(
    data: bytes,
    content_type: str | None,
    max_chars: int | None = None,
) -> ExtractedText | ExtractionFailure:
    base = _base_type(content_type)
    if not is_supported(base):
        return ExtractionFailure(FailureKind.UNSUPPORTED_TYPE, f"Content extraction not supported for {base or 'unknown type'}")
    if len(data) > settings.max_document_bytes:
        return ExtractionFailure(FailureKind.PARSE_ERROR, f"Document exceeds {settings.max_document_bytes} bytes")

    try:
        text = _dispatch(data, base)
    except Exception as exc:
        logger.warning("Failed to parse %s document: %s", base, exc)
        return ExtractionFailure(FailureKind.PARSE_ERROR, str(exc) or exc.__class__.__name__)

    text = text.strip()
    limit = max_chars or settings.extract_max_chars
    if len(text) > limit:
        return ExtractedText(text=text[:limit], truncated=True)
    return ExtractedText(text=text)
