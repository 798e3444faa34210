import io

import docx
from fpdf import FPDF

from contract_finder.services.extraction_service import (
    DOCX_TYPE,
    ExtractedText,
    ExtractionFailure,
    FailureKind,
    extract,
    is_supported,
)


def _pdf_bytes(text: str) -> bytes:
    pdf = FPDF()
    pdf.add_page()
    pdf.set_font("Helvetica", "", 12)
    pdf.multi_cell(0, 8, text)
    return bytes(pdf.output())


def _docx_bytes(paragraphs: list[str], table: list[list[str]] | None = None) -> bytes:
    document = docx.Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    if table:
        t = document.add_table(rows=len(table), cols=len(table[0]))
        for r, row in enumerate(table):
            for c, value in enumerate(row):
                t.cell(r, c).text = value
    buf = io.BytesIO()
    document.save(buf)
    return buf.getvalue()


MBOX = b"""From sender@example.com Mon Jan  1 00:00:00 2024
Subject: Master Services Agreement
From: Acme Legal <legal@acme.example>
To: buyer@corp.example
Date: Mon, 01 Jan 2024 10:00:00 +0000
Content-Type: text/plain; charset=utf-8

The agreement renews on 2025-01-01 for 12000 USD.

From other@example.com Tue Jan  2 00:00:00 2024
Subject: Second message
From: Other <other@example.com>
Content-Type: text/plain; charset=utf-8

Nothing to see here.
"""


class TestSupportedTypes:
    def test_known_types(self):
        assert is_supported("application/pdf")
        assert is_supported(DOCX_TYPE)
        assert is_supported("application/msword")
        assert is_supported("text/plain; charset=utf-8")
        assert is_supported("application/mbox")
        assert not is_supported("image/png")
        assert not is_supported(None)


class TestExtract:
    def test_pdf(self):
        result = extract(_pdf_bytes("Service Agreement between Acme Ltd and Globex"), "application/pdf")
        assert isinstance(result, ExtractedText)
        assert "Acme Ltd" in result.text
        assert result.truncated is False

    def test_docx_paragraphs_and_tables(self):
        data = _docx_bytes(["Supply Contract", "Term: 12 months"], [["Party", "Acme Ltd"]])
        result = extract(data, DOCX_TYPE)
        assert isinstance(result, ExtractedText)
        assert "Supply Contract" in result.text
        assert "Party | Acme Ltd" in result.text

    def test_legacy_doc_reads_renamed_docx(self):
        data = _docx_bytes(["Legacy lease agreement"])
        result = extract(data, "application/msword")
        assert isinstance(result, ExtractedText)
        assert "Legacy lease agreement" in result.text

    def test_legacy_doc_scrapes_text_runs(self):
        data = b"\xd0\xcf\x11\xe0\x00\x00" + "Maintenance agreement".encode("utf-16-le") + b"\x00\x01\x02"
        result = extract(data, "application/msword")
        assert isinstance(result, ExtractedText)
        assert "Maintenance agreement" in result.text

    def test_plain_text(self):
        result = extract("Renewal on 2025-06-30".encode(), "text/plain")
        assert result == ExtractedText(text="Renewal on 2025-06-30")

    def test_windows_encoded_text(self):
        text = "Contract fee: 500 € per year, renewal 2025-01-31"
        result = extract(text.encode("cp1252"), "text/plain")
        assert result == ExtractedText(text=text)

    def test_byte_order_marks(self):
        assert extract("Lease renewal".encode("utf-8-sig"), "text/plain").text == "Lease renewal"
        assert extract("Lease renewal".encode("utf-16"), "text/plain").text == "Lease renewal"

    def test_mbox_messages(self):
        result = extract(MBOX, "application/mbox")
        assert isinstance(result, ExtractedText)
        assert "Subject: Master Services Agreement" in result.text
        assert "renews on 2025-01-01" in result.text
        assert "Second message" in result.text

    def test_unsupported_type(self):
        result = extract(b"\x89PNG\r\n", "image/png")
        assert isinstance(result, ExtractionFailure)
        assert result.kind == FailureKind.UNSUPPORTED_TYPE

    def test_corrupt_pdf(self):
        result = extract(b"%PDF-1.4 this is not really a pdf", "application/pdf")
        assert isinstance(result, ExtractionFailure)
        assert result.kind == FailureKind.PARSE_ERROR
        assert result.detail

    def test_truncates_long_text(self):
        result = extract(b"a" * 10000, "text/plain", max_chars=8000)
        assert isinstance(result, ExtractedText)
        assert len(result.text) == 8000
        assert result.truncated is True

    def test_oversized_input_rejected(self, monkeypatch):
        from contract_finder.config import settings
        monkeypatch.setattr(settings, "max_document_bytes", 10)
        result = extract(b"x" * 11, "text/plain")
        assert isinstance(result, ExtractionFailure)
        assert result.kind == FailureKind.PARSE_ERROR
