import asyncio

from contract_finder.services.inference_service import (
    ExtractionResult,
    FieldInferrer,
    parse_model_output,
    validate_fields,
)


class TestParseModelOutput:
    def test_bare_json(self):
        result = parse_model_output('{"amount": 12000, "renewalDate": "2025-01-01", "parties": ["Acme", "Globex"]}')
        assert result == ExtractionResult(amount=12000.0, renewal_date="2025-01-01", parties=["Acme", "Globex"])

    def test_markdown_fence(self):
        reply = 'Here you go:\n```json\n{"amount": 5.5, "renewalDate": null, "parties": []}\n```'
        assert parse_model_output(reply).amount == 5.5

    def test_object_embedded_in_prose(self):
        reply = 'Sure! {"amount": null, "renewalDate": "2024-12-31", "parties": ["A {B}"]} Hope this helps.'
        result = parse_model_output(reply)
        assert result.renewal_date == "2024-12-31"
        assert result.parties == ["A {B}"]

    def test_invalid_reply_yields_empty_result(self):
        assert parse_model_output("I could not find anything").is_empty
        assert parse_model_output("").is_empty
        assert parse_model_output(None).is_empty
        assert parse_model_output("[1, 2, 3]").is_empty


class TestValidateFields:
    def test_boolean_amount_rejected(self):
        assert validate_fields({"amount": True}).amount is None

    def test_string_amount_rejected(self):
        assert validate_fields({"amount": "12,000"}).amount is None

    def test_non_finite_amount_rejected(self):
        assert parse_model_output('{"amount": 1e999, "renewalDate": null, "parties": []}').amount is None
        assert parse_model_output('{"amount": NaN, "renewalDate": null, "parties": []}').amount is None
        assert validate_fields({"amount": float("-inf")}).amount is None
        assert validate_fields({"amount": 10 ** 400}).amount is None

    def test_date_must_be_exact_iso(self):
        assert validate_fields({"renewalDate": "2025-1-1"}).renewal_date is None
        assert validate_fields({"renewalDate": "2025-01-01T00:00:00"}).renewal_date is None
        assert validate_fields({"renewal_date": "2025-01-01"}).renewal_date == "2025-01-01"

    def test_parties_must_be_strings(self):
        assert validate_fields({"parties": "Acme"}).parties == []
        assert validate_fields({"parties": ["Acme", 3]}).parties == []

    def test_parties_deduplicated_case_sensitive(self):
        result = validate_fields({"parties": ["Acme", " Acme ", "ACME", ""]})
        assert result.parties == ["Acme", "ACME"]


class TestFieldInferrer:
    def test_disabled_without_client(self):
        inferrer = FieldInferrer(None, "gpt-test")
        assert inferrer.configured is False
        assert asyncio.run(inferrer.infer("Contract text")).is_empty

    def test_calls_model_with_truncated_text(self, openai_stub):
        openai_stub.reply = '{"amount": 100, "renewalDate": "2026-03-01", "parties": ["Acme"]}'
        inferrer = FieldInferrer(openai_stub, "gpt-test", max_chars=50)

        result = asyncio.run(inferrer.infer("x" * 200))

        assert result.amount == 100.0
        assert result.parties == ["Acme"]
        call = openai_stub.calls[0]
        assert call["model"] == "gpt-test"
        assert call["temperature"] == 0
        assert call["messages"][1]["content"].endswith("x" * 50 + "\n")
        assert "x" * 51 not in call["messages"][1]["content"]

    def test_model_error_yields_empty_result(self, openai_stub):
        openai_stub.error = RuntimeError("rate limited")
        result = asyncio.run(FieldInferrer(openai_stub, "gpt-test").infer("Contract"))
        assert result.is_empty

    def test_blank_text_skips_model(self, openai_stub):
        assert asyncio.run(FieldInferrer(openai_stub, "gpt-test").infer("   ")).is_empty
        assert openai_stub.calls == []


class TestAnalyzeRoutes:
    def test_check(self, client, user):
        r = client.get("/api/v1/analyze/check", headers=user.headers)
        assert r.status_code == 200
        assert r.json() == {"configured": True, "model": "gpt-test"}

    def test_analyze_text(self, client, user, openai_stub):
        openai_stub.reply = '{"amount": 2500, "renewalDate": "2025-09-30", "parties": ["Acme", "Globex"]}'
        r = client.post("/api/v1/analyze", json={"text": "Agreement between Acme and Globex"}, headers=user.headers)
        assert r.status_code == 200
        data = r.json()
        assert data["analyzed"] is True
        assert data["amount"] == 2500
        assert data["renewal_date"] == "2025-09-30"
        assert data["parties"] == ["Acme", "Globex"]

    def test_analyze_document_upload(self, client, user, openai_stub):
        openai_stub.reply = '{"amount": null, "renewalDate": "2027-01-31", "parties": []}'
        r = client.post(
            "/api/v1/analyze/document",
            files={"file": ("lease.txt", b"Lease agreement renewing 2027-01-31", "text/plain")},
            headers=user.headers,
        )
        assert r.status_code == 200
        assert r.json()["renewal_date"] == "2027-01-31"
        assert "Lease agreement" in openai_stub.calls[0]["messages"][1]["content"]

    def test_analyze_document_unsupported(self, client, user, openai_stub):
        r = client.post(
            "/api/v1/analyze/document",
            files={"file": ("scan.png", b"\x89PNG\r\n", "image/png")},
            headers=user.headers,
        )
        assert r.status_code == 200
        assert r.json()["analyzed"] is False
        assert r.json()["failure"] == "UNSUPPORTED_TYPE"
        assert openai_stub.calls == []

    def test_analyze_document_too_large(self, client, user, monkeypatch):
        from contract_finder.config import settings
        monkeypatch.setattr(settings, "max_upload_bytes", 16)
        r = client.post(
            "/api/v1/analyze/document",
            files={"file": ("big.txt", b"x" * 64, "text/plain")},
            headers=user.headers,
        )
        assert r.status_code == 413
