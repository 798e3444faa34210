"""Contract field inference through an OpenAI chat model.

The model is asked for a bare JSON object with three keys. Its reply is
treated as untrusted: :func:`parse_model_output` recovers what it can and
falls back to empty fields, so callers always get a valid result.
"""
import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any

from openai import AsyncOpenAI

from contract_finder.config import Settings

logger = logging.getLogger("app.inference")

SYSTEM_PROMPT = (
    "You are a contract analysis assistant specializing in extracting structured data "
    "from documents. Your responses must be in valid JSON format only, with no additional "
    "text, explanations, or markdown formatting."
)

USER_PROMPT = """\
Please analyze this contract text and extract the following information:
1. Contract amount or value (just the number)
2. Renewal or expiration date (in YYYY-MM-DD format)
3. List of parties involved in the contract (company names)

You must respond ONLY with a valid JSON object containing these keys:
{{
  "amount": (number or null if not found),
  "renewalDate": (string in YYYY-MM-DD format or null if not found),
  "parties": (array of strings or empty array if not found)
}}

DO NOT include any explanation, comments, or additional text outside the JSON object.

Contract text:
{text}
"""

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")


@dataclass(frozen=True)
class ExtractionResult:
    amount: float | None = None
    renewal_date: str | None = None
    parties: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.amount is None and self.renewal_date is None and not self.parties


def _first_balanced_object(text: str) -> str | None:
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
            elif char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:index + 1]
        start = text.find("{", start + 1)
    return None


def _dedupe(values: list[str]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def validate_fields(payload: Any) -> ExtractionResult:
    if not isinstance(payload, dict):
        return ExtractionResult()

    amount = payload.get("amount")
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        amount = None
    else:
        try:
            amount = float(amount)
        except OverflowError:
            amount = None
    if amount is not None and not math.isfinite(amount):
        amount = None

    renewal_date = payload.get("renewalDate", payload.get("renewal_date"))
    if not isinstance(renewal_date, str) or not _ISO_DATE.fullmatch(renewal_date):
        renewal_date = None

    parties = payload.get("parties")
    if not isinstance(parties, list) or not all(isinstance(p, str) for p in parties):
        parties = []

    return ExtractionResult(
        amount=amount,
        renewal_date=renewal_date,
        parties=_dedupe([p.strip() for p in parties if p.strip()]),
    )


def parse_model_output(text: str | None) -> ExtractionResult:
    if not text:
        return ExtractionResult()
    text = text.strip()

    fenced = _FENCE.search(text)
    candidate = fenced.group(1) if fenced else _first_balanced_object(text)
    if candidate is None:
        candidate = text

    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError:
        logger.warning("Model reply was not valid JSON; using empty fields")
        return ExtractionResult()
    return validate_fields(payload)


class FieldInferrer:
    """Wraps one OpenAI client, constructed at startup and shared read-only."""

    def __init__(self, client: AsyncOpenAI | None, model: str, max_chars: int = 8000, timeout: float = 30.0):
        self.client = client
        self.model = model
        self.max_chars = max_chars
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "FieldInferrer":
        client = None
        if settings.openai_api_key:
            client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                timeout=settings.search_timeout_seconds,
                max_retries=settings.openai_max_retries,
            )
        else:
            logger.warning("CONTRACTS_OPENAI_API_KEY not set; field inference disabled")
        return cls(
            client,
            settings.openai_model,
            max_chars=settings.extract_max_chars,
            timeout=settings.search_timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def infer(self, text: str) -> ExtractionResult:
        if self.client is None or not text.strip():
            return ExtractionResult()
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": USER_PROMPT.format(text=text[:self.max_chars])},
                ],
                temperature=0,
                timeout=self.timeout,
            )
            content = response.choices[0].message.content
        except Exception as exc:
            logger.error("Field inference call failed: %s", exc)
            return ExtractionResult()
        return parse_model_output(content)

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()
