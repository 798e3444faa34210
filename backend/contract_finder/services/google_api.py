import logging
from typing import Any

import httpx

from contract_finder.errors import SourceErrorKind, SourceSearchError
from contract_finder.services.credential_service import AuthHandle

logger = logging.getLogger("app.google")

GMAIL_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
DRIVE_BASE = "https://www.googleapis.com/drive/v3"
VAULT_BASE = "https://vault.googleapis.com/v1"

_QUOTA_REASONS = {"rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded", "dailyLimitExceeded"}


def _error_reasons(response: httpx.Response) -> tuple[str, set[str]]:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200], set()
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return str(error or response.reason_phrase), set()
    reasons = {e.get("reason") for e in error.get("errors", []) if isinstance(e, dict)}
    if error.get("status") == "RESOURCE_EXHAUSTED":
        reasons.add("quotaExceeded")
    return error.get("message", response.reason_phrase), reasons


def classify_response(response: httpx.Response, source: str) -> SourceSearchError:
    message, reasons = _error_reasons(response)
    status = response.status_code
    if status == 429 or (status == 403 and reasons & _QUOTA_REASONS):
        kind = SourceErrorKind.QUOTA_EXCEEDED
    elif status == 400:
        kind = SourceErrorKind.MALFORMED_QUERY
    else:
        kind = SourceErrorKind.PROVIDER_UNAVAILABLE
    return SourceSearchError(kind, f"HTTP {status}: {message}", source=source)


class GoogleApiClient:
    """Authenticated JSON calls against Google REST APIs for one handle.

    The underlying ``httpx.AsyncClient`` is shared process-wide; every call
    passes an explicit timeout.
    """

    def __init__(self, http: httpx.AsyncClient, handle: AuthHandle, source: str, timeout: float):
        self.http = http
        self.handle = handle
        self.source = source
        self.timeout = timeout

    @property
    def email(self) -> str | None:
        return self.handle.email

    def for_source(self, source: str, timeout: float | None = None) -> "GoogleApiClient":
        return GoogleApiClient(self.http, self.handle, source, timeout if timeout is not None else self.timeout)

    async def request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.handle.access_token}"}
        try:
            response = await self.http.request(
                method,
                url,
                params=params,
                json=json,
                headers=headers,
                timeout=timeout or self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise SourceSearchError(SourceErrorKind.TIMEOUT, f"{method} {url} timed out", source=self.source) from exc
        except httpx.HTTPError as exc:
            raise SourceSearchError(SourceErrorKind.PROVIDER_UNAVAILABLE, str(exc), source=self.source) from exc

        if response.is_error:
            error = classify_response(response, self.source)
            logger.warning("%s %s -> %s", method, url, error)
            raise error
        if not response.content:
            return {}
        return response.json()

    async def get(self, url: str, params: dict[str, Any] | None = None, timeout: float | None = None) -> dict[str, Any]:
        return await self.request("GET", url, params=params, timeout=timeout)

    async def post(self, url: str, json: dict[str, Any], timeout: float | None = None) -> dict[str, Any]:
        return await self.request("POST", url, json=json, timeout=timeout)
