"""Turn stored Google credential material into an authenticated handle.

Two shapes are accepted: an OAuth token record (has a ``refresh_token``) and a
service account key (``type == "service_account"``). The shape is decided once
by :func:`parse_credential`; everything downstream works with the resulting
dataclass.
"""
import asyncio
import functools
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

import google.auth.transport.requests
from google.auth import exceptions as google_exceptions
from google.oauth2 import credentials as oauth2_credentials
from google.oauth2 import service_account

from contract_finder.errors import (
    AuthenticationFailed,
    AuthFailureCode,
    MissingImpersonationTarget,
    Unresolvable,
)

logger = logging.getLogger("app.credentials")

GMAIL_SCOPE = "https://www.googleapis.com/auth/gmail.readonly"
DRIVE_SCOPE = "https://www.googleapis.com/auth/drive.readonly"
VAULT_SCOPE = "https://www.googleapis.com/auth/ediscovery"
DEFAULT_SCOPES = (GMAIL_SCOPE, DRIVE_SCOPE, VAULT_SCOPE)


@dataclass(frozen=True)
class OAuthToken:
    refresh_token: str
    access_token: str | None = None
    email: str | None = None
    record: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    kind = "oauth"


@dataclass(frozen=True)
class ServiceAccountKey:
    client_email: str
    info: dict[str, Any] = field(compare=False, repr=False)

    kind = "service_account"


Credential = OAuthToken | ServiceAccountKey


@dataclass
class AuthHandle:
    access_token: str
    kind: str
    email: str | None = None
    # Updated OAuth record after a refresh; the caller persists it.
    refreshed: dict[str, Any] | None = None


def parse_credential(raw: str | dict | None) -> Credential:
    if raw is None:
        raise Unresolvable("No Google credentials are stored for this account")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise Unresolvable("Invalid Google credentials format") from exc
    if not isinstance(raw, dict):
        raise Unresolvable("Invalid Google credentials format")

    if raw.get("type") == "service_account":
        if not raw.get("client_email") or not raw.get("private_key"):
            raise Unresolvable("Service account key is missing client_email or private_key")
        return ServiceAccountKey(client_email=raw["client_email"], info=dict(raw))

    if raw.get("refresh_token"):
        return OAuthToken(
            refresh_token=raw["refresh_token"],
            access_token=raw.get("access_token"),
            email=raw.get("email"),
            record=dict(raw),
        )

    if "installed" in raw or "web" in raw:
        raise Unresolvable("OAuth client credentials provided instead of tokens. Please complete the OAuth flow.")
    raise Unresolvable("Unsupported credentials format. Please reconnect your Google account.")


def _classify_refresh_error(exc: Exception) -> AuthFailureCode:
    text = str(exc).lower()
    if "invalid_grant" in text:
        return AuthFailureCode.REVOKED
    if "unauthorized_client" in text:
        return AuthFailureCode.UNAUTHORIZED_CLIENT
    if "invalid_client" in text:
        return AuthFailureCode.INVALID_CLIENT
    return AuthFailureCode.UNKNOWN


def _error_reason(exc: Exception) -> str:
    return str(exc.args[0]) if exc.args else exc.__class__.__name__


class CredentialResolver:
    """Builds google-auth credentials and validates them with a live refresh."""

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        token_uri: str,
        timeout: float,
        request_factory: Callable[[], Any] | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_uri = token_uri
        self.timeout = timeout
        self._request_factory = request_factory or google.auth.transport.requests.Request

    def _build(self, credential: Credential, impersonation_hint: str | None, scopes):
        if isinstance(credential, ServiceAccountKey):
            if not impersonation_hint:
                raise MissingImpersonationTarget()
            try:
                return service_account.Credentials.from_service_account_info(
                    credential.info, scopes=list(scopes), subject=impersonation_hint,
                )
            except (ValueError, KeyError) as exc:
                raise AuthenticationFailed(str(exc), AuthFailureCode.INVALID_CLIENT) from exc
        return oauth2_credentials.Credentials(
            token=credential.access_token,
            refresh_token=credential.refresh_token,
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )

    def _refresh(self, creds) -> None:
        request = functools.partial(self._request_factory(), timeout=self.timeout)
        creds.refresh(request)

    async def resolve(
        self,
        raw: str | dict | None,
        impersonation_hint: str | None = None,
        scopes=DEFAULT_SCOPES,
    ) -> AuthHandle:
        credential = parse_credential(raw)
        creds = self._build(credential, impersonation_hint, scopes)

        try:
            await asyncio.wait_for(asyncio.to_thread(self._refresh, creds), timeout=self.timeout + 1)
        except asyncio.TimeoutError as exc:
            raise AuthenticationFailed("token refresh timed out", AuthFailureCode.NETWORK) from exc
        except google_exceptions.TransportError as exc:
            raise AuthenticationFailed(_error_reason(exc), AuthFailureCode.NETWORK) from exc
        except google_exceptions.RefreshError as exc:
            failure = _classify_refresh_error(exc)
            logger.warning("Credential refresh rejected (%s): %s", failure.value, _error_reason(exc))
            raise AuthenticationFailed(_error_reason(exc), failure) from exc

        if isinstance(credential, ServiceAccountKey):
            logger.info("Resolved service account %s acting as %s", credential.client_email, impersonation_hint)
            return AuthHandle(access_token=creds.token, kind=credential.kind, email=impersonation_hint)

        refreshed = dict(credential.record)
        refreshed["access_token"] = creds.token
        if creds.expiry is not None:
            expiry = creds.expiry.replace(tzinfo=timezone.utc)
            refreshed["expiry_date"] = int(expiry.timestamp() * 1000)
        return AuthHandle(
            access_token=creds.token,
            kind=credential.kind,
            email=credential.email or impersonation_hint,
            refreshed=refreshed,
        )


def expiry_from_record(record: dict[str, Any]) -> datetime | None:
    value = record.get("expiry_date")
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
