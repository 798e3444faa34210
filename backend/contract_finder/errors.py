"""Domain errors raised by the search pipeline.

Routers translate these into HTTP responses; services never build HTTP
responses themselves.
"""
from enum import Enum


class CredentialError(Exception):
    """Stored Google credential material could not produce a usable handle."""

    code = "CREDENTIAL_ERROR"
    remediation = "Reconnect your Google account."

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MissingImpersonationTarget(CredentialError):
    code = "MISSING_IMPERSONATION_TARGET"
    remediation = "Set the Google Workspace email the service account should act as."

    def __init__(self):
        super().__init__("Service account credentials require a Workspace email to impersonate")


class Unresolvable(CredentialError):
    code = "UNRESOLVABLE_CREDENTIAL"
    remediation = "Upload service account key JSON or complete the Google OAuth flow."


class AuthFailureCode(str, Enum):
    REVOKED = "REVOKED"
    UNAUTHORIZED_CLIENT = "UNAUTHORIZED_CLIENT"
    INVALID_CLIENT = "INVALID_CLIENT"
    NETWORK = "NETWORK"
    UNKNOWN = "UNKNOWN"


_AUTH_REMEDIATION = {
    AuthFailureCode.REVOKED: "Your Google access has expired or was revoked. Please reconnect your Google account.",
    AuthFailureCode.UNAUTHORIZED_CLIENT: (
        "Enable domain-wide delegation for the service account in the Google Workspace "
        "admin console and grant it the required API scopes."
    ),
    AuthFailureCode.INVALID_CLIENT: "The uploaded credentials are invalid. Upload a fresh key or reconnect.",
    AuthFailureCode.NETWORK: "Google could not be reached. Try again in a moment.",
    AuthFailureCode.UNKNOWN: "Reconnect your Google account.",
}


class AuthenticationFailed(CredentialError):
    def __init__(self, reason: str, failure: AuthFailureCode = AuthFailureCode.UNKNOWN):
        super().__init__(f"Google authentication failed: {reason}")
        self.reason = reason
        self.failure = failure
        self.code = f"AUTH_{failure.value}"
        self.remediation = _AUTH_REMEDIATION[failure]


class SourceErrorKind(str, Enum):
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    TIMEOUT = "TIMEOUT"
    MALFORMED_QUERY = "MALFORMED_QUERY"


class SourceSearchError(Exception):
    """A document source failed as a whole (not a single document)."""

    def __init__(self, kind: SourceErrorKind, message: str, source: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.source = source

    @property
    def retryable(self) -> bool:
        return self.kind in (SourceErrorKind.TIMEOUT, SourceErrorKind.QUOTA_EXCEEDED)

    def __str__(self) -> str:
        prefix = f"{self.source} search" if self.source else "Search"
        return f"{prefix} failed ({self.kind.value}): {self.message}"


class JobError(Exception):
    """Terminal failure of a search job; the message is shown to users."""


class JobStateError(Exception):
    """Attempted status transition that the job lifecycle forbids."""
