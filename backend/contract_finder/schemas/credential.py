from datetime import datetime
from typing import Any

from pydantic import BaseModel


class CredentialUpload(BaseModel):
    credential: dict[str, Any]
    workspace_email: str | None = None


class CredentialStatusResponse(BaseModel):
    connected: bool
    kind: str | None = None
    workspace_email: str | None = None
    expires_at: datetime | None = None


class CredentialTestResponse(BaseModel):
    authentication: str
    kind: str
    email: str | None = None
