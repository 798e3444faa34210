from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from contract_finder.database import get_db
from contract_finder.dependencies import credential_http_error, get_resolver, require_user
from contract_finder.errors import CredentialError
from contract_finder.models.user import User
from contract_finder.schemas.credential import CredentialStatusResponse, CredentialTestResponse, CredentialUpload
from contract_finder.services.credential_service import (
    CredentialResolver,
    OAuthToken,
    expiry_from_record,
    parse_credential,
)
from contract_finder.services.user_service import clear_credential, get_credential, save_credential

router = APIRouter(prefix="/credentials", tags=["credentials"], dependencies=[Depends(require_user)])


def _status(raw: str | None, workspace_email: str | None) -> CredentialStatusResponse:
    if raw is None:
        return CredentialStatusResponse(connected=False)
    try:
        credential = parse_credential(raw)
    except CredentialError:
        return CredentialStatusResponse(connected=False, workspace_email=workspace_email)
    expires_at = expiry_from_record(credential.record) if isinstance(credential, OAuthToken) else None
    return CredentialStatusResponse(
        connected=True,
        kind=credential.kind,
        workspace_email=workspace_email,
        expires_at=expires_at,
    )


@router.post("", response_model=CredentialStatusResponse)
async def upload_credential(body: CredentialUpload, user: User = Depends(require_user), db: Session = Depends(get_db)):
    try:
        parse_credential(body.credential)
    except CredentialError as exc:
        raise credential_http_error(exc) from exc

    save_credential(db, user.id, body.credential, workspace_email=body.workspace_email)
    db.refresh(user)
    return _status(user.google_credential, user.workspace_email)


@router.get("/status", response_model=CredentialStatusResponse)
async def credential_status(user: User = Depends(require_user)):
    return _status(user.google_credential, user.workspace_email)


@router.post("/test", response_model=CredentialTestResponse)
async def test_credential(
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
    resolver: CredentialResolver = Depends(get_resolver),
):
    raw = get_credential(db, user.id)
    if raw is None:
        raise HTTPException(status_code=400, detail="Google credentials not found")
    try:
        handle = await resolver.resolve(raw, user.workspace_email)
    except CredentialError as exc:
        raise credential_http_error(exc) from exc

    if handle.refreshed:
        save_credential(db, user.id, handle.refreshed)
    return CredentialTestResponse(authentication="successful", kind=handle.kind, email=handle.email)


@router.delete("", status_code=204)
async def delete_credential(user: User = Depends(require_user), db: Session = Depends(get_db)):
    clear_credential(db, user.id)
