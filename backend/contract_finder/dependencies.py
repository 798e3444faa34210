from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from contract_finder.database import get_db
from contract_finder.errors import AuthenticationFailed, AuthFailureCode, CredentialError, SourceErrorKind, SourceSearchError
from contract_finder.models.user import User
from contract_finder.services.user_service import get_user_by_token


async def require_user(authorization: str = Header(...), db: Session = Depends(get_db)) -> User:
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    user = get_user_by_token(db, authorization[7:])
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid API token")
    return user


def get_search_service(request: Request):
    return request.app.state.search_service


def get_inferrer(request: Request):
    return request.app.state.inferrer


def get_resolver(request: Request):
    return request.app.state.resolver


def credential_http_error(exc: CredentialError) -> HTTPException:
    status = 400
    if isinstance(exc, AuthenticationFailed):
        status = 503 if exc.failure == AuthFailureCode.NETWORK else 401
    return HTTPException(
        status_code=status,
        detail={"message": exc.message, "code": exc.code, "remediation": exc.remediation},
    )


def source_http_error(exc: SourceSearchError) -> HTTPException:
    status = 504 if exc.kind == SourceErrorKind.TIMEOUT else 502
    return HTTPException(status_code=status, detail={"message": str(exc), "code": exc.kind.value})
