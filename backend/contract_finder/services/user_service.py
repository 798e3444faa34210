"""Users, API tokens and the stored Google credential for each user."""
import json
import uuid

from sqlalchemy.orm import Session

from contract_finder.models.user import User
from contract_finder.utils.hashing import generate_token, sha256_text
from contract_finder.utils.timestamps import utc_now


def create_user(db: Session, email: str) -> tuple[User, str]:
    """Create a user and return it with its plaintext API token (shown once)."""
    token = generate_token()
    now = utc_now()
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        api_token_hash=sha256_text(token),
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user, token


def get_user_by_token(db: Session, token: str) -> User | None:
    return db.query(User).filter(User.api_token_hash == sha256_text(token)).first()


def get_credential(db: Session, user_id: str) -> str | None:
    user = db.query(User).filter(User.id == user_id).first()
    return user.google_credential if user else None


def save_credential(db: Session, user_id: str, raw: dict | str, workspace_email: str | None = None) -> None:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise LookupError(f"User {user_id} not found")
    user.google_credential = raw if isinstance(raw, str) else json.dumps(raw)
    if workspace_email is not None:
        user.workspace_email = workspace_email
    user.updated_at = utc_now()
    db.commit()


def clear_credential(db: Session, user_id: str) -> None:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        return
    user.google_credential = None
    user.workspace_email = None
    user.updated_at = utc_now()
    db.commit()
