from __future__ import annotations

import hashlib
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import ProfileSession


SESSION_TOKEN_BYTES = int(os.environ.get("SESSION_TOKEN_BYTES", "32"))
SESSION_TOKEN_PREFIX = os.environ.get("SESSION_TOKEN_PREFIX", "slg")
SESSION_TTL_HOURS = max(1, int(os.environ.get("SESSION_TTL_HOURS", "168")))
SESSION_TOKEN_PEPPER = os.environ.get("SESSION_TOKEN_PEPPER", "").encode("utf-8")


@dataclass(frozen=True)
class Identity:
    """The authenticated caller. Workflows take it as an argument; nothing reads it from ambient state."""

    user_id: str

    def __post_init__(self) -> None:
        if not str(self.user_id or "").strip():
            raise ValueError("Identity requires a non-empty user_id")


def generate_session_token() -> str:
    return f"{SESSION_TOKEN_PREFIX}_{secrets.token_urlsafe(SESSION_TOKEN_BYTES)}"


def hash_session_token(token: str) -> str:
    digest = hashlib.sha256()
    digest.update(SESSION_TOKEN_PEPPER)
    digest.update(token.encode("utf-8"))
    return digest.hexdigest()


def session_expiry_from_now(now: datetime | None = None) -> datetime:
    current = now or datetime.utcnow()
    return current + timedelta(hours=SESSION_TTL_HOURS)


def issue_session_token(db: Session, profile_id: str) -> str:
    """Store a session for `profile_id` and return the raw bearer token. The caller commits."""
    token = generate_session_token()
    db.add(
        ProfileSession(
            profile_id=profile_id,
            token_hash=hash_session_token(token),
            expires_at=session_expiry_from_now(),
        )
    )
    return token


def identity_from_token(db: Session, token: str, now: datetime | None = None) -> Identity | None:
    current = now or datetime.utcnow()
    session = db.execute(
        select(ProfileSession).where(
            ProfileSession.token_hash == hash_session_token(token),
            ProfileSession.revoked_at.is_(None),
            ProfileSession.expires_at > current,
        )
    ).scalar_one_or_none()
    if session is None:
        return None
    return Identity(user_id=str(session.profile_id))
