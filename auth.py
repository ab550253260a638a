"""
Password hashing and database-backed sessions.

A session is a random token stored in the `sessions` table. Clients send it
back as `Authorization: Bearer <token>` or in the `session_id` cookie.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, Request
from sqlalchemy import delete, select
from sqlalchemy.orm import Session as DbSession

from database import get_db, transaction
from models import Session, User

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session_id"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # stored value is not a bcrypt hash
        return False


def authenticate(db: DbSession, username: str, password: str) -> Optional[User]:
    user = db.scalar(select(User).where(User.username == username))
    if user is None or not verify_password(password, user.password_hash):
        logger.warning("Failed sign-in for %r", username)
        return None
    return user


def start_session(db: DbSession, user: User, ttl_hours: int) -> str:
    token = secrets.token_hex(32)
    now = datetime.now(timezone.utc)
    with transaction(db):
        db.add(Session(token=token, user_id=user.id, created_at=now, expires_at=now + timedelta(hours=ttl_hours)))
    return token


def end_session(db: DbSession, token: str) -> None:
    with transaction(db):
        db.execute(delete(Session).where(Session.token == token))


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def session_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.cookies.get(SESSION_COOKIE)


def resolve_user(db: DbSession, token: Optional[str]) -> Optional[User]:
    if not token:
        return None
    session = db.get(Session, token)
    if session is None:
        return None
    if _as_utc(session.expires_at) <= datetime.now(timezone.utc):
        with transaction(db):
            db.delete(session)
        return None
    return session.user


def current_user(request: Request, db: DbSession = Depends(get_db)) -> User:
    user = resolve_user(db, session_token(request))
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def require_admin(user: User = Depends(current_user)) -> User:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
