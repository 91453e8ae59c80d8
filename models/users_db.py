# models/users_db.py (SQLAlchemy)
from __future__ import annotations
import hashlib
import re
import secrets
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from models.base import session_scope
from models.schema import User

EMAIL_RX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _to_dict(u: User) -> dict:
    return {"id": u.id, "email": u.email, "full_name": u.full_name, "created_at": u.created_at}


def get_user(user_id: int) -> Optional[dict]:
    if not user_id:
        return None
    with session_scope() as s:
        u = s.get(User, int(user_id))
        return _to_dict(u) if u else None


def get_user_by_token(token: str) -> Optional[dict]:
    if not token:
        return None
    with session_scope() as s:
        u = s.execute(select(User).where(
            User.api_token_hash == hash_token(token))).scalars().first()
        return _to_dict(u) if u else None


def create_user(email: str, full_name: str, api_token: str | None = None) -> tuple[int, str]:
    """Create an API user; returns (id, token). The token is only ever returned here."""
    email = (email or "").strip().lower()
    if not EMAIL_RX.match(email) or not full_name:
        raise ValueError("A valid email and a full name are required")
    token = api_token or secrets.token_urlsafe(32)
    with session_scope() as s:
        u = User(email=email, full_name=full_name.strip(),
                 api_token_hash=hash_token(token), created_at=_now_utc())
        s.add(u)
        s.flush()
        return u.id, token
