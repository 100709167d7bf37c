import secrets
from datetime import datetime
from typing import Mapping, Optional, Protocol

from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from sqlalchemy.engine import Engine
from sqlmodel import select
from starlette.requests import cookie_parser
from werkzeug.security import check_password_hash, generate_password_hash

from ..cache.cache_service import CacheService
from ..db import get_session
from ..models import Role, User, UserSession, utcnow


class AuthUser(BaseModel):
    id: str
    email: str
    name: str
    role: Role


class SessionResult(BaseModel):
    user: AuthUser
    session_id: str
    expires_at: datetime


class SessionResolver(Protocol):
    async def get_session(self, headers: Mapping[str, str]) -> Optional[SessionResult]: ...


# -------- passwords & tokens --------


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, encoded: Optional[str]) -> bool:
    if not encoded:
        return False
    try:
        return check_password_hash(encoded, password)
    except ValueError:
        # unknown method or malformed parameters in the stored hash
        return False


def new_session_token() -> str:
    return secrets.token_urlsafe(32)


def extract_token(headers: Mapping[str, str], cookie_name: str) -> Optional[str]:
    """Session token from the session cookie, else from a Bearer header."""
    cookie_header = headers.get("cookie")
    if cookie_header:
        token = cookie_parser(cookie_header).get(cookie_name)
        if token:
            return token
    auth = headers.get("authorization") or ""
    scheme, _, value = auth.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


# -------- default resolver --------


class DbSessionResolver:
    """Resolves sessions from the `session` table; user profiles are cached."""

    def __init__(self, engine: Engine, cache: CacheService, cookie_name: str):
        self.engine = engine
        self.cache = cache
        self.cookie_name = cookie_name

    def _lookup(self, token: str) -> Optional[UserSession]:
        with get_session(self.engine) as s:
            return s.exec(
                select(UserSession).where(
                    UserSession.token == token, UserSession.expires_at > utcnow()
                )
            ).first()

    def _load_user(self, user_id: str) -> Optional[User]:
        with get_session(self.engine) as s:
            return s.get(User, user_id)

    async def get_session(self, headers: Mapping[str, str]) -> Optional[SessionResult]:
        token = extract_token(headers, self.cookie_name)
        if not token:
            return None

        row = await run_in_threadpool(self._lookup, token)
        if row is None:
            return None

        profile = await self.cache.get_user_session(row.user_id)
        if profile is None:
            user = await run_in_threadpool(self._load_user, row.user_id)
            if user is None:
                return None
            profile = AuthUser(
                id=user.id, email=user.email, name=user.name, role=user.role
            ).model_dump(mode="json")
            await self.cache.cache_user_session(row.user_id, profile)

        return SessionResult(
            user=AuthUser(**profile), session_id=row.id, expires_at=row.expires_at
        )
