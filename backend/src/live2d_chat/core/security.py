from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from .config import settings
from .database import get_session
from ..repositories.user_repository import UserRepository
from ..models.user import User


# Principal name carried by callers that sent no credentials at all
ANONYMOUS_PRINCIPAL = "anonymousUser"

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=True)
optional_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Authentication:
    principal_name: str
    is_authenticated: bool

    @classmethod
    def anonymous(cls) -> "Authentication":
        # Anonymous contexts are flagged authenticated; only the principal name tells them apart.
        return cls(principal_name=ANONYMOUS_PRINCIPAL, is_authenticated=True)


def is_anonymous_user(name: str | None) -> bool:
    return name == ANONYMOUS_PRINCIPAL


def is_authenticated(authentication: Authentication | None) -> bool:
    if authentication is None:
        return False
    return not is_anonymous_user(authentication.principal_name) and authentication.is_authenticated


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def create_access_token(subject: str, expires_minutes: int | None = None) -> str:
    expires_delta = timedelta(minutes=expires_minutes or settings.jwt_expiration_minutes)
    expire_at = datetime.now(tz=timezone.utc) + expires_delta
    payload: dict[str, Any] = {"sub": subject, "exp": expire_at}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> str:
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc
    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return subject


class RequestAuthentication:
    """Authentication context of the current request, resolved on first use.

    Callers without a bearer token get the anonymous context. A token that does
    not decode is rejected with 401; a token naming an unknown or disabled user
    yields a context that is not authenticated.
    """

    def __init__(self, credentials: HTTPAuthorizationCredentials | None, session: Session):
        self.credentials = credentials
        self.session = session
        self._resolved: Authentication | None = None

    async def current(self) -> Authentication | None:
        if self._resolved is not None:
            return self._resolved
        if self.credentials is None:
            self._resolved = Authentication.anonymous()
            return self._resolved
        username = decode_access_token(self.credentials.credentials)
        user = await run_in_threadpool(UserRepository(self.session).get_by_username, username)
        self._resolved = Authentication(
            principal_name=username,
            is_authenticated=bool(user and user.is_active),
        )
        return self._resolved


def get_request_authentication(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_bearer_scheme),
    session: Session = Depends(get_session),
) -> RequestAuthentication:
    return RequestAuthentication(credentials, session)


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    session: Session = Depends(get_session),
) -> User:
    username = decode_access_token(credentials.credentials)
    user = UserRepository(session).get_by_username(username)
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return user


def user_is_admin(user: User | None) -> bool:
    return bool(user and user.is_admin and user.username == settings.admin_username)
