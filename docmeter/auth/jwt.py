"""JWT issuance and bearer-token authentication helpers."""
from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
from fastapi import Header

from docmeter.auth.principal import AnonymousSession, AuthenticatedUser, Principal
from docmeter.core.config import settings
from docmeter.core.exceptions import Unauthorized


MAX_SESSION_ID_LENGTH = 128


def create_access_token(
    account_id: int, email: str, expires_in: dt.timedelta | None = None
) -> str:
    """Sign a bearer token for an account."""

    if expires_in is None:
        expires_in = dt.timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS)
    now = dt.datetime.now(dt.timezone.utc)
    payload = {
        "sub": str(account_id),
        "email": email,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_access_token(token: str) -> AuthenticatedUser:
    """Verify signature and expiry and return the authenticated user."""

    try:
        payload: Dict[str, Any] = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALG],
            options={"require": ["sub", "exp"]},
        )
    except jwt.InvalidTokenError as exc:
        raise Unauthorized("Invalid or expired token") from exc

    try:
        account_id = int(payload["sub"])
    except (TypeError, ValueError) as exc:
        raise Unauthorized("Invalid account identifier") from exc

    return AuthenticatedUser(id=account_id, email=str(payload.get("email", "")))


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    return token or None


def require_auth(authorization: Optional[str] = Header(default=None)) -> AuthenticatedUser:
    """Strict policy: fail the request unless a valid bearer token is present."""

    token = _bearer_token(authorization)
    if token is None:
        raise Unauthorized("Access token required", headers={"WWW-Authenticate": "Bearer"})
    return decode_access_token(token)


def optional_auth(
    authorization: Optional[str] = Header(default=None),
) -> Optional[AuthenticatedUser]:
    """Optional policy: an absent or invalid token means an anonymous caller."""

    token = _bearer_token(authorization)
    if token is None:
        return None
    try:
        return decode_access_token(token)
    except Unauthorized:
        return None


@dataclass(frozen=True)
class ResolvedIdentity:
    principal: Principal
    # Set when the server minted a session id the client must persist
    issued_session_id: Optional[str] = None

    @property
    def session_id(self) -> Optional[str]:
        if isinstance(self.principal, AnonymousSession):
            return self.principal.session_id
        return None


class IdentityResolver:
    """Turns the outcome of token verification into the metering principal."""

    def __init__(self, session_id_factory=lambda: uuid.uuid4().hex) -> None:
        self.session_id_factory = session_id_factory

    def resolve(
        self, user: Optional[AuthenticatedUser], session_id: Optional[str]
    ) -> ResolvedIdentity:
        if user is not None:
            return ResolvedIdentity(principal=user)

        session_id = (session_id or "").strip()
        if session_id and len(session_id) <= MAX_SESSION_ID_LENGTH:
            return ResolvedIdentity(principal=AnonymousSession(session_id))

        issued = self.session_id_factory()
        return ResolvedIdentity(principal=AnonymousSession(issued), issued_session_id=issued)
