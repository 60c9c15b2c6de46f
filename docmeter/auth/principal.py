"""Metering subjects: authenticated accounts and anonymous browser sessions."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class AuthenticatedUser:
    id: int
    email: str = ""

    kind = "user"

    @property
    def key(self) -> str:
        return str(self.id)


@dataclass(frozen=True)
class AnonymousSession:
    session_id: str

    kind = "session"

    @property
    def key(self) -> str:
        return self.session_id


Principal = Union[AuthenticatedUser, AnonymousSession]


def principal_key(principal: Principal) -> tuple[str, str]:
    """Return the ``(kind, id)`` pair used as the storage key."""

    return principal.kind, principal.key
