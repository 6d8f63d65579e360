from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from cisa.core.config import get_settings
from cisa.core.constants import STAFF_ROLES, Role
from cisa.core.exceptions import PermissionDenied


@dataclass(frozen=True)
class AuthorizationContext:
    """Caller identity resolved once per request from the ``users`` table."""

    uid: str
    role: Role
    email: str | None = None
    assigned_competency: str | None = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN


def create_access_token(uid: str, email: str | None = None) -> str:
    """Mint a token the way the identity provider does; used by seed scripts and tests."""
    settings = get_settings()
    now = datetime.now(UTC)
    payload: dict[str, Any] = {
        "sub": uid,
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.jwt_access_ttl_min)).timestamp()),
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])


def ensure_staff(actor: AuthorizationContext, action: str) -> None:
    if not actor.is_staff:
        raise PermissionDenied(f"Only admins can {action}")


def ensure_can_author(actor: AuthorizationContext, competency: str) -> None:
    ensure_staff(actor, "manage exams")
    if actor.is_super_admin or not actor.assigned_competency:
        return
    if actor.assigned_competency != competency:
        raise PermissionDenied("Admins can only manage exams in their assigned competency")
