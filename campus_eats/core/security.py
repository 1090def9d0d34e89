"""
Campus Eats — Caller identity

Tokens are issued by the identity service (shared secret); this service only
decodes them. Workflow functions never read the request: routes turn the
claims into a CurrentUser and pass it in explicitly.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any

from jose import jwt

from campus_eats.core.config import get_settings

settings = get_settings()


class UserRole(str, Enum):
    STUDENT = "STUDENT"
    WORKER = "WORKER"
    MANAGER = "MANAGER"


@dataclass(frozen=True)
class CurrentUser:
    user_id: str
    role: UserRole = UserRole.STUDENT

    @property
    def is_manager(self) -> bool:
        return self.role == UserRole.MANAGER

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.WORKER, UserRole.MANAGER)


def decode_token(token: str) -> dict[str, Any]:
    """Decode and validate a JWT. Raises JWTError on failure."""
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def current_user_from_claims(claims: dict[str, Any]) -> CurrentUser:
    """Build the caller from decoded claims. Unknown roles fall back to STUDENT."""
    user_id = claims.get("sub")
    if not user_id:
        raise ValueError("Token has no subject.")
    try:
        role = UserRole(str(claims.get("role", UserRole.STUDENT.value)).upper())
    except ValueError:
        role = UserRole.STUDENT
    return CurrentUser(user_id=str(user_id), role=role)
