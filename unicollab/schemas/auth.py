"""Pydantic schemas for the authentication session lifecycle."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .profiles import UserRole


class AuthEventKind(StrEnum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"


class SignUpStatus(StrEnum):
    CONFIRMATION_REQUIRED = "confirmation_required"
    ACTIVE = "active"


class AuthUser(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    email: str | None = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)


class AuthSession(BaseModel):
    """Opaque credential plus expiry. Replaced wholesale on every auth event."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str
    refresh_token: str | None = None
    token_type: str = "bearer"
    expires_in: int | None = None
    expires_at: datetime | None = None
    user: AuthUser | None = None

    @property
    def user_id(self) -> str | None:
        return self.user.id if self.user else None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at


class AuthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: AuthUser | None = None
    session: AuthSession | None = None


class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    name: str = Field(..., min_length=1, max_length=120)
    institution: str = Field(..., min_length=1, max_length=200)
    role: UserRole
    is_anonymous: bool = False

    def profile_metadata(self) -> dict[str, Any]:
        """Metadata handed to the backend so it can provision the profile row."""

        return {
            "name": self.name.strip(),
            "institution": self.institution.strip(),
            "role": self.role.value,
            # Only research leads may hide their identity.
            "is_anonymous": self.is_anonymous if self.role is UserRole.RESEARCH_LEAD else False,
        }


__all__ = [
    "AuthEventKind",
    "SignUpStatus",
    "AuthUser",
    "AuthSession",
    "AuthResponse",
    "SignUpRequest",
]
