"""Schemas for user profiles."""
from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator


class UserRole(StrEnum):
    RESEARCH_LEAD = "research_lead"
    CONTRIBUTOR = "contributor"
    ADMIN = "admin"


def _clean_skills(values: list[str] | None) -> list[str]:
    if not values:
        return []
    cleaned: list[str] = []
    for raw in values:
        skill = (raw or "").strip()
        if skill and skill not in cleaned:
            cleaned.append(skill)
    return cleaned


class UserProfile(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    email: str | None = None
    role: UserRole
    name: str
    institution: str
    bio: str | None = None
    skills: list[str] = []
    profile_photo_url: str | None = None
    is_anonymous: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("skills", mode="before")
    def clean_skills(cls, v):
        return _clean_skills(v)


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    institution: str | None = None
    bio: str | None = None
    skills: list[str] | None = None
    profile_photo_url: str | None = None
    is_anonymous: bool | None = None

    @field_validator("skills", mode="before")
    def clean_skills(cls, v):
        if v is None:
            return None
        return _clean_skills(v)

    @field_validator("profile_photo_url", mode="before")
    def clean_photo(cls, v):
        if v in ("", "None"):
            return None
        return v


__all__ = ["UserRole", "UserProfile", "ProfileUpdateRequest"]
