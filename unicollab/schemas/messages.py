"""Schemas for project chat messages."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class SenderSummary(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    name: str | None = None
    profile_photo_url: str | None = None


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    project_id: str
    sender_user_id: str
    sender_user: SenderSummary | None = None
    message_text: str = ""
    attachment_url: str | None = None
    created_at: datetime

    @property
    def is_hydrated(self) -> bool:
        return self.sender_user is not None


class ChatParticipants(BaseModel):
    """Who may read and write a project's chat: the owner and accepted contributors."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    owner_id: str
    accepted_contributor_ids: frozenset[str] = Field(default_factory=frozenset)

    def can_chat(self, user_id: str | None) -> bool:
        if not user_id:
            return False
        return user_id == self.owner_id or user_id in self.accepted_contributor_ids


__all__ = ["SenderSummary", "ChatMessage", "ChatParticipants"]
