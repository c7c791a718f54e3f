"""Schemas for persisted in-app notifications."""
from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator


class NotificationCategory(StrEnum):
    NEW_APPLICATION = "new_application"
    APPLICATION_STATUS_UPDATE = "application_status_update"
    MILESTONE_UPDATE = "project_milestone_update"
    NEW_MESSAGE = "new_message_in_project"
    PROJECT_FUNDED = "project_funded"
    GENERIC = "generic_system_update"


class AppNotification(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    user_id: str
    type: NotificationCategory = NotificationCategory.GENERIC
    message: str
    link: str | None = None
    is_read: bool = False
    related_project_id: str | None = None
    related_application_id: str | None = None
    related_milestone_id: str | None = None
    created_at: datetime

    @field_validator("type", mode="before")
    def coerce_unknown_type(cls, v):
        # Rows written by newer backends may carry categories we do not know yet.
        try:
            return NotificationCategory(v)
        except ValueError:
            return NotificationCategory.GENERIC

    def as_read(self) -> "AppNotification":
        if self.is_read:
            return self
        return self.model_copy(update={"is_read": True})


__all__ = ["NotificationCategory", "AppNotification"]
