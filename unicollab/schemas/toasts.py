"""Schemas for transient toast messages."""
from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class ToastSeverity(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"
    WARNING = "warning"


class ToastMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    severity: ToastSeverity = ToastSeverity.INFO
    ttl: float = Field(..., gt=0)


__all__ = ["ToastSeverity", "ToastMessage"]
