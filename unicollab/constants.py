"""Project-wide constant values."""
from __future__ import annotations

APP_NAME = "UniCollab"

PAGINATION_PAGE_SIZE = 10

MAX_FILE_UPLOAD_SIZE_MB = 5
ALLOWED_FILE_TYPES = frozenset(
    {
        "application/pdf",
        "image/jpeg",
        "image/png",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }
)

CHAT_ATTACHMENTS_BUCKET = "project-chat-attachments"
MIN_PASSWORD_LENGTH = 8

SIGNUP_CONFIRMATION_MESSAGE = "Signup successful! Please check your email to confirm your account."
NOT_LOGGED_IN_MESSAGE = "User not logged in"

__all__ = [
    "APP_NAME",
    "PAGINATION_PAGE_SIZE",
    "MAX_FILE_UPLOAD_SIZE_MB",
    "ALLOWED_FILE_TYPES",
    "CHAT_ATTACHMENTS_BUCKET",
    "MIN_PASSWORD_LENGTH",
    "SIGNUP_CONFIRMATION_MESSAGE",
    "NOT_LOGGED_IN_MESSAGE",
]
