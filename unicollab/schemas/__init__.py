"""Convenience exports for schema layer."""
from .auth import AuthEventKind, AuthResponse, AuthSession, AuthUser, SignUpRequest, SignUpStatus
from .messages import ChatMessage, ChatParticipants, SenderSummary
from .notifications import AppNotification, NotificationCategory
from .profiles import ProfileUpdateRequest, UserProfile, UserRole
from .toasts import ToastMessage, ToastSeverity

__all__ = [
    "AuthEventKind",
    "AuthResponse",
    "AuthSession",
    "AuthUser",
    "SignUpRequest",
    "SignUpStatus",
    "ChatMessage",
    "ChatParticipants",
    "SenderSummary",
    "AppNotification",
    "NotificationCategory",
    "ProfileUpdateRequest",
    "UserProfile",
    "UserRole",
    "ToastMessage",
    "ToastSeverity",
]
