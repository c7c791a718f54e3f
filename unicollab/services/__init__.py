"""Convenience exports for service layer."""
from .chat_feed import ChatFeedState, ProjectChatFeed
from .notification_center import NotificationCenter, NotificationFeedState
from .observable import Observable
from .optimistic import OptimisticUpdate, Phase
from .session_store import SessionSnapshot, SessionStore, email_domain
from .toast_service import Scheduler, TimerHandle, ToastNotifier

__all__ = [
    "ChatFeedState",
    "ProjectChatFeed",
    "NotificationCenter",
    "NotificationFeedState",
    "Observable",
    "OptimisticUpdate",
    "Phase",
    "SessionSnapshot",
    "SessionStore",
    "email_domain",
    "Scheduler",
    "TimerHandle",
    "ToastNotifier",
]
