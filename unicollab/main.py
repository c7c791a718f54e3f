"""Composition root wiring settings, collaborators and services together."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .clients import PostgrestClient, RealtimeHub, SupabaseAuthClient, SupabaseStorageClient
from .clients.base import RealtimeClient
from .config import Settings, get_settings
from .schemas import ChatParticipants
from .security import require_secret
from .services import NotificationCenter, ProjectChatFeed, SessionStore, ToastNotifier

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a root handler once; later calls only adjust the level."""

    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=_LOG_FORMAT)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


@dataclass
class CollabClient:
    settings: Settings
    auth: SupabaseAuthClient
    queries: PostgrestClient
    storage: SupabaseStorageClient
    realtime: RealtimeClient
    toasts: ToastNotifier
    sessions: SessionStore
    notifications: NotificationCenter

    async def start(self) -> None:
        await self.sessions.start()
        self.notifications.bind()
        logger.info("%s client started", self.settings.app_name)

    def chat_feed(self, participants: ChatParticipants) -> ProjectChatFeed:
        return ProjectChatFeed(
            participants,
            sessions=self.sessions,
            queries=self.queries,
            realtime=self.realtime,
            storage=self.storage,
            toasts=self.toasts,
        )

    async def aclose(self) -> None:
        await self.notifications.close()
        await self.sessions.close()
        self.toasts.clear()
        await self.queries.aclose()
        await self.storage.aclose()
        await self.auth.aclose()


def build_client(settings: Settings | None = None, *, realtime: RealtimeClient | None = None) -> CollabClient:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    anon_key = require_secret("SUPABASE_ANON_KEY", settings.supabase_anon_key)

    auth = SupabaseAuthClient(settings.supabase_url, anon_key, timeout=settings.http_timeout)

    def _token() -> str | None:
        return auth.access_token

    queries = PostgrestClient(settings.supabase_url, anon_key, token_provider=_token, timeout=settings.http_timeout)
    storage = SupabaseStorageClient(settings.supabase_url, anon_key, token_provider=_token)
    toasts = ToastNotifier(default_ttl=settings.toast_default_ttl)
    sessions = SessionStore(
        auth,
        queries,
        allowed_domains=settings.allowed_email_domains,
        loading_timeout=settings.session_loading_timeout,
        toasts=toasts,
        password_reset_redirect=settings.password_reset_redirect_url,
    )
    notifications = NotificationCenter(
        queries, sessions, page_size=settings.notifications_page_size, toasts=toasts
    )
    return CollabClient(
        settings=settings,
        auth=auth,
        queries=queries,
        storage=storage,
        realtime=realtime or RealtimeHub(),
        toasts=toasts,
        sessions=sessions,
        notifications=notifications,
    )


__all__ = ["CollabClient", "build_client", "configure_logging"]
