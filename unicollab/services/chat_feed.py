"""Realtime project chat: history, live inserts and sending."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from ..clients.base import QueryClient, RealtimeChannel, RealtimeClient, StorageClient
from ..clients.storage import UploadFile, build_object_key, validate_upload
from ..constants import CHAT_ATTACHMENTS_BUCKET
from ..errors import AuthError, CollabError, Outcome, QueryError, RealtimeHydrationError, UploadError
from ..schemas import ChatMessage, ChatParticipants, SenderSummary
from .observable import Observable
from .session_store import SessionStore
from .toast_service import ToastNotifier

logger = logging.getLogger(__name__)

MESSAGE_TABLE = "messages"
SENDER_COLUMNS = "id, name, profile_photo_url"
MESSAGE_WITH_SENDER = f"*, sender_user:users({SENDER_COLUMNS})"


@dataclass(frozen=True, slots=True)
class ChatFeedState:
    messages: tuple[ChatMessage, ...]
    is_open: bool
    is_loading: bool
    is_sending: bool


class ProjectChatFeed(Observable[ChatFeedState]):
    """Ordered message list for one project, kept current from push events.

    Eligibility (owner or accepted contributor) is checked once in
    :meth:`open`. A viewer who loses eligibility while the channel is open
    keeps receiving events until :meth:`close` is called.
    """

    def __init__(
        self,
        participants: ChatParticipants,
        *,
        sessions: SessionStore,
        queries: QueryClient,
        realtime: RealtimeClient,
        storage: StorageClient | None = None,
        toasts: ToastNotifier | None = None,
    ) -> None:
        super().__init__()
        self._participants = participants
        self._sessions = sessions
        self._queries = queries
        self._realtime = realtime
        self._storage = storage
        self._toasts = toasts

        self._messages: tuple[ChatMessage, ...] = ()
        self._channel: RealtimeChannel | None = None
        self._loading = False
        self._sending = False

    @property
    def project_id(self) -> str:
        return self._participants.project_id

    @property
    def topic(self) -> str:
        return f"project-chat-{self.project_id}"

    @property
    def snapshot(self) -> ChatFeedState:
        return ChatFeedState(
            messages=self._messages,
            is_open=self._channel is not None,
            is_loading=self._loading,
            is_sending=self._sending,
        )

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return self._messages

    @property
    def is_open(self) -> bool:
        return self._channel is not None

    def _fail(self, error: CollabError, fallback: str) -> Outcome[Any]:
        if self._toasts is not None:
            self._toasts.report(error, fallback)
        return Outcome.failure(error)

    # -- subscription -----------------------------------------------------

    async def open(self) -> bool:
        if self._channel is not None:
            return True
        user_id = self._sessions.snapshot.user_id
        if not self._participants.can_chat(user_id):
            logger.info("User %s may not join chat for project %s", user_id, self.project_id)
            return False

        # Subscribe before reading history; pushes received meanwhile are kept and de-duplicated by id.
        self._channel = (
            self._realtime.channel(self.topic)
            .on("INSERT", table=MESSAGE_TABLE, filter=f"project_id=eq.{self.project_id}", handler=self.handle_insert)
            .subscribe()
        )
        self._notify()
        await self.load_history()
        return True

    async def close(self) -> None:
        channel = self._channel
        if channel is None:
            return
        self._channel = None
        await self._realtime.remove_channel(channel)
        logger.info("Left chat for project %s", self.project_id)
        self._notify()

    async def load_history(self) -> Outcome[list[ChatMessage]]:
        self._loading = True
        self._notify()
        try:
            result = await (
                self._queries.table(MESSAGE_TABLE)
                .select(MESSAGE_WITH_SENDER)
                .eq("project_id", self.project_id)
                .order("created_at")
                .execute()
            )
            history = [ChatMessage.model_validate(row) for row in result.data or []]
        except QueryError as exc:
            return self._fail(exc, "Failed to load messages.")
        except ValidationError:
            return self._fail(QueryError("Message data was malformed"), "Failed to load messages.")
        finally:
            self._loading = False
            self._notify()

        known = {message.id for message in history}
        live = tuple(message for message in self._messages if message.id not in known)
        self._messages = tuple(history) + live
        self._notify()
        return Outcome.success(history)

    # -- merge ------------------------------------------------------------

    async def handle_insert(self, payload: dict[str, Any]) -> None:
        record = payload.get("new") or {}
        try:
            message = ChatMessage.model_validate(record)
        except ValidationError:
            logger.warning("Ignoring malformed realtime message on %s", self.topic)
            return

        if message.sender_user is None:
            try:
                sender = await self.hydrate_sender(message.sender_user_id)
            except RealtimeHydrationError as exc:
                logger.warning("Appending message %s without sender details: %s", message.id, exc.message)
            else:
                message = message.model_copy(update={"sender_user": sender})
        self.merge(message)

    async def hydrate_sender(self, user_id: str) -> SenderSummary:
        try:
            result = await self._queries.table("users").select(SENDER_COLUMNS).eq("id", user_id).single().execute()
            return SenderSummary.model_validate(result.data)
        except QueryError as exc:
            raise RealtimeHydrationError(exc.message, status_code=exc.status_code) from exc
        except ValidationError as exc:
            raise RealtimeHydrationError("Sender data was malformed") from exc

    def merge(self, message: ChatMessage) -> bool:
        """Append ``message`` at the tail unless its id is already present."""

        for index, existing in enumerate(self._messages):
            if existing.id != message.id:
                continue
            if existing.sender_user is None and message.sender_user is not None:
                self._messages = self._messages[:index] + (message,) + self._messages[index + 1 :]
                self._notify()
            return False
        self._messages = self._messages + (message,)
        self._notify()
        return True

    # -- sending ----------------------------------------------------------

    async def send(self, text: str, attachment: UploadFile | None = None) -> Outcome[ChatMessage]:
        body = text.strip()
        if not body and attachment is None:
            return Outcome.success()
        user_id = self._sessions.snapshot.user_id
        if user_id is None:
            return self._fail(AuthError("You must be logged in to send messages."), "Failed to send message.")
        if not self._participants.can_chat(user_id):
            return self._fail(AuthError("Only project participants can send messages."), "Failed to send message.")

        self._sending = True
        self._notify()
        try:
            attachment_url = await self._upload(user_id, attachment) if attachment is not None else None
            row: dict[str, Any] = {
                "project_id": self.project_id,
                "sender_user_id": user_id,
                "message_text": body,
            }
            if attachment_url:
                row["attachment_url"] = attachment_url
            result = await self._queries.table(MESSAGE_TABLE).insert(row).select(MESSAGE_WITH_SENDER).single().execute()
            message = ChatMessage.model_validate(result.data)
        except UploadError as exc:
            return self._fail(UploadError(f"Failed to upload attachment: {exc.message}"), "Failed to upload attachment.")
        except QueryError as exc:
            return self._fail(exc, "Failed to send message.")
        except ValidationError:
            return self._fail(QueryError("Message data was malformed"), "Failed to send message.")
        finally:
            self._sending = False
            self._notify()

        self.merge(message)
        return Outcome.success(message)

    async def _upload(self, user_id: str, attachment: UploadFile) -> str:
        if self._storage is None:
            raise UploadError("File uploads are not configured")
        validate_upload(attachment)
        key = build_object_key(user_id, attachment.filename)
        return await self._storage.upload(
            CHAT_ATTACHMENTS_BUCKET, key, attachment.content, content_type=attachment.resolved_content_type
        )


__all__ = ["ChatFeedState", "ProjectChatFeed"]
