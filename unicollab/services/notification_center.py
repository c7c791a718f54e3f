"""Paginated feed of persisted notifications plus the unread counter."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import ValidationError

from ..clients.base import QueryClient
from ..constants import NOT_LOGGED_IN_MESSAGE, PAGINATION_PAGE_SIZE
from ..errors import AuthError, CollabError, Outcome, QueryError
from ..schemas import AppNotification
from .observable import Observable
from .optimistic import OptimisticUpdate
from .session_store import SessionSnapshot, SessionStore
from .toast_service import ToastNotifier

logger = logging.getLogger(__name__)

NOTIFICATION_TABLE = "notifications"


@dataclass(frozen=True, slots=True)
class NotificationFeedState:
    notifications: tuple[AppNotification, ...]
    unread_count: int
    is_loading: bool
    has_more: bool
    current_page: int


class NotificationCenter(Observable[NotificationFeedState]):
    """Newest-first notification list scoped to the signed-in user.

    Page 1 replaces the list, later pages append without duplicating ids.
    Every page-1 fetch opens a new generation; appends that resolve for an
    older generation are dropped so a reset never inherits stale rows.
    """

    def __init__(
        self,
        queries: QueryClient,
        sessions: SessionStore,
        *,
        page_size: int = PAGINATION_PAGE_SIZE,
        toasts: ToastNotifier | None = None,
    ) -> None:
        super().__init__()
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self._queries = queries
        self._sessions = sessions
        self._page_size = page_size
        self._toasts = toasts

        self._notifications: tuple[AppNotification, ...] = ()
        self._unread_count = 0
        self._in_flight = 0
        self._has_more = True
        self._current_page = 1
        self._generation = 0

        self._bound_user_id: str | None = None
        self._unbind: Callable[[], None] | None = None
        self._pending: set[asyncio.Task[Any]] = set()

    @property
    def snapshot(self) -> NotificationFeedState:
        return NotificationFeedState(
            notifications=self._notifications,
            unread_count=self._unread_count,
            is_loading=self._in_flight > 0,
            has_more=self._has_more,
            current_page=self._current_page,
        )

    @property
    def notifications(self) -> tuple[AppNotification, ...]:
        return self._notifications

    @property
    def unread_count(self) -> int:
        return self._unread_count

    @property
    def is_loading(self) -> bool:
        return self._in_flight > 0

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def current_page(self) -> int:
        return self._current_page

    def _user_id(self) -> str | None:
        return self._sessions.snapshot.user_id

    def _fail(self, error: CollabError, fallback: str) -> Outcome[Any]:
        if self._toasts is not None:
            self._toasts.report(error, fallback)
        return Outcome.failure(error)

    # -- session binding --------------------------------------------------

    def bind(self) -> None:
        """Follow identity changes of the session store."""

        if self._unbind is not None:
            return
        self._unbind = self._sessions.subscribe(self._on_session_change)
        self._on_session_change(self._sessions.snapshot)

    def _on_session_change(self, snapshot: SessionSnapshot) -> None:
        user_id = snapshot.user_id
        if user_id == self._bound_user_id:
            return
        self._bound_user_id = user_id
        self.reset()
        if user_id is None:
            return
        task = asyncio.get_running_loop().create_task(self.fetch_page(1))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def reset(self) -> None:
        self._generation += 1
        self._notifications = ()
        self._unread_count = 0
        self._has_more = True
        self._current_page = 1
        self._notify()

    async def wait_idle(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        if self._unbind is not None:
            self._unbind()
            self._unbind = None
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # -- reads ------------------------------------------------------------

    async def fetch_page(self, page: int = 1, page_size: int | None = None) -> Outcome[list[AppNotification]]:
        if page < 1:
            raise ValueError("page must be >= 1")
        size = page_size or self._page_size
        user_id = self._user_id()
        if user_id is None:
            self._notifications = ()
            self._has_more = False
            if page == 1:
                self._current_page = 1
            self._notify()
            return Outcome.success([])

        if page == 1:
            self._generation += 1
        generation = self._generation
        start = (page - 1) * size

        self._in_flight += 1
        self._notify()
        try:
            try:
                result = await (
                    self._queries.table(NOTIFICATION_TABLE)
                    .select("*", count="exact")
                    .eq("user_id", user_id)
                    .order("created_at", desc=True)
                    .range(start, start + size - 1)
                    .execute()
                )
                items = [AppNotification.model_validate(row) for row in result.data or []]
            except ValidationError as exc:
                raise QueryError("Notification data was malformed") from exc
        except QueryError as exc:
            logger.warning("Failed to fetch notifications page %d: %s", page, exc.message)
            if generation == self._generation:
                if page == 1:
                    self._notifications = ()
                self._has_more = False
            return self._fail(exc, "Failed to load notifications.")
        else:
            applied = self._apply_page(generation, user_id, page, size, items)
        finally:
            self._in_flight -= 1
            self._notify()

        if not applied:
            return Outcome.success(items)

        await self.refresh_unread_count()
        return Outcome.success(items)

    def _apply_page(
        self, generation: int, user_id: str, page: int, size: int, items: list[AppNotification]
    ) -> bool:
        if generation != self._generation or user_id != self._user_id():
            logger.debug("Dropping notifications page %d from a superseded fetch", page)
            return False
        if page == 1:
            self._notifications = tuple(items)
        else:
            seen = {item.id for item in self._notifications}
            fresh = [item for item in items if item.id not in seen]
            self._notifications = self._notifications + tuple(fresh)
        self._current_page = page
        self._has_more = len(items) == size
        return True

    async def load_more(self) -> Outcome[list[AppNotification]] | None:
        if self.is_loading or not self._has_more or self._user_id() is None:
            return None
        return await self.fetch_page(self._current_page + 1)

    async def refresh_unread_count(self) -> None:
        user_id = self._user_id()
        if user_id is None:
            self._unread_count = 0
            self._notify()
            return
        try:
            result = await (
                self._queries.table(NOTIFICATION_TABLE)
                .select("*", count="exact", head=True)
                .eq("user_id", user_id)
                .eq("is_read", False)
                .execute()
            )
        except QueryError as exc:
            logger.warning("Failed to refresh unread count: %s", exc.message)
            return
        if user_id != self._user_id():
            return
        self._unread_count = max(0, result.count or 0)
        self._notify()

    # -- read markers -----------------------------------------------------

    def _replace(self, replacement: AppNotification) -> None:
        self._notifications = tuple(
            replacement if item.id == replacement.id else item for item in self._notifications
        )

    async def mark_as_read(self, notification_id: str) -> Outcome[None]:
        if self._user_id() is None:
            return self._fail(AuthError(NOT_LOGGED_IN_MESSAGE), NOT_LOGGED_IN_MESSAGE)

        target = next((item for item in self._notifications if item.id == notification_id), None)
        decremented = False

        # Rollback undoes only this call's own flip and decrement; other
        # markers may have landed while the request was in flight.
        def capture() -> bool:
            return target is not None and not target.is_read

        def restore(was_unread: bool) -> None:
            if was_unread:
                current = next((item for item in self._notifications if item.id == notification_id), None)
                if current is not None and current.is_read:
                    self._replace(current.model_copy(update={"is_read": False}))
            if decremented:
                self._unread_count += 1
            self._notify()

        def mutate() -> None:
            nonlocal decremented
            if target is None:
                return
            self._replace(target.as_read())
            if not target.is_read and self._unread_count > 0:
                self._unread_count -= 1
                decremented = True
            self._notify()

        async def request() -> None:
            await (
                self._queries.table(NOTIFICATION_TABLE)
                .update({"is_read": True})
                .eq("id", notification_id)
                .select()
                .single()
                .execute()
            )

        update: OptimisticUpdate[bool] = OptimisticUpdate(
            capture=capture, restore=restore, label=f"mark-read {notification_id}"
        )
        try:
            await update.run(mutate, request)
        except QueryError as exc:
            return self._fail(exc, "Failed to mark notification as read.")
        return Outcome.success()

    async def mark_all_as_read(self) -> Outcome[None]:
        user_id = self._user_id()
        if user_id is None:
            return self._fail(AuthError(NOT_LOGGED_IN_MESSAGE), NOT_LOGGED_IN_MESSAGE)

        def capture() -> tuple[tuple[AppNotification, ...], int]:
            return self._notifications, self._unread_count

        def restore(snapshot: tuple[tuple[AppNotification, ...], int]) -> None:
            self._notifications, self._unread_count = snapshot
            self._notify()

        def mutate() -> None:
            self._notifications = tuple(item.as_read() for item in self._notifications)
            self._unread_count = 0
            self._notify()

        async def request() -> None:
            await (
                self._queries.table(NOTIFICATION_TABLE)
                .update({"is_read": True})
                .eq("user_id", user_id)
                .eq("is_read", False)
                .select()
                .execute()
            )

        update: OptimisticUpdate[tuple[tuple[AppNotification, ...], int]] = OptimisticUpdate(
            capture=capture, restore=restore, label="mark-all-read"
        )
        try:
            await update.run(mutate, request)
        except QueryError as exc:
            return self._fail(exc, "Failed to mark all notifications as read.")
        return Outcome.success()


__all__ = ["NotificationCenter", "NotificationFeedState"]
