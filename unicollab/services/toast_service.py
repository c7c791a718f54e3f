"""Process-wide queue of transient toast messages."""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Callable, Protocol

from ..errors import CollabError
from ..schemas import ToastMessage, ToastSeverity
from .observable import Observable

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


Scheduler = Callable[[float, Callable[[], None]], TimerHandle]


def _loop_scheduler(delay: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class ToastNotifier(Observable[tuple[ToastMessage, ...]]):
    """Each toast removes itself after its ttl via its own timer."""

    def __init__(self, *, default_ttl: float = 5.0, scheduler: Scheduler | None = None) -> None:
        super().__init__()
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self._default_ttl = default_ttl
        self._scheduler = scheduler or _loop_scheduler
        self._entries: dict[str, ToastMessage] = {}
        self._timers: dict[str, TimerHandle] = {}

    @property
    def snapshot(self) -> tuple[ToastMessage, ...]:
        return tuple(self._entries.values())

    @property
    def entries(self) -> tuple[ToastMessage, ...]:
        return self.snapshot

    def add(self, text: str, severity: ToastSeverity = ToastSeverity.INFO, ttl: float | None = None) -> ToastMessage:
        toast = ToastMessage(
            id=uuid.uuid4().hex,
            text=text,
            severity=severity,
            ttl=self._default_ttl if ttl is None else ttl,
        )
        self._entries[toast.id] = toast
        self._timers[toast.id] = self._scheduler(toast.ttl, lambda: self._expire(toast.id))
        self._notify()
        return toast

    def success(self, text: str, ttl: float | None = None) -> ToastMessage:
        return self.add(text, ToastSeverity.SUCCESS, ttl)

    def error(self, text: str, ttl: float | None = None) -> ToastMessage:
        return self.add(text, ToastSeverity.ERROR, ttl)

    def info(self, text: str, ttl: float | None = None) -> ToastMessage:
        return self.add(text, ToastSeverity.INFO, ttl)

    def warning(self, text: str, ttl: float | None = None) -> ToastMessage:
        return self.add(text, ToastSeverity.WARNING, ttl)

    def report(self, error: CollabError, fallback: str) -> ToastMessage:
        """Surface ``error`` with its own message, or ``fallback`` when it has none."""

        text = error.message if error.message and error.message != error.default_message else fallback
        return self.error(text)

    def dismiss(self, toast_id: str) -> bool:
        timer = self._timers.pop(toast_id, None)
        if timer is not None:
            timer.cancel()
        if self._entries.pop(toast_id, None) is None:
            return False
        self._notify()
        return True

    def clear(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._entries.clear()
        self._notify()

    def _expire(self, toast_id: str) -> None:
        self._timers.pop(toast_id, None)
        if self._entries.pop(toast_id, None) is not None:
            logger.debug("Toast %s expired", toast_id)
            self._notify()


__all__ = ["ToastNotifier", "Scheduler", "TimerHandle"]
