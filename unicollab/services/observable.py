"""Subscribe/notify plumbing shared by the stateful services."""
from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

S = TypeVar("S")
Listener = Callable[[S], None]


class Observable(Generic[S]):
    """Owns a piece of state and pushes read-only snapshots to listeners."""

    def __init__(self) -> None:
        self._listeners: list[Listener[S]] = []

    @property
    def snapshot(self) -> S:
        raise NotImplementedError

    def subscribe(self, listener: Listener[S]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        current = self.snapshot
        for listener in list(self._listeners):
            try:
                listener(current)
            except Exception:
                logger.exception("State listener failed in %s", type(self).__name__)


__all__ = ["Observable", "Listener"]
