"""Snapshot-before-mutate helper for optimistic UI updates."""
from __future__ import annotations

import logging
from enum import StrEnum
from typing import Awaitable, Callable, Generic, TypeVar

from ..errors import CollabError

logger = logging.getLogger(__name__)

S = TypeVar("S")
R = TypeVar("R")


class Phase(StrEnum):
    PENDING = "pending"
    APPLIED = "applied"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class OptimisticUpdate(Generic[S]):
    """Apply a local change now, then either commit it or restore the snapshot.

    ``capture`` returns whatever ``restore`` needs to put the touched state
    back exactly as it was before :meth:`apply`.
    """

    def __init__(self, *, capture: Callable[[], S], restore: Callable[[S], None], label: str = "update") -> None:
        self._capture = capture
        self._restore = restore
        self._label = label
        self._snapshot: S | None = None
        self.phase = Phase.PENDING

    def apply(self, mutate: Callable[[], None]) -> None:
        if self.phase is not Phase.PENDING:
            raise RuntimeError(f"{self._label} already {self.phase}")
        self._snapshot = self._capture()
        mutate()
        self.phase = Phase.APPLIED

    def commit(self) -> None:
        if self.phase is not Phase.APPLIED:
            raise RuntimeError(f"cannot commit {self._label} in phase {self.phase}")
        self._snapshot = None
        self.phase = Phase.COMMITTED

    def rollback(self) -> None:
        if self.phase is not Phase.APPLIED:
            raise RuntimeError(f"cannot roll back {self._label} in phase {self.phase}")
        self._restore(self._snapshot)  # type: ignore[arg-type]
        self._snapshot = None
        self.phase = Phase.ROLLED_BACK
        logger.warning("Rolled back optimistic %s", self._label)

    async def run(self, mutate: Callable[[], None], request: Callable[[], Awaitable[R]]) -> R:
        """Apply, await ``request``, then commit; roll back and re-raise on failure."""

        self.apply(mutate)
        try:
            result = await request()
        except CollabError:
            self.rollback()
            raise
        self.commit()
        return result


__all__ = ["OptimisticUpdate", "Phase"]
