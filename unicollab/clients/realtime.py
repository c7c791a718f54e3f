"""In-process realtime hub for row-change fan-out."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from .base import RowChangeHandler

logger = logging.getLogger(__name__)

ANY_EVENT = "*"


@dataclass(frozen=True, slots=True)
class _Binding:
    event: str
    table: str
    column: str | None
    value: str | None
    handler: RowChangeHandler

    def matches(self, table: str, event: str, record: dict[str, Any]) -> bool:
        if self.table != table:
            return False
        if self.event not in (ANY_EVENT, event):
            return False
        if self.column is None:
            return True
        return str(record.get(self.column)) == self.value


def _parse_filter(expression: str | None) -> tuple[str | None, str | None]:
    # Only ``column=eq.value`` filters are understood.
    if not expression:
        return None, None
    column, sep, rest = expression.partition("=")
    if not sep or not rest.startswith("eq."):
        raise ValueError(f"Unsupported realtime filter: {expression!r}")
    return column.strip(), rest[3:]


class HubChannel:
    """A named channel holding row-change bindings."""

    def __init__(self, hub: "RealtimeHub", topic: str) -> None:
        self._hub = hub
        self.topic = topic
        self._bindings: list[_Binding] = []
        self.subscribed = False

    def on(self, event: str, *, table: str, filter: str | None = None, handler: RowChangeHandler) -> "HubChannel":
        column, value = _parse_filter(filter)
        self._bindings.append(_Binding(event.upper(), table, column, value, handler))
        return self

    def subscribe(self) -> "HubChannel":
        self._hub._attach(self)
        self.subscribed = True
        logger.info("Subscribed to realtime channel %s", self.topic)
        return self

    def bindings_for(self, table: str, event: str, record: dict[str, Any]) -> list[RowChangeHandler]:
        return [binding.handler for binding in self._bindings if binding.matches(table, event, record)]


class RealtimeHub:
    """Tracks subscribed channels and delivers row-change payloads to them."""

    def __init__(self) -> None:
        self._channels: set[HubChannel] = set()
        self._lock = asyncio.Lock()

    def channel(self, topic: str) -> HubChannel:
        return HubChannel(self, topic)

    def _attach(self, channel: HubChannel) -> None:
        self._channels.add(channel)

    async def remove_channel(self, channel: HubChannel) -> None:
        async with self._lock:
            self._channels.discard(channel)
        channel.subscribed = False

    @property
    def channel_count(self) -> int:
        return len(self._channels)

    async def publish(self, table: str, event: str, record: dict[str, Any]) -> int:
        """Deliver a row change to every matching binding; return deliveries made."""

        payload = {"table": table, "eventType": event.upper(), "new": dict(record)}
        async with self._lock:
            targets = list(self._channels)
        delivered = 0
        for channel in targets:
            if not channel.subscribed:
                continue
            for handler in channel.bindings_for(table, event.upper(), record):
                try:
                    await handler(payload)
                    delivered += 1
                except Exception:
                    logger.exception("Realtime handler failed on channel %s; dropping it", channel.topic)
                    await self.remove_channel(channel)
                    break
        return delivered


__all__ = ["RealtimeHub", "HubChannel", "ANY_EVENT"]
