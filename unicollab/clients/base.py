"""Contracts for the hosted backend collaborators the core talks to.

The services only depend on these protocols. Concrete HTTP adapters live in
sibling modules; tests substitute in-memory fakes.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from ..schemas import AuthEventKind, AuthResponse, AuthSession, AuthUser

AuthStateHandler = Callable[[AuthEventKind, AuthSession | None], None]
RowChangeHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class QueryResult:
    data: Any
    count: int | None = None


class AuthSubscription(Protocol):
    def unsubscribe(self) -> None:
        """Stop delivering auth events to the handler."""
        ...


class AuthClient(Protocol):
    async def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> AuthResponse:
        ...

    async def sign_in_with_password(self, email: str, password: str) -> AuthResponse:
        ...

    async def sign_out(self) -> None:
        ...

    async def get_session(self) -> AuthSession | None:
        ...

    def on_auth_state_change(self, handler: AuthStateHandler) -> AuthSubscription:
        """Register ``handler``; events are delivered in order, synchronously."""
        ...

    async def update_user(self, fields: dict[str, Any]) -> AuthUser:
        ...

    async def reset_password_for_email(self, email: str, redirect_to: str | None = None) -> None:
        ...


class QueryBuilder(Protocol):
    def select(self, columns: str = "*", *, count: str | None = None, head: bool = False) -> "QueryBuilder":
        ...

    def insert(self, values: dict[str, Any] | list[dict[str, Any]]) -> "QueryBuilder":
        ...

    def update(self, values: dict[str, Any]) -> "QueryBuilder":
        ...

    def eq(self, column: str, value: Any) -> "QueryBuilder":
        ...

    def order(self, column: str, *, desc: bool = False) -> "QueryBuilder":
        ...

    def range(self, start: int, end: int) -> "QueryBuilder":
        ...

    def single(self) -> "QueryBuilder":
        ...

    async def execute(self) -> QueryResult:
        """Run the composed request; raise :class:`QueryError` on failure."""
        ...


class QueryClient(Protocol):
    def table(self, name: str) -> QueryBuilder:
        ...


class RealtimeChannel(Protocol):
    topic: str

    def on(self, event: str, *, table: str, filter: str | None, handler: RowChangeHandler) -> "RealtimeChannel":
        ...

    def subscribe(self) -> "RealtimeChannel":
        ...


class RealtimeClient(Protocol):
    def channel(self, topic: str) -> RealtimeChannel:
        ...

    async def remove_channel(self, channel: RealtimeChannel) -> None:
        ...


class StorageClient(Protocol):
    async def upload(self, bucket: str, key: str, content: bytes, *, content_type: str) -> str:
        """Store ``content`` under ``bucket/key`` and return its public URL."""
        ...


__all__ = [
    "AuthStateHandler",
    "RowChangeHandler",
    "QueryResult",
    "AuthSubscription",
    "AuthClient",
    "QueryBuilder",
    "QueryClient",
    "RealtimeChannel",
    "RealtimeClient",
    "StorageClient",
]
