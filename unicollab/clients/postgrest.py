"""Minimal PostgREST query builder over ``httpx``.

Only the composition the core needs is supported: column selection with
embedded joins, equality filters, ordering, ranges, exact counts, inserts
and updates. Row-level authorization is enforced by the server.
"""
from __future__ import annotations

import logging
from typing import Any, Callable

import httpx

from ..errors import QueryError
from .base import QueryResult

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str | None]


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def _parse_count(content_range: str | None) -> int | None:
    # Content-Range: 0-9/42 or */0
    if not content_range or "/" not in content_range:
        return None
    total = content_range.rsplit("/", 1)[1]
    if total == "*":
        return None
    try:
        return int(total)
    except ValueError:
        return None


class PostgrestQuery:
    """One request against a single table, built by chaining."""

    def __init__(self, client: "PostgrestClient", table: str) -> None:
        self._client = client
        self._table = table
        self._method = "GET"
        self._params: list[tuple[str, str]] = []
        self._headers: dict[str, str] = {}
        self._body: Any = None
        self._prefer: list[str] = []
        self._single = False

    def select(self, columns: str = "*", *, count: str | None = None, head: bool = False) -> "PostgrestQuery":
        self._params.append(("select", columns))
        if self._method in ("POST", "PATCH"):
            self._prefer.append("return=representation")
        elif head:
            self._method = "HEAD"
        if count:
            self._prefer.append(f"count={count}")
        return self

    def insert(self, values: dict[str, Any] | list[dict[str, Any]]) -> "PostgrestQuery":
        self._method = "POST"
        self._body = values
        return self

    def update(self, values: dict[str, Any]) -> "PostgrestQuery":
        self._method = "PATCH"
        self._body = values
        return self

    def eq(self, column: str, value: Any) -> "PostgrestQuery":
        self._params.append((column, f"eq.{_format_value(value)}"))
        return self

    def order(self, column: str, *, desc: bool = False) -> "PostgrestQuery":
        self._params.append(("order", f"{column}.{'desc' if desc else 'asc'}"))
        return self

    def range(self, start: int, end: int) -> "PostgrestQuery":
        if start < 0 or end < start:
            raise ValueError("range must satisfy 0 <= start <= end")
        self._headers["Range-Unit"] = "items"
        self._headers["Range"] = f"{start}-{end}"
        return self

    def single(self) -> "PostgrestQuery":
        self._single = True
        self._headers["Accept"] = "application/vnd.pgrst.object+json"
        return self

    async def execute(self) -> QueryResult:
        headers = dict(self._headers)
        if self._prefer:
            headers["Prefer"] = ",".join(self._prefer)
        return await self._client.send(self._method, self._table, self._params, headers, self._body)


class PostgrestClient:
    def __init__(
        self,
        base_url: str,
        anon_key: str,
        *,
        token_provider: TokenProvider | None = None,
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = f"{base_url.rstrip('/')}/rest/v1"
        self._anon_key = anon_key
        self._token_provider = token_provider
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def table(self, name: str) -> PostgrestQuery:
        return PostgrestQuery(self, name)

    def _auth_headers(self) -> dict[str, str]:
        token = self._token_provider() if self._token_provider else None
        return {"apikey": self._anon_key, "Authorization": f"Bearer {token or self._anon_key}"}

    async def send(
        self,
        method: str,
        table: str,
        params: list[tuple[str, str]],
        headers: dict[str, str],
        body: Any,
    ) -> QueryResult:
        url = f"{self._base_url}/{table}"
        merged = {**self._auth_headers(), **headers}
        try:
            response = await self._client.request(method, url, params=params, headers=merged, json=body)
        except httpx.HTTPError as exc:
            logger.error("Query transport error | table=%s method=%s error=%s", table, method, type(exc).__name__)
            raise QueryError(f"Failed to reach {table}") from exc

        if response.status_code >= 400:
            raise QueryError(self._error_message(response), code=self._error_code(response), status_code=response.status_code)

        count = _parse_count(response.headers.get("content-range"))
        if method == "HEAD" or not response.content:
            return QueryResult(data=None, count=count)
        try:
            data = response.json()
        except ValueError as exc:
            raise QueryError(f"Invalid response from {table}") from exc
        return QueryResult(data=data, count=count)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"Request failed with status {response.status_code}"
        if isinstance(body, dict) and isinstance(body.get("message"), str):
            return body["message"]
        return f"Request failed with status {response.status_code}"

    @staticmethod
    def _error_code(response: httpx.Response) -> str | None:
        try:
            body = response.json()
        except ValueError:
            return None
        code = body.get("code") if isinstance(body, dict) else None
        return str(code) if code is not None else None


__all__ = ["PostgrestClient", "PostgrestQuery"]
