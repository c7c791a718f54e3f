"""Notification feed tests: pagination, unread counter and optimistic read markers."""
from __future__ import annotations

import asyncio
from typing import Any

import pytest
import pytest_asyncio

from fakes import FakeAuth, FakeQueryClient, make_session, notification_row, profile_row
from unicollab.clients.base import QueryResult
from unicollab.errors import AuthError, QueryError
from unicollab.schemas import AuthEventKind
from unicollab.services import NotificationCenter, SessionStore


class NotificationTable:
    """Serves the notifications table from a newest-first list of rows."""

    def __init__(self, rows: list[dict[str, Any]]) -> None:
        self.rows = rows
        self.fail_selects = False
        self.fail_updates = False
        self.update_gate: asyncio.Event | None = None
        self.row_gates: dict[str, asyncio.Event] = {}
        self.failing_ids: set[str] = set()
        self.page_gates: dict[int, asyncio.Event] = {}

    def _matching(self, filters: dict[str, Any]) -> list[dict[str, Any]]:
        return [row for row in self.rows if all(row.get(key) == value for key, value in filters.items())]

    async def __call__(self, query) -> QueryResult:
        if query.method == "update":
            if self.update_gate is not None:
                await self.update_gate.wait()
            row_id = query.filters.get("id")
            if row_id in self.row_gates:
                await self.row_gates[row_id].wait()
            if self.fail_updates or row_id in self.failing_ids:
                raise QueryError("update rejected", status_code=500)
            matched = self._matching(query.filters)
            for row in matched:
                row.update(query.values)
            return QueryResult(matched[0] if query.is_single else matched)

        if self.fail_selects:
            raise QueryError("select rejected", status_code=500)
        matched = self._matching(query.filters)
        if query.head:
            return QueryResult(None, count=len(matched))
        start, end = query.bounds
        gate = self.page_gates.get(start)
        if gate is not None:
            await gate.wait()
        return QueryResult([dict(row) for row in matched[start : end + 1]], count=len(matched))


@pytest_asyncio.fixture
async def sessions(auth: FakeAuth, queries: FakeQueryClient) -> SessionStore:
    queries.on("users", lambda query: QueryResult(profile_row(query.filters["id"])))
    store = SessionStore(auth, queries)
    await store.start()
    auth.emit(AuthEventKind.SIGNED_IN, make_session("user-1"))
    await store.wait_idle()
    return store


def _install(queries: FakeQueryClient, rows: list[dict[str, Any]]) -> NotificationTable:
    table = NotificationTable(rows)
    queries.on("notifications", table)
    return table


@pytest.mark.asyncio
async def test_first_page_replaces_list_and_counts_unread(sessions, queries) -> None:
    _install(queries, [notification_row(i, is_read=i >= 3) for i in range(12)])
    center = NotificationCenter(queries, sessions, page_size=10)

    outcome = await center.fetch_page(1)

    assert outcome.ok
    assert [n.id for n in center.notifications] == [f"n-{i}" for i in range(10)]
    assert center.has_more is True
    assert center.current_page == 1
    assert center.unread_count == 3
    assert center.is_loading is False
    page_query = queries.queries_for("notifications")[0]
    assert page_query.bounds == (0, 9)
    assert page_query.ordering == [("created_at", True)]
    assert page_query.filters == {"user_id": "user-1"}


@pytest.mark.asyncio
async def test_load_more_appends_until_short_page(sessions, queries) -> None:
    _install(queries, [notification_row(i) for i in range(12)])
    center = NotificationCenter(queries, sessions, page_size=10)
    await center.fetch_page(1)

    await center.load_more()

    assert len(center.notifications) == 12
    assert center.current_page == 2
    assert center.has_more is False
    assert await center.load_more() is None


@pytest.mark.asyncio
async def test_refetching_a_page_does_not_duplicate_ids(sessions, queries) -> None:
    _install(queries, [notification_row(i) for i in range(12)])
    center = NotificationCenter(queries, sessions, page_size=10)
    await center.fetch_page(1)
    await center.fetch_page(2)

    await center.fetch_page(2)

    ids = [n.id for n in center.notifications]
    assert len(ids) == len(set(ids)) == 12


@pytest.mark.asyncio
async def test_page_one_discards_previously_loaded_pages(sessions, queries) -> None:
    _install(queries, [notification_row(i) for i in range(15)])
    center = NotificationCenter(queries, sessions, page_size=10)
    await center.fetch_page(1)
    await center.load_more()
    assert len(center.notifications) == 15

    await center.fetch_page(1)

    assert len(center.notifications) == 10
    assert center.current_page == 1


@pytest.mark.asyncio
async def test_full_last_page_reports_more_until_empty_page(sessions, queries) -> None:
    _install(queries, [notification_row(i) for i in range(10)])
    center = NotificationCenter(queries, sessions, page_size=10)

    await center.fetch_page(1)
    assert center.has_more is True

    await center.load_more()
    assert center.has_more is False
    assert len(center.notifications) == 10


@pytest.mark.asyncio
async def test_load_more_is_ignored_while_loading(sessions, queries) -> None:
    table = _install(queries, [notification_row(i) for i in range(25)])
    center = NotificationCenter(queries, sessions, page_size=10)
    await center.fetch_page(1)
    table.page_gates[10] = asyncio.Event()

    first = asyncio.create_task(center.load_more())
    await asyncio.sleep(0)
    assert center.is_loading is True
    assert await center.load_more() is None

    table.page_gates[10].set()
    await first
    assert center.current_page == 2
    assert len(center.notifications) == 20


@pytest.mark.asyncio
async def test_append_from_superseded_generation_is_dropped(sessions, queries) -> None:
    table = _install(queries, [notification_row(i) for i in range(25)])
    center = NotificationCenter(queries, sessions, page_size=10)
    await center.fetch_page(1)
    table.page_gates[10] = asyncio.Event()

    stale = asyncio.create_task(center.fetch_page(2))
    await asyncio.sleep(0)
    await center.fetch_page(1)
    table.page_gates[10].set()
    await stale

    assert [n.id for n in center.notifications] == [f"n-{i}" for i in range(10)]
    assert center.current_page == 1


@pytest.mark.asyncio
async def test_first_page_failure_clears_list(sessions, queries, toasts) -> None:
    table = _install(queries, [notification_row(i) for i in range(5)])
    center = NotificationCenter(queries, sessions, page_size=10, toasts=toasts)
    await center.fetch_page(1)
    table.fail_selects = True

    outcome = await center.fetch_page(1)

    assert not outcome.ok
    assert center.notifications == ()
    assert center.has_more is False
    assert center.is_loading is False
    assert toasts.entries[-1].text == "select rejected"


@pytest.mark.asyncio
async def test_signed_out_feed_is_empty(auth, queries) -> None:
    store = SessionStore(auth, queries)
    center = NotificationCenter(queries, store)

    outcome = await center.fetch_page(1)
    marked = await center.mark_as_read("n-1")

    assert outcome.ok and outcome.value == []
    assert center.has_more is False
    assert isinstance(marked.error, AuthError)
    assert queries.executed == []


@pytest.mark.asyncio
async def test_mark_as_read_is_optimistic(sessions, queries) -> None:
    table = _install(queries, [notification_row(i) for i in range(3)])
    center = NotificationCenter(queries, sessions)
    await center.fetch_page(1)
    table.update_gate = asyncio.Event()

    task = asyncio.create_task(center.mark_as_read("n-1"))
    await asyncio.sleep(0)
    assert center.notifications[1].is_read is True
    assert center.unread_count == 2

    table.update_gate.set()
    outcome = await task
    assert outcome.ok
    assert center.unread_count == 2
    update = queries.queries_for("notifications", "update")[0]
    assert update.values == {"is_read": True}
    assert update.filters == {"id": "n-1"}


@pytest.mark.asyncio
async def test_mark_as_read_failure_restores_exact_state(sessions, queries, toasts) -> None:
    table = _install(queries, [notification_row(i) for i in range(3)])
    center = NotificationCenter(queries, sessions, toasts=toasts)
    await center.fetch_page(1)
    before = center.snapshot
    table.fail_updates = True

    outcome = await center.mark_as_read("n-1")

    assert not outcome.ok
    assert center.notifications == before.notifications
    assert center.unread_count == before.unread_count == 3
    assert toasts.entries[-1].text == "update rejected"


@pytest.mark.asyncio
async def test_failed_mark_does_not_undo_a_concurrent_successful_mark(sessions, queries) -> None:
    table = _install(queries, [notification_row(i) for i in range(3)])
    center = NotificationCenter(queries, sessions)
    await center.fetch_page(1)
    table.row_gates["n-0"] = asyncio.Event()
    table.failing_ids.add("n-0")

    slow = asyncio.create_task(center.mark_as_read("n-0"))
    await asyncio.sleep(0)
    assert center.unread_count == 2

    assert (await center.mark_as_read("n-1")).ok
    assert center.unread_count == 1

    table.row_gates["n-0"].set()
    failed = await slow

    assert not failed.ok
    local_unread = [n.id for n in center.notifications if not n.is_read]
    server_unread = [row["id"] for row in table.rows if not row["is_read"]]
    assert local_unread == server_unread == ["n-0", "n-2"]
    assert center.unread_count == 2


@pytest.mark.asyncio
async def test_mark_as_read_on_read_item_keeps_counter(sessions, queries) -> None:
    _install(queries, [notification_row(0, is_read=True), notification_row(1)])
    center = NotificationCenter(queries, sessions)
    await center.fetch_page(1)

    await center.mark_as_read("n-0")

    assert center.unread_count == 1


@pytest.mark.asyncio
async def test_mark_all_as_read_clears_counter_before_server_confirms(sessions, queries) -> None:
    table = _install(queries, [notification_row(i, is_read=i not in (0, 2, 5)) for i in range(7)])
    center = NotificationCenter(queries, sessions)
    await center.fetch_page(1)
    assert center.unread_count == 3
    table.update_gate = asyncio.Event()

    task = asyncio.create_task(center.mark_all_as_read())
    await asyncio.sleep(0)
    assert center.unread_count == 0
    assert all(n.is_read for n in center.notifications)

    table.update_gate.set()
    outcome = await task
    assert outcome.ok
    assert center.unread_count == 0
    update = queries.queries_for("notifications", "update")[0]
    assert update.filters == {"user_id": "user-1", "is_read": False}


@pytest.mark.asyncio
async def test_mark_all_as_read_failure_rolls_back(sessions, queries, toasts) -> None:
    table = _install(queries, [notification_row(i, is_read=i not in (0, 2, 5)) for i in range(7)])
    center = NotificationCenter(queries, sessions, toasts=toasts)
    await center.fetch_page(1)
    before = center.snapshot
    table.fail_updates = True

    outcome = await center.mark_all_as_read()

    assert not outcome.ok
    assert center.notifications == before.notifications
    assert center.unread_count == 3


@pytest.mark.asyncio
async def test_bound_feed_follows_identity(auth, queries) -> None:
    queries.on("users", lambda query: QueryResult(profile_row(query.filters["id"])))
    _install(
        queries,
        [notification_row(i, user_id="user-1") for i in range(4)] + [notification_row(9, user_id="user-2")],
    )
    store = SessionStore(auth, queries)
    center = NotificationCenter(queries, store)
    await store.start()
    center.bind()

    auth.emit(AuthEventKind.SIGNED_IN, make_session("user-1"))
    await store.wait_idle()
    await center.wait_idle()
    assert len(center.notifications) == 4
    assert center.unread_count == 4

    await store.sign_out()
    assert center.notifications == ()
    assert center.unread_count == 0

    auth.emit(AuthEventKind.SIGNED_IN, make_session("user-2"))
    await center.wait_idle()
    assert [n.id for n in center.notifications] == ["n-9"]
    await center.close()
