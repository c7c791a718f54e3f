"""Session lifecycle tests: sign-up gating, event handling and sign-out races."""
from __future__ import annotations

import asyncio

import pytest

from fakes import FakeAuth, FakeQueryClient, make_session, profile_row
from unicollab.clients.base import QueryResult
from unicollab.constants import SIGNUP_CONFIRMATION_MESSAGE
from unicollab.errors import AuthError, DomainNotAllowed, QueryError
from unicollab.schemas import AuthEventKind, SignUpStatus, UserProfile, UserRole
from unicollab.services import SessionSnapshot, SessionStore, ToastNotifier


def _profile_handler(name: str = "Abebe Kebede", role: str = "contributor"):
    def handler(query):
        if query.method == "update":
            return QueryResult({**profile_row(query.filters["id"], name=name, role=role), **query.values})
        return QueryResult(profile_row(query.filters["id"], name=name, role=role))

    return handler


@pytest.fixture
def store(auth: FakeAuth, queries: FakeQueryClient, toasts: ToastNotifier) -> SessionStore:
    return SessionStore(
        auth,
        queries,
        allowed_domains=["aau.edu.et"],
        toasts=toasts,
        password_reset_redirect="https://collab.example.test/update-password",
    )


async def _signed_in(store: SessionStore, auth: FakeAuth, queries: FakeQueryClient, user_id: str = "user-1") -> None:
    queries.on("users", _profile_handler())
    await store.start()
    auth.emit(AuthEventKind.SIGNED_IN, make_session(user_id))
    await store.wait_idle()


# -- sign up ----------------------------------------------------------------


@pytest.mark.asyncio
async def test_sign_up_rejects_unapproved_domain_without_calling_auth(store, auth, toasts) -> None:
    outcome = await store.sign_up(
        "student@unapproved.com", "password123", name="Student", institution="Elsewhere", role="contributor"
    )

    assert not outcome.ok
    assert isinstance(outcome.error, DomainNotAllowed)
    assert outcome.error.allowed_domains == ("aau.edu.et",)
    assert "aau.edu.et" in outcome.error.message
    assert auth.calls == []
    assert store.snapshot.session is None
    assert toasts.entries[-1].text == outcome.error.message


@pytest.mark.asyncio
async def test_sign_up_domain_check_is_case_insensitive(store, auth) -> None:
    outcome = await store.sign_up(
        "Lead@AAU.EDU.ET", "password123", name="Lead", institution="AAU", role=UserRole.RESEARCH_LEAD
    )

    assert outcome.ok
    assert auth.calls[0][0] == "sign_up"


@pytest.mark.asyncio
async def test_sign_up_without_session_requires_confirmation(store, auth) -> None:
    outcome = await store.sign_up(
        "new@aau.edu.et", "password123", name=" New Person ", institution="AAU", role="contributor", is_anonymous=True
    )

    assert outcome.ok
    assert outcome.value is SignUpStatus.CONFIRMATION_REQUIRED
    assert outcome.message == SIGNUP_CONFIRMATION_MESSAGE
    metadata = auth.calls[0][1]["metadata"]
    assert metadata["name"] == "New Person"
    assert metadata["role"] == "contributor"
    # Contributors can never register anonymously.
    assert metadata["is_anonymous"] is False


@pytest.mark.asyncio
async def test_sign_up_research_lead_keeps_anonymity_and_reports_active(store, auth) -> None:
    auth.sign_up_session = make_session("lead-1")

    outcome = await store.sign_up(
        "lead@aau.edu.et", "password123", name="Lead", institution="AAU", role="research_lead", is_anonymous=True
    )

    assert outcome.value is SignUpStatus.ACTIVE
    assert auth.calls[0][1]["metadata"]["is_anonymous"] is True


@pytest.mark.asyncio
async def test_sign_up_reports_invalid_input(store, auth) -> None:
    outcome = await store.sign_up("short@aau.edu.et", "123", name="X", institution="AAU", role="contributor")

    assert not outcome.ok
    assert outcome.error.code == "invalid_input"
    assert auth.calls == []


@pytest.mark.asyncio
async def test_empty_allow_list_accepts_any_domain(auth, queries) -> None:
    store = SessionStore(auth, queries, allowed_domains=[])

    assert store.is_email_allowed("someone@anywhere.org")
    outcome = await store.sign_up(
        "someone@anywhere.org", "password123", name="Someone", institution="Anywhere", role="contributor"
    )
    assert outcome.ok


# -- event handling ---------------------------------------------------------


@pytest.mark.asyncio
async def test_sign_in_populates_session_then_profile(store, auth, queries) -> None:
    queries.on("users", _profile_handler(role="research_lead"))
    seen: list[SessionSnapshot] = []
    store.subscribe(seen.append)
    await store.start()

    outcome = await store.sign_in_with_password("user-1@aau.edu.et", "password123")
    await store.wait_idle()

    assert outcome.ok
    snapshot = store.snapshot
    assert snapshot.user_id == "user-1"
    assert isinstance(snapshot.profile, UserProfile)
    assert snapshot.is_research_lead
    assert snapshot.loading is False
    # Loading only ends once the profile lookup for the first event has settled.
    assert all(s.loading for s in seen if s.session is not None and s.profile is None)
    users = queries.queries_for("users")
    assert users[0].filters == {"id": "user-1"}
    assert users[0].is_single


@pytest.mark.asyncio
async def test_failed_sign_in_leaves_state_untouched(store, auth, queries, toasts) -> None:
    auth.sign_in_error = AuthError("Invalid login credentials")
    await store.start()

    outcome = await store.sign_in_with_password("user-1@aau.edu.et", "wrong")

    assert not outcome.ok
    assert store.snapshot.session is None
    assert queries.executed == []
    assert toasts.entries[-1].text == "Invalid login credentials"


@pytest.mark.asyncio
async def test_initial_session_without_user_finishes_loading(store, auth) -> None:
    await store.start()
    assert store.snapshot.loading is True

    auth.emit(AuthEventKind.INITIAL_SESSION, None)

    assert store.snapshot.loading is False
    assert store.snapshot.profile is None


@pytest.mark.asyncio
async def test_loading_timeout_ends_loading_when_no_event_arrives(auth, queries) -> None:
    store = SessionStore(auth, queries, loading_timeout=0.01)
    await store.start()

    await asyncio.sleep(0.05)

    assert store.snapshot.loading is False
    await store.close()


@pytest.mark.asyncio
async def test_loading_never_returns_to_true(store, auth, queries) -> None:
    await _signed_in(store, auth, queries)

    auth.emit(AuthEventKind.TOKEN_REFRESHED, make_session("user-1"))

    assert store.snapshot.loading is False
    await store.wait_idle()
    assert store.snapshot.loading is False


@pytest.mark.asyncio
async def test_profile_fetch_failure_yields_null_profile(store, auth, queries) -> None:
    def failing(query):
        raise QueryError("row not found", code="PGRST116", status_code=406)

    queries.on("users", failing)
    await store.start()

    auth.emit(AuthEventKind.SIGNED_IN, make_session("user-1"))
    await store.wait_idle()

    assert store.snapshot.user_id == "user-1"
    assert store.snapshot.profile is None
    assert store.snapshot.loading is False


@pytest.mark.asyncio
async def test_slow_profile_load_cannot_overwrite_newer_result(store, auth, queries) -> None:
    release_first = asyncio.Event()
    calls = 0

    async def users(query):
        nonlocal calls
        calls += 1
        if calls == 1:
            await release_first.wait()
            return QueryResult(profile_row(name="Old Name"))
        return QueryResult(profile_row(name="New Name"))

    queries.on("users", users)
    await store.start()

    auth.emit(AuthEventKind.SIGNED_IN, make_session("user-1"))
    auth.emit(AuthEventKind.TOKEN_REFRESHED, make_session("user-1"))
    for _ in range(5):
        await asyncio.sleep(0)
    assert store.snapshot.profile.name == "New Name"

    release_first.set()
    await store.wait_idle()

    assert store.snapshot.profile.name == "New Name"


@pytest.mark.asyncio
async def test_switching_identity_drops_previous_profile_immediately(store, auth, queries) -> None:
    await _signed_in(store, auth, queries, "user-1")

    auth.emit(AuthEventKind.SIGNED_IN, make_session("user-2"))

    assert store.snapshot.user_id == "user-2"
    assert store.snapshot.profile is None
    await store.wait_idle()
    assert store.snapshot.profile.id == "user-2"


# -- sign out ---------------------------------------------------------------


@pytest.mark.asyncio
async def test_sign_out_clears_state_even_when_remote_fails(store, auth, queries) -> None:
    await _signed_in(store, auth, queries)
    auth.sign_out_error = AuthError("network down")

    await store.sign_out()

    snapshot = store.snapshot
    assert snapshot.session is None
    assert snapshot.profile is None
    assert snapshot.loading is False


@pytest.mark.asyncio
async def test_stale_sign_in_during_sign_out_is_discarded(store, auth, queries) -> None:
    await _signed_in(store, auth, queries)
    auth.sign_out_gate = asyncio.Event()

    task = asyncio.create_task(store.sign_out())
    await asyncio.sleep(0)
    assert store.snapshot.session is None

    auth.emit(AuthEventKind.SIGNED_IN, make_session("user-1"))
    assert store.snapshot.session is None
    assert store.snapshot.profile is None

    auth.sign_out_gate.set()
    await task
    await store.wait_idle()
    assert store.snapshot.session is None

    # Once the signed-out event has been observed, new sign-ins are honoured again.
    auth.emit(AuthEventKind.SIGNED_IN, make_session("user-2"))
    await store.wait_idle()
    assert store.snapshot.user_id == "user-2"


# -- profile and password ---------------------------------------------------


@pytest.mark.asyncio
async def test_update_profile_stores_returned_row(store, auth, queries, toasts) -> None:
    await _signed_in(store, auth, queries)

    outcome = await store.update_profile({"bio": "Field epidemiologist", "skills": ["R", " R ", "GIS"]})

    assert outcome.ok
    assert store.snapshot.profile.bio == "Field epidemiologist"
    assert store.snapshot.profile.skills == ["R", "GIS"]
    update = queries.queries_for("users", "update")[0]
    assert update.filters == {"id": "user-1"}
    assert toasts.entries[-1].text == "Profile updated successfully."


@pytest.mark.asyncio
async def test_update_profile_failure_keeps_profile(store, auth, queries, toasts) -> None:
    await _signed_in(store, auth, queries)
    before = store.snapshot.profile

    def users(query):
        raise QueryError("permission denied", status_code=403)

    queries.on("users", users)
    outcome = await store.update_profile({"name": "Renamed"})

    assert not outcome.ok
    assert store.snapshot.profile == before
    assert toasts.entries[-1].text == "permission denied"


@pytest.mark.asyncio
async def test_update_profile_rejects_unknown_fields_as_outcome(store, auth, queries, toasts) -> None:
    await _signed_in(store, auth, queries)
    before = store.snapshot.profile

    outcome = await store.update_profile({"role": "admin"})

    assert not outcome.ok
    assert isinstance(outcome.error, QueryError)
    assert outcome.error.code == "invalid_input"
    assert store.snapshot.profile == before
    assert queries.queries_for("users", "update") == []
    assert toasts.entries[-1].text == outcome.error.message


@pytest.mark.asyncio
async def test_update_profile_requires_login(store) -> None:
    outcome = await store.update_profile({"name": "Nobody"})

    assert isinstance(outcome.error, AuthError)
    assert outcome.error.message == "User not logged in"


@pytest.mark.asyncio
async def test_password_recovery_flow(store, auth, queries) -> None:
    queries.on("users", _profile_handler())
    await store.start()
    auth.emit(AuthEventKind.PASSWORD_RECOVERY, make_session("user-1"))
    await store.wait_idle()
    assert store.snapshot.recovery_mode is True

    weak = await store.update_password("short")
    assert weak.error.code == "weak_password"

    outcome = await store.update_password("a-much-longer-secret")
    assert outcome.ok
    assert ("update_user", {"password": "a-much-longer-secret"}) in auth.calls
    assert store.snapshot.recovery_mode is False


@pytest.mark.asyncio
async def test_update_password_without_session_fails(store) -> None:
    outcome = await store.update_password("a-much-longer-secret")

    assert not outcome.ok
    assert "No active user session" in outcome.error.message


@pytest.mark.asyncio
async def test_request_password_reset_uses_configured_redirect(store, auth) -> None:
    outcome = await store.request_password_reset("user-1@aau.edu.et")

    assert outcome.ok
    assert auth.calls[-1] == (
        "reset_password",
        ("user-1@aau.edu.et", "https://collab.example.test/update-password"),
    )


def test_role_predicates() -> None:
    profile = UserProfile.model_validate(profile_row(role="admin"))
    snapshot = SessionSnapshot(session=make_session(), profile=profile, loading=False)

    assert snapshot.is_admin
    assert not snapshot.is_contributor
    assert SessionSnapshot(session=None, profile=None, loading=False).role is None
