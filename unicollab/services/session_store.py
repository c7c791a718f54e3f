"""Authentication session and profile state for the signed-in user.

The store is the only writer of the (session, profile, loading) triple. All
transitions come from the auth collaborator's session-change events; the
explicit operations below only talk to the collaborator and report the
immediate outcome, except :meth:`SessionStore.sign_out` which clears local
state up front and :meth:`SessionStore.update_profile` which stores the
server's returned row.

Profile loads are asynchronous and may overlap. Each load is tagged with a
sequence number and a result is only applied when it is newer than the one
currently applied, so a slow load for an earlier event can never overwrite
a newer profile.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from pydantic import ValidationError

from ..clients.base import AuthClient, AuthSubscription, QueryClient
from ..constants import MIN_PASSWORD_LENGTH, NOT_LOGGED_IN_MESSAGE, SIGNUP_CONFIRMATION_MESSAGE
from ..errors import AuthError, CollabError, DomainNotAllowed, Outcome, ProfileFetchError, QueryError
from ..schemas import (
    AuthEventKind,
    AuthSession,
    ProfileUpdateRequest,
    SignUpRequest,
    SignUpStatus,
    UserProfile,
    UserRole,
)
from .observable import Observable
from .toast_service import ToastNotifier

logger = logging.getLogger(__name__)

PROFILE_TABLE = "users"


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    session: AuthSession | None
    profile: UserProfile | None
    loading: bool
    recovery_mode: bool = False

    @property
    def user_id(self) -> str | None:
        return self.session.user_id if self.session else None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def role(self) -> UserRole | None:
        return self.profile.role if self.profile else None

    @property
    def is_research_lead(self) -> bool:
        return self.role is UserRole.RESEARCH_LEAD

    @property
    def is_contributor(self) -> bool:
        return self.role is UserRole.CONTRIBUTOR

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN


def email_domain(email: str) -> str:
    return email.rsplit("@", 1)[-1].strip().lower()


class SessionStore(Observable[SessionSnapshot]):
    def __init__(
        self,
        auth: AuthClient,
        queries: QueryClient,
        *,
        allowed_domains: Sequence[str] = (),
        loading_timeout: float = 8.0,
        toasts: ToastNotifier | None = None,
        password_reset_redirect: str | None = None,
    ) -> None:
        super().__init__()
        if loading_timeout <= 0:
            raise ValueError("loading_timeout must be positive")
        self._auth = auth
        self._queries = queries
        self._allowed_domains = tuple(domain.strip().lower() for domain in allowed_domains if domain.strip())
        self._loading_timeout = loading_timeout
        self._toasts = toasts
        self._password_reset_redirect = password_reset_redirect

        self._session: AuthSession | None = None
        self._profile: UserProfile | None = None
        self._loading = True
        self._recovery_mode = False

        self._signing_out = False
        self._issued_seq = 0
        self._applied_seq = 0

        self._subscription: AuthSubscription | None = None
        self._timeout_handle: asyncio.TimerHandle | None = None
        self._pending: set[asyncio.Task[None]] = set()

    # -- read side --------------------------------------------------------

    @property
    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session=self._session,
            profile=self._profile,
            loading=self._loading,
            recovery_mode=self._recovery_mode,
        )

    @property
    def allowed_domains(self) -> tuple[str, ...]:
        return self._allowed_domains

    def is_email_allowed(self, email: str) -> bool:
        if not self._allowed_domains:
            return True
        return email_domain(email) in self._allowed_domains

    # -- lifecycle --------------------------------------------------------

    async def start(self) -> None:
        """Arm the loading guard and subscribe to session-change events."""

        if self._subscription is not None:
            return
        loop = asyncio.get_running_loop()
        if self._loading:
            self._timeout_handle = loop.call_later(self._loading_timeout, self._on_loading_timeout)
        self._subscription = self._auth.on_auth_state_change(self.handle_auth_event)

    async def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until every profile load started so far has settled."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # -- event handling ---------------------------------------------------

    def handle_auth_event(self, kind: AuthEventKind, session: AuthSession | None) -> None:
        logger.debug("Handling auth event %s", kind)
        match kind:
            case AuthEventKind.SIGNED_OUT:
                if self._signing_out:
                    logger.debug("Sign-out confirmed by auth service")
                self._signing_out = False
                self._apply_session(None, kind)
            case (
                AuthEventKind.INITIAL_SESSION
                | AuthEventKind.SIGNED_IN
                | AuthEventKind.TOKEN_REFRESHED
                | AuthEventKind.PASSWORD_RECOVERY
            ):
                if self._signing_out and session is not None:
                    logger.warning("Discarding %s received while sign-out is in progress", kind)
                    return
                self._apply_session(session, kind)

    def _apply_session(self, session: AuthSession | None, kind: AuthEventKind) -> None:
        self._session = session
        self._recovery_mode = kind is AuthEventKind.PASSWORD_RECOVERY
        self._issued_seq += 1
        seq = self._issued_seq
        user_id = session.user_id if session else None

        if user_id is None:
            self._profile = None
            self._applied_seq = seq
            self._finish_loading()
        else:
            if self._profile is not None and self._profile.id != user_id:
                self._profile = None
            task = asyncio.get_running_loop().create_task(self._load_profile(seq, user_id))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        self._notify()

    async def _load_profile(self, seq: int, user_id: str) -> None:
        try:
            profile: UserProfile | None = await self.fetch_profile(user_id)
        except ProfileFetchError as exc:
            logger.warning("Profile fetch failed for %s: %s", user_id, exc.message)
            profile = None

        current_user = self._session.user_id if self._session else None
        if seq <= self._applied_seq or current_user != user_id:
            logger.debug("Dropping stale profile result (seq=%d, applied=%d)", seq, self._applied_seq)
        else:
            self._profile = profile
            self._applied_seq = seq
        self._finish_loading()
        self._notify()

    async def fetch_profile(self, user_id: str) -> UserProfile:
        try:
            result = await self._queries.table(PROFILE_TABLE).select("*").eq("id", user_id).single().execute()
            return UserProfile.model_validate(result.data)
        except QueryError as exc:
            raise ProfileFetchError(exc.message, code=exc.code, status_code=exc.status_code) from exc
        except ValidationError as exc:
            raise ProfileFetchError("Profile data was malformed") from exc

    def _finish_loading(self) -> None:
        if not self._loading:
            return
        self._loading = False
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    def _on_loading_timeout(self) -> None:
        self._timeout_handle = None
        if self._loading:
            logger.warning("Initial session check timed out after %.1fs", self._loading_timeout)
            self._finish_loading()
            self._notify()

    # -- operations -------------------------------------------------------

    def _fail(self, error: CollabError, fallback: str) -> Outcome[Any]:
        if self._toasts is not None:
            self._toasts.report(error, fallback)
        return Outcome.failure(error)

    async def sign_up(
        self,
        email: str,
        password: str,
        *,
        name: str,
        institution: str,
        role: UserRole | str,
        is_anonymous: bool = False,
    ) -> Outcome[SignUpStatus]:
        if not self.is_email_allowed(email):
            return self._fail(DomainNotAllowed(self._allowed_domains), "Sign up failed.")

        try:
            request = SignUpRequest(
                email=email,
                password=password,
                name=name,
                institution=institution,
                role=role,
                is_anonymous=is_anonymous,
            )
        except ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ()))
            return self._fail(AuthError(f"Invalid {field}: {first.get('msg')}", code="invalid_input"), "Sign up failed.")

        try:
            response = await self._auth.sign_up(str(request.email), request.password, request.profile_metadata())
        except AuthError as exc:
            return self._fail(exc, "Sign up failed.")

        if response.session is None:
            logger.info("Sign-up accepted; email confirmation pending")
            return Outcome.success(SignUpStatus.CONFIRMATION_REQUIRED, message=SIGNUP_CONFIRMATION_MESSAGE)
        logger.info("Sign-up accepted; account active")
        return Outcome.success(SignUpStatus.ACTIVE)

    async def sign_in_with_password(self, email: str, password: str) -> Outcome[None]:
        """Check credentials; state changes arrive later through the event stream."""

        try:
            await self._auth.sign_in_with_password(email, password)
        except AuthError as exc:
            return self._fail(exc, "Invalid login credentials.")
        logger.info("Credentials accepted")
        return Outcome.success()

    async def sign_out(self) -> None:
        self._signing_out = True
        self._session = None
        self._profile = None
        self._recovery_mode = False
        self._issued_seq += 1
        self._applied_seq = self._issued_seq
        self._finish_loading()
        self._notify()

        try:
            await self._auth.sign_out()
        except CollabError as exc:
            # A failed remote termination will not be followed by a signed-out event.
            logger.warning("Remote sign-out failed: %s", exc.message)
            self._signing_out = False
        logger.info("Signed out")

    async def update_profile(self, fields: Mapping[str, Any] | ProfileUpdateRequest) -> Outcome[UserProfile]:
        profile = self._profile
        if profile is None or self._session is None:
            return self._fail(AuthError(NOT_LOGGED_IN_MESSAGE), NOT_LOGGED_IN_MESSAGE)

        try:
            request = fields if isinstance(fields, ProfileUpdateRequest) else ProfileUpdateRequest.model_validate(fields)
        except ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ()))
            error = QueryError(f"Invalid {field}: {first.get('msg')}", code="invalid_input")
            return self._fail(error, "Failed to update profile.")
        updates = request.model_dump(exclude_unset=True)
        if not updates:
            return Outcome.success(profile)

        try:
            result = await (
                self._queries.table(PROFILE_TABLE).update(updates).eq("id", profile.id).select().single().execute()
            )
            updated = UserProfile.model_validate(result.data)
        except QueryError as exc:
            return self._fail(exc, "Failed to update profile.")
        except ValidationError:
            return self._fail(QueryError("Profile update returned malformed data"), "Failed to update profile.")

        if self.snapshot.user_id != updated.id:
            logger.warning("Discarding profile update for %s; identity changed meanwhile", updated.id)
            return Outcome.success(updated)

        self._profile = updated
        # The returned row is authoritative; older in-flight loads must not replace it.
        self._applied_seq = self._issued_seq
        self._notify()
        if self._toasts is not None:
            self._toasts.success("Profile updated successfully.")
        return Outcome.success(updated)

    async def request_password_reset(self, email: str, redirect_to: str | None = None) -> Outcome[None]:
        try:
            await self._auth.reset_password_for_email(email, redirect_to or self._password_reset_redirect)
        except AuthError as exc:
            return self._fail(exc, "Failed to send password reset email.")
        return Outcome.success(message="If an account exists for this email, a reset link has been sent.")

    async def update_password(self, new_password: str) -> Outcome[None]:
        if len(new_password) < MIN_PASSWORD_LENGTH:
            error = AuthError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.", code="weak_password")
            return self._fail(error, error.message)
        if self._session is None:
            return self._fail(
                AuthError("No active user session. Please try the password reset process again."),
                "Failed to update password.",
            )
        try:
            await self._auth.update_user({"password": new_password})
        except AuthError as exc:
            return self._fail(exc, "Failed to update password.")
        if self._recovery_mode:
            self._recovery_mode = False
            self._notify()
        return Outcome.success(message="Password updated successfully.")


__all__ = ["SessionSnapshot", "SessionStore", "email_domain"]
