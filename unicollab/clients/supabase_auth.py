"""HTTP adapter for a GoTrue-compatible authentication service."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, cast

import httpx

from ..errors import AuthError
from ..schemas import AuthEventKind, AuthResponse, AuthSession, AuthUser
from .base import AuthStateHandler

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return fallback
    if not isinstance(body, dict):
        return fallback
    for key in ("msg", "error_description", "message", "error"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return fallback


def _parse_session(payload: dict[str, Any]) -> AuthSession | None:
    if not payload.get("access_token"):
        return None
    data = dict(payload)
    if data.get("expires_at") is not None:
        data["expires_at"] = datetime.fromtimestamp(int(data["expires_at"]), tz=timezone.utc)
    elif data.get("expires_in") is not None:
        data["expires_at"] = datetime.now(timezone.utc) + timedelta(seconds=int(data["expires_in"]))
    return AuthSession.model_validate(data)


class _Subscription:
    def __init__(self, owner: "SupabaseAuthClient", handler: AuthStateHandler) -> None:
        self._owner = owner
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        self.active = False
        self._owner._discard(self)


class SupabaseAuthClient:
    """Talks to ``/auth/v1`` and fans session changes out to subscribers.

    Subscribers are called synchronously and in registration order, once per
    event, in the order the events happen.
    """

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        *,
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = f"{base_url.rstrip('/')}/auth/v1"
        self._anon_key = anon_key
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self._session: AuthSession | None = None
        self._subscriptions: list[_Subscription] = []

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -- subscription -----------------------------------------------------

    def on_auth_state_change(self, handler: AuthStateHandler) -> _Subscription:
        subscription = _Subscription(self, handler)
        self._subscriptions.append(subscription)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._deliver(subscription, AuthEventKind.INITIAL_SESSION, self._session)
        else:
            loop.call_soon(self._deliver, subscription, AuthEventKind.INITIAL_SESSION, self._session)
        return subscription

    def _discard(self, subscription: _Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _deliver(self, subscription: _Subscription, kind: AuthEventKind, session: AuthSession | None) -> None:
        if not subscription.active:
            return
        try:
            subscription.handler(kind, session)
        except Exception:
            logger.exception("Auth state handler failed for %s", kind)

    def _emit(self, kind: AuthEventKind, session: AuthSession | None) -> None:
        logger.debug("Auth event %s (session=%s)", kind, "present" if session else "none")
        for subscription in list(self._subscriptions):
            self._deliver(subscription, kind, session)

    # -- transport --------------------------------------------------------

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {access_token or self._anon_key}",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        access_token: str | None = None,
        failure: str,
    ) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.request(
                method, url, json=json, params=params, headers=self._headers(access_token)
            )
        except httpx.HTTPError as exc:
            logger.error("Auth transport error | path=%s error=%s", path, type(exc).__name__)
            raise AuthError(failure) from exc

        if response.status_code >= 400:
            raise AuthError(_error_message(response, failure), status_code=response.status_code)
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return cast(dict[str, Any], response.json())
        except ValueError as exc:
            raise AuthError(failure) from exc

    # -- operations -------------------------------------------------------

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> AuthResponse:
        payload = await self._request(
            "POST",
            "/signup",
            json={"email": email, "password": password, "data": metadata},
            failure="Failed to sign up",
        )
        session = _parse_session(payload)
        user_payload = payload.get("user") if session else payload
        user = AuthUser.model_validate(user_payload) if user_payload and user_payload.get("id") else None
        if session is not None:
            self._session = session
            self._emit(AuthEventKind.SIGNED_IN, session)
        return AuthResponse(user=user, session=session)

    async def sign_in_with_password(self, email: str, password: str) -> AuthResponse:
        payload = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            failure="Invalid login credentials",
        )
        session = _parse_session(payload)
        if session is None:
            raise AuthError("Invalid login credentials")
        self._session = session
        self._emit(AuthEventKind.SIGNED_IN, session)
        return AuthResponse(user=session.user, session=session)

    async def refresh_session(self) -> AuthSession:
        current = self._session
        if current is None or not current.refresh_token:
            raise AuthError("No session to refresh")
        payload = await self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": current.refresh_token},
            failure="Failed to refresh session",
        )
        session = _parse_session(payload)
        if session is None:
            raise AuthError("Failed to refresh session")
        self._session = session
        self._emit(AuthEventKind.TOKEN_REFRESHED, session)
        return session

    async def verify_recovery(self, token_hash: str) -> AuthSession:
        """Exchange a password-recovery token for a short-lived session."""

        payload = await self._request(
            "POST",
            "/verify",
            json={"type": "recovery", "token_hash": token_hash},
            failure="Recovery link is invalid or has expired",
        )
        session = _parse_session(payload)
        if session is None:
            raise AuthError("Recovery link is invalid or has expired")
        self._session = session
        self._emit(AuthEventKind.PASSWORD_RECOVERY, session)
        return session

    async def sign_out(self) -> None:
        current = self._session
        try:
            if current is not None:
                await self._request(
                    "POST", "/logout", access_token=current.access_token, failure="Failed to sign out"
                )
        finally:
            self._session = None
            self._emit(AuthEventKind.SIGNED_OUT, None)

    async def get_session(self) -> AuthSession | None:
        current = self._session
        if current is not None and current.is_expired() and current.refresh_token:
            try:
                return await self.refresh_session()
            except AuthError:
                logger.warning("Session refresh failed; treating user as signed out")
                self._session = None
                self._emit(AuthEventKind.SIGNED_OUT, None)
                return None
        return current

    async def update_user(self, fields: dict[str, Any]) -> AuthUser:
        current = self._session
        if current is None:
            raise AuthError("No active user session")
        payload = await self._request(
            "PUT", "/user", json=fields, access_token=current.access_token, failure="Failed to update user"
        )
        return AuthUser.model_validate(payload)

    async def reset_password_for_email(self, email: str, redirect_to: str | None = None) -> None:
        params = {"redirect_to": redirect_to} if redirect_to else None
        await self._request(
            "POST", "/recover", json={"email": email}, params=params, failure="Failed to send reset email"
        )

    @property
    def access_token(self) -> str | None:
        return self._session.access_token if self._session else None


__all__ = ["SupabaseAuthClient"]
