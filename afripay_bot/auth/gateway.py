"""Authentication gateway — login, PIN verification and registration.

Mutates the chat session's auth sub-record. Every failure (transport or
HTTP) is normalized to ``AuthResult(error=...)``; nothing raises.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from afripay_bot.audit.events import emit
from afripay_bot.config import settings
from afripay_bot.conversation.session_store import SessionStore
from afripay_bot.integrations.backend.client import BackendClient
from afripay_bot.integrations.backend.normalize import pick
from afripay_bot.models.session import AuthState
from afripay_bot.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EmitFn = Callable[[SystemEvent], Coroutine[Any, Any, None]]


@dataclass
class AuthResult:
    ok: bool
    token: str | None = None
    user: dict[str, Any] | None = None
    error: str | None = None
    data: Any = None


class AuthGateway:
    """Login / PIN / registration against the backend."""

    def __init__(
        self,
        sessions: SessionStore,
        client: BackendClient,
        emit_fn: EmitFn = emit,
    ) -> None:
        self._sessions = sessions
        self._client = client
        self._emit = emit_fn

    def registration_link(self) -> str:
        return f"{settings.backend.backend_base_url.rstrip('/')}/api/user/register"

    async def login(self, chat_id: int, *, email: str, password: str) -> AuthResult:
        """Log in and mark the session authenticated on success."""
        logger.info("Login attempt for chat %s (email=%s)", chat_id, email)
        res = await self._client.request(
            "/user/login", chat_id, "POST",
            {"email": email, "password": password},
            authenticated=False,
        )
        if not res.ok:
            return await self._login_failed(chat_id, res.error or "Login failed")

        token = pick(res.data, "token")
        user = pick(res.data, "user")
        if not token or not user:
            message = pick(res.data, "message") or "Login failed"
            return await self._login_failed(chat_id, str(message))

        self._sessions.set(
            chat_id,
            auth=AuthState(is_authed=True, access_token=str(token), user=user, email=email),
        )
        logger.info("Chat %s logged in", chat_id)
        await self._emit(SystemEvent(
            event_type=EventType.LOGIN_SUCCEEDED,
            chat_id=chat_id,
            data={"email": email},
            source_module="auth.gateway",
        ))
        return AuthResult(ok=True, token=str(token), user=user)

    async def _login_failed(self, chat_id: int, error: str) -> AuthResult:
        logger.warning("Login failed for chat %s: %s", chat_id, error)
        await self._emit(SystemEvent(
            event_type=EventType.LOGIN_FAILED,
            chat_id=chat_id,
            data={"error": error},
            source_module="auth.gateway",
        ))
        return AuthResult(ok=False, error=error)

    async def verify_pin(self, chat_id: int, *, email: str | None, pin: str) -> AuthResult:
        """Check the 6-digit PIN. Requires an access token from a prior login."""
        session = self._sessions.get(chat_id)
        if not session.auth.access_token:
            return AuthResult(ok=False, error="Not authenticated. Please login first.")

        res = await self._client.request(
            "/user/pin/auth", chat_id, "POST",
            {"email": email, "pin": pin},
            session=session,
        )
        if not res.ok:
            return AuthResult(ok=False, error=res.error or "PIN verification failed")

        if pick(res.data, "success") is not True:
            message = pick(res.data, "message") or "PIN verification failed"
            return AuthResult(ok=False, error=str(message))

        session.auth.pin_verified = True
        return AuthResult(ok=True)

    async def register_user(self, chat_id: int, payload: dict[str, Any]) -> AuthResult:
        """Register via the primary route, falling back to the legacy one."""
        session = self._sessions.get(chat_id)
        res = await self._client.request("/user/register", chat_id, "POST", payload, session=session)
        if not res.ok:
            logger.info("Primary registration route failed for chat %s, trying fallback", chat_id)
            res = await self._client.request("/register", chat_id, "POST", payload, session=session)
        if not res.ok:
            logger.warning("Registration failed for chat %s: %s", chat_id, res.error)
            return AuthResult(ok=False, error=res.error or "Registration failed")

        token = pick(res.data, "token", "access_token")
        user = pick(res.data, "user")
        if token:
            current = self._sessions.get(chat_id).auth
            self._sessions.set(
                chat_id,
                auth=AuthState(
                    is_authed=True,
                    access_token=str(token),
                    user=user or current.user,
                    email=payload.get("email") or (user or {}).get("email"),
                ),
            )
            logger.info("Chat %s registered and authenticated", chat_id)

        await self._emit(SystemEvent(
            event_type=EventType.REGISTERED,
            chat_id=chat_id,
            data={"email": payload.get("email"), "authenticated": bool(token)},
            source_module="auth.gateway",
        ))
        return AuthResult(ok=True, token=str(token) if token else None, user=user, data=res.data)

    def logout(self, chat_id: int) -> None:
        """Forget the chat's credential (expired token)."""
        self._sessions.set(chat_id, auth=AuthState())
