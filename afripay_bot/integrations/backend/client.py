"""Async httpx client for the transaction backend REST API.

Every call carries ``telegram_chat_id`` and, when the chat has one, the
user's bearer token (else the static bot key). Responses are normalized to
an ApiResponse; transport failures never raise out of this module.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from afripay_bot.config import settings
from afripay_bot.errors import AuthError, BackendError, NetworkError
from afripay_bot.integrations.backend.normalize import NETWORK_ERROR, error_message
from afripay_bot.models.session import Attachment, Session

logger = logging.getLogger(__name__)

_AUTH_STATUSES = {401, 419}


@dataclass
class ApiResponse:
    """Typed result of one backend call."""

    ok: bool
    data: Any = None
    error: str | None = None
    status_code: int | None = None
    network_failure: bool = False

    def raise_for_error(self) -> Any:
        """Return ``data`` on success, else raise the matching FlowError."""
        if self.ok:
            return self.data
        message = self.error or "Unexpected error"
        if self.network_failure:
            raise NetworkError(message)
        if self.status_code in _AUTH_STATUSES:
            raise AuthError(message)
        raise BackendError(message, self.status_code)


class BackendClient:
    """Thin async wrapper around the backend's ``/api`` routes.

    Endpoints are given relative to ``/api`` (e.g. ``/user/deposit``).
    """

    def __init__(
        self,
        base_url: str | None = None,
        bot_api_key: str | None = None,
        timeout: float | None = None,
        upload_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        cfg = settings.backend
        self._base_url = cfg.api_base_url if base_url is None else base_url
        self._bot_api_key = cfg.backend_bot_api_key if bot_api_key is None else bot_api_key
        self._timeout = httpx.Timeout(timeout or cfg.request_timeout)
        self._upload_timeout = httpx.Timeout(upload_timeout or cfg.upload_timeout)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self._base_url)

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url or "",
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    def _headers(self, session: Session | None, authenticated: bool) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "X-Requested-With": "XMLHttpRequest",
        }
        if not authenticated:
            return headers
        token = session.auth.access_token if session is not None else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        elif self._bot_api_key:
            headers["Authorization"] = f"Bearer {self._bot_api_key}"
        return headers

    async def request(
        self,
        endpoint: str,
        chat_id: int,
        method: str = "POST",
        body: dict[str, Any] | None = None,
        *,
        session: Session | None = None,
        authenticated: bool = True,
    ) -> ApiResponse:
        """JSON call. GET sends the payload as query params, other verbs as JSON body."""
        if not self.is_configured:
            return ApiResponse(ok=False, error="API not configured")

        payload = {"telegram_chat_id": chat_id, **(body or {})}
        is_get = method.upper() == "GET"

        logger.debug(
            "Backend %s %s (chat=%s, user_token=%s)",
            method.upper(), endpoint, chat_id,
            bool(session is not None and session.auth.access_token),
        )
        try:
            response = await self._http().request(
                method.upper(),
                endpoint,
                headers=self._headers(session, authenticated),
                params=payload if is_get else None,
                json=None if is_get else payload,
                timeout=self._timeout,
            )
        except httpx.TransportError as exc:
            logger.warning("Backend %s %s: no response (%s)", method.upper(), endpoint, type(exc).__name__)
            return ApiResponse(ok=False, error=NETWORK_ERROR, network_failure=True)

        return self._to_api_response(endpoint, response)

    async def upload(
        self,
        endpoint: str,
        chat_id: int,
        fields: dict[str, Any],
        files: dict[str, Attachment] | None = None,
        *,
        session: Session | None = None,
    ) -> ApiResponse:
        """Multipart POST with form fields and optional file parts."""
        if not self.is_configured:
            return ApiResponse(ok=False, error="API not configured")

        data = {"telegram_chat_id": str(chat_id)}
        data.update({key: "" if value is None else str(value) for key, value in fields.items()})
        parts = {
            name: (attachment.filename, attachment.buffer, attachment.mime)
            for name, attachment in (files or {}).items()
        }
        try:
            response = await self._http().post(
                endpoint,
                headers=self._headers(session, authenticated=True),
                data=data,
                files=parts or None,
                timeout=self._upload_timeout,
            )
        except httpx.TransportError as exc:
            logger.warning("Backend upload %s: no response (%s)", endpoint, type(exc).__name__)
            return ApiResponse(ok=False, error=NETWORK_ERROR, network_failure=True)

        return self._to_api_response(endpoint, response)

    def _to_api_response(self, endpoint: str, response: httpx.Response) -> ApiResponse:
        try:
            body: Any = response.json()
        except ValueError:
            body = None

        if response.is_success:
            if body is None:
                return ApiResponse(ok=False, error="Invalid response from API", status_code=response.status_code)
            return ApiResponse(ok=True, data=body, status_code=response.status_code)

        message = error_message(response.status_code, body)
        logger.warning("Backend %s returned %s: %s", endpoint, response.status_code, message)
        return ApiResponse(ok=False, error=message, status_code=response.status_code)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
