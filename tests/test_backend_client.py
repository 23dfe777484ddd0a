"""Tests for the backend REST client, mocked at the httpx transport level."""

from __future__ import annotations

import json

import httpx
import pytest

from afripay_bot.errors import AuthError, BackendError, NetworkError
from afripay_bot.integrations.backend.client import ApiResponse, BackendClient
from afripay_bot.integrations.backend.normalize import NETWORK_ERROR
from afripay_bot.models.session import Attachment, AuthState, Session

BASE = "https://backend.test/api"


class Recorder:
    """MockTransport handler that records requests and replies with a canned response."""

    def __init__(self, response: httpx.Response | None = None) -> None:
        self.response = response or httpx.Response(200, json={"success": True})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def _client(handler, bot_api_key: str = "bot-key") -> BackendClient:
    return BackendClient(base_url=BASE, bot_api_key=bot_api_key, transport=httpx.MockTransport(handler))


def _authed(token: str = "user-token") -> Session:
    return Session(chat_id=7, auth=AuthState(is_authed=True, access_token=token))


# ── Requests ─────────────────────────────────────────────────────────


class TestRequest:
    @pytest.mark.asyncio()
    async def test_user_token_wins_over_bot_key(self):
        recorder = Recorder()
        client = _client(recorder)

        await client.request("/user/balance", 7, "POST", session=_authed())

        assert recorder.last.headers["Authorization"] == "Bearer user-token"
        assert recorder.last.headers["Accept"] == "application/json"
        assert recorder.last.headers["X-Requested-With"] == "XMLHttpRequest"
        await client.close()

    @pytest.mark.asyncio()
    async def test_bot_key_without_user_token(self):
        recorder = Recorder()
        client = _client(recorder)

        await client.request("/user/balance", 7, "POST", session=Session(chat_id=7))

        assert recorder.last.headers["Authorization"] == "Bearer bot-key"
        await client.close()

    @pytest.mark.asyncio()
    async def test_unauthenticated_call_has_no_bearer(self):
        recorder = Recorder()
        client = _client(recorder)

        await client.request("/simulator", 7, "POST", {"amount": "200"}, session=_authed(), authenticated=False)

        assert "Authorization" not in recorder.last.headers
        await client.close()

    @pytest.mark.asyncio()
    async def test_post_sends_chat_id_in_json_body(self):
        recorder = Recorder()
        client = _client(recorder)

        await client.request("/user/exchange-money", 7, "POST", {"amount": "200"})

        assert recorder.last.method == "POST"
        assert recorder.last.url == "https://backend.test/api/user/exchange-money"
        assert json.loads(recorder.last.content) == {"telegram_chat_id": 7, "amount": "200"}
        await client.close()

    @pytest.mark.asyncio()
    async def test_get_sends_chat_id_as_query(self):
        recorder = Recorder()
        client = _client(recorder)

        await client.request("/user/gateway-methods", 7, "GET", {"currency_id": "2"})

        params = recorder.last.url.params
        assert params["telegram_chat_id"] == "7"
        assert params["currency_id"] == "2"
        assert recorder.last.content == b""
        await client.close()

    @pytest.mark.asyncio()
    async def test_unconfigured_backend(self):
        client = BackendClient(base_url="", bot_api_key="")

        res = await client.request("/user/balance", 7)

        assert client.is_configured is False
        assert res == ApiResponse(ok=False, error="API not configured")


# ── Responses ────────────────────────────────────────────────────────


class TestResponses:
    @pytest.mark.asyncio()
    async def test_success_body(self):
        client = _client(Recorder(httpx.Response(200, json={"response": {"balance": "12500"}})))

        res = await client.request("/user/balance", 7)

        assert res.ok is True
        assert res.data == {"response": {"balance": "12500"}}
        assert res.raise_for_error() == res.data

    @pytest.mark.asyncio()
    async def test_non_json_success_is_invalid(self):
        client = _client(Recorder(httpx.Response(200, text="<html>oops</html>")))

        res = await client.request("/user/balance", 7)

        assert res.ok is False
        assert res.error == "Invalid response from API"
        with pytest.raises(BackendError):
            res.raise_for_error()

    @pytest.mark.asyncio()
    async def test_error_message_from_body(self):
        client = _client(Recorder(httpx.Response(422, json={"message": "Insufficient balance"})))

        res = await client.request("/user/exchange-money", 7)

        with pytest.raises(BackendError) as exc_info:
            res.raise_for_error()
        assert exc_info.value.message == "Insufficient balance"
        assert exc_info.value.status_code == 422

    @pytest.mark.asyncio()
    async def test_error_without_body(self):
        client = _client(Recorder(httpx.Response(500)))

        res = await client.request("/user/balance", 7)

        assert res.error == "API error 500"

    @pytest.mark.asyncio()
    @pytest.mark.parametrize("status", [401, 419])
    async def test_auth_statuses(self, status):
        client = _client(Recorder(httpx.Response(status, json={"message": "Unauthenticated."})))

        res = await client.request("/user/balance", 7)

        with pytest.raises(AuthError, match="Unauthenticated."):
            res.raise_for_error()

    @pytest.mark.asyncio()
    async def test_no_response_is_network_error(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(refuse)

        res = await client.request("/user/balance", 7)

        assert res.network_failure is True
        assert res.error == NETWORK_ERROR
        with pytest.raises(NetworkError):
            res.raise_for_error()


# ── Multipart ────────────────────────────────────────────────────────


class TestUpload:
    @pytest.mark.asyncio()
    async def test_fields_and_files_are_multipart(self):
        recorder = Recorder()
        client = _client(recorder)
        receipt = Attachment(buffer=b"%PDF-1.4", filename="receipt.pdf", mime="application/pdf")

        await client.upload(
            "/user/deposit/submit", 7, {"amount": "5000", "note": None}, {"receipt": receipt},
            session=_authed(),
        )

        request = recorder.last
        assert request.headers["Content-Type"].startswith("multipart/form-data")
        assert request.headers["Authorization"] == "Bearer user-token"
        body = request.content
        assert b'name="telegram_chat_id"\r\n\r\n7' in body
        assert b'name="amount"\r\n\r\n5000' in body
        assert b'name="note"\r\n\r\n\r\n' in body
        assert b'name="receipt"; filename="receipt.pdf"' in body
        assert b"%PDF-1.4" in body

    @pytest.mark.asyncio()
    async def test_upload_without_backend(self):
        client = BackendClient(base_url="", bot_api_key="")

        res = await client.upload("/user/bank-transfer", 7, {})

        assert res.error == "API not configured"
