"""Tests for the audit trail: event bus, bot log, messenger decorator, loader.

Tests cover:
- Event pub/sub (filtered subscriptions, failure isolation, drain on stop)
- BotLogService request bodies and the two-step file upload
- AuditedMessenger logging outgoing texts
- Audit subscriber forwarding lifecycle events
- The loading placeholder on success and failure
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from afripay_bot.audit.bot_log import BotLogService
from afripay_bot.audit.events import emit, start_event_system, stop_event_system, subscribe, unsubscribe
from afripay_bot.audit.middleware import AuditedMessenger
from afripay_bot.audit.subscriber import AUDITED_EVENTS, make_audit_subscriber
from afripay_bot.channels.messenger import ReplyKeyboard, loader
from afripay_bot.conversation.session_store import SessionStore
from afripay_bot.errors import BackendError
from afripay_bot.integrations.backend.client import BackendClient
from afripay_bot.models.enums import MessageDirection, MessageType
from afripay_bot.models.session import Attachment
from afripay_bot.schemas.events import EventType, SystemEvent
from tests.conftest import CHAT_ID, FakeMessenger, login


class LogBackend:
    """Records bot-log calls; message ids increase from 900."""

    def __init__(self, fail_messages: bool = False) -> None:
        self.requests: list[httpx.Request] = []
        self.fail_messages = fail_messages

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/api/bot/messages" and self.fail_messages:
            return httpx.Response(500, json={"message": "log down"})
        if request.url.path == "/api/bot/messages":
            return httpx.Response(201, json={"data": {"id": 900 + len(self.requests)}})
        return httpx.Response(200, json={"success": True})

    def json_bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.headers["Content-Type"] == "application/json"]


@pytest.fixture()
def store() -> SessionStore:
    return SessionStore()


def _bot_log(store: SessionStore, backend: LogBackend) -> BotLogService:
    client = BackendClient(base_url="https://backend.test/api", bot_api_key="bot-key",
                           transport=httpx.MockTransport(backend))
    return BotLogService(store, client)


# ── Event bus ────────────────────────────────────────────────────────


class TestEventBus:
    @pytest.mark.asyncio()
    async def test_filtered_subscriber_only_sees_its_types(self):
        everything, only_drops = AsyncMock(), AsyncMock()
        everything.__name__ = "everything"
        only_drops.__name__ = "only_drops"
        subscribe(everything)
        subscribe(only_drops, [EventType.MESSAGE_DROPPED])
        await start_event_system()

        await emit(SystemEvent(event_type=EventType.FLOW_STARTED, chat_id=1))
        await emit(SystemEvent(event_type=EventType.MESSAGE_DROPPED, chat_id=1))
        await stop_event_system()

        assert everything.await_count == 2
        only_drops.assert_awaited_once()
        assert only_drops.await_args.args[0].event_type is EventType.MESSAGE_DROPPED

    @pytest.mark.asyncio()
    async def test_failing_subscriber_is_isolated(self):
        broken = AsyncMock(side_effect=RuntimeError("boom"))
        broken.__name__ = "broken"
        healthy = AsyncMock()
        healthy.__name__ = "healthy"
        subscribe(broken)
        subscribe(healthy)
        await start_event_system()

        await emit(SystemEvent(event_type=EventType.FLOW_STARTED, chat_id=1))
        await emit(SystemEvent(event_type=EventType.FLOW_COMPLETED, chat_id=1))
        await stop_event_system()

        assert healthy.await_count == 2

    @pytest.mark.asyncio()
    async def test_unsubscribed_handler_is_not_called(self):
        handler = AsyncMock()
        handler.__name__ = "handler"
        subscribe(handler)
        unsubscribe(handler)

        await emit(SystemEvent(event_type=EventType.FLOW_COMPLETED, chat_id=1))
        await stop_event_system()

        handler.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_queued_events_drain_on_stop(self):
        handler = AsyncMock()
        handler.__name__ = "handler"
        subscribe(handler)
        await start_event_system()

        await emit(SystemEvent(event_type=EventType.FLOW_COMPLETED, chat_id=1))
        await stop_event_system()

        handler.assert_awaited_once()


# ── Bot log ──────────────────────────────────────────────────────────


class TestBotLogService:
    @pytest.mark.asyncio()
    async def test_upsert_binds_logged_in_user(self, store):
        login(store)
        backend = LogBackend()

        await _bot_log(store, backend).upsert_conversation(CHAT_ID)

        body = backend.json_bodies()[0]
        assert backend.requests[0].url.path == "/api/bot/conversations/upsert"
        assert body["channel"] == "telegram"
        assert body["external_chat_id"] == str(CHAT_ID)
        assert body["user_id"] == 7

    @pytest.mark.asyncio()
    async def test_store_message_body(self, store):
        backend = LogBackend()

        await _bot_log(store, backend).store_message(
            CHAT_ID, direction=MessageDirection.INCOMING, content="hello", external_message_id=5,
        )

        body = backend.json_bodies()[0]
        assert body["direction"] == "incoming"
        assert body["message_type"] == "text"
        assert body["content"] == "hello"
        assert body["external_message_id"] == 5
        assert body["user_id"] is None

    @pytest.mark.asyncio()
    async def test_store_system(self, store):
        backend = LogBackend()

        await _bot_log(store, backend).store_system(CHAT_ID, "flow.completed", {"flow": "deposit"})

        body = backend.json_bodies()[0]
        assert body["direction"] == "outgoing"
        assert body["message_type"] == "system"
        assert body["payload"] == {"flow": "deposit"}

    @pytest.mark.asyncio()
    async def test_store_file_uploads_to_logged_message(self, store):
        backend = LogBackend()
        attachment = Attachment(buffer=b"%PDF", filename="receipt.pdf", mime="application/pdf")

        ok = await _bot_log(store, backend).store_file(CHAT_ID, attachment, external_message_id=3)

        assert ok is True
        message_body = backend.json_bodies()[0]
        assert message_body["message_type"] == MessageType.FILE.value
        assert message_body["content"] == "receipt.pdf"
        assert message_body["payload"] == {"filename": "receipt.pdf", "mime": "application/pdf", "size": 4}
        assert backend.requests[1].url.path == "/api/bot/messages/901/attachments"
        assert b'filename="receipt.pdf"' in backend.requests[1].content

    @pytest.mark.asyncio()
    async def test_store_file_stops_when_message_log_fails(self, store):
        backend = LogBackend(fail_messages=True)
        attachment = Attachment(buffer=b"%PDF", filename="receipt.pdf", mime="application/pdf")

        ok = await _bot_log(store, backend).store_file(CHAT_ID, attachment)

        assert ok is False
        assert len(backend.requests) == 1


# ── Messenger decorator ──────────────────────────────────────────────


class TestAuditedMessenger:
    @pytest.mark.asyncio()
    async def test_logs_outgoing_text_with_keyboard(self):
        inner = FakeMessenger()
        bot_log = AsyncMock()
        messenger = AuditedMessenger(inner, bot_log)

        message_id = await messenger.send_text(CHAT_ID, "Pick one", keyboard=ReplyKeyboard(rows=(("A", "B"),)))
        await messenger.drain()

        assert inner.sent[0].text == "Pick one"
        kwargs = bot_log.store_message.await_args.kwargs
        assert kwargs["direction"] is MessageDirection.OUTGOING
        assert kwargs["content"] == "Pick one"
        assert kwargs["payload"] == {"keyboard": [["A", "B"]]}
        assert kwargs["external_message_id"] == message_id

    @pytest.mark.asyncio()
    async def test_log_failure_does_not_reach_caller(self):
        inner = FakeMessenger()
        bot_log = AsyncMock()
        bot_log.store_message.side_effect = RuntimeError("log down")
        messenger = AuditedMessenger(inner, bot_log)

        message_id = await messenger.send_text(CHAT_ID, "hi")
        await messenger.drain()

        assert message_id == inner.sent[0].message_id
        bot_log.store_message.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_other_calls_are_delegated(self):
        inner = FakeMessenger()
        messenger = AuditedMessenger(inner, AsyncMock())

        await messenger.send_typing(CHAT_ID)
        await messenger.edit_text(CHAT_ID, 5, "x")
        await messenger.delete_message(CHAT_ID, 5)

        assert inner.typing == [CHAT_ID]
        assert inner.edited == [(CHAT_ID, 5, "x")]
        assert inner.deleted == [(CHAT_ID, 5)]
        assert await messenger.resolve_file_url("f") == "https://files.test/f"


# ── Subscriber ───────────────────────────────────────────────────────


class TestAuditSubscriber:
    @pytest.mark.asyncio()
    async def test_forwards_lifecycle_events(self):
        bot_log = AsyncMock()
        handler = make_audit_subscriber(bot_log)
        event = SystemEvent(event_type=EventType.FLOW_COMPLETED, chat_id=CHAT_ID, data={"flow": "deposit"},
                            source_module="conversation.flows.deposit")

        await handler(event)

        chat_id, content, payload = bot_log.store_system.await_args.args
        assert (chat_id, content) == (CHAT_ID, "flow.completed")
        assert payload["flow"] == "deposit"
        assert payload["source_module"] == "conversation.flows.deposit"
        assert payload["event_id"] == str(event.id)

    @pytest.mark.asyncio()
    async def test_skips_chatless_events(self):
        bot_log = AsyncMock()
        handler = make_audit_subscriber(bot_log)

        await handler(SystemEvent(event_type=EventType.SIMULATOR_FALLBACK))

        bot_log.store_system.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_per_step_events_are_not_subscribed(self):
        bot_log = AsyncMock()
        subscribe(make_audit_subscriber(bot_log), AUDITED_EVENTS)
        await start_event_system()

        await emit(SystemEvent(event_type=EventType.FLOW_STEP_CHANGED, chat_id=CHAT_ID))
        await emit(SystemEvent(event_type=EventType.FLOW_REPROMPTED, chat_id=CHAT_ID))
        await emit(SystemEvent(event_type=EventType.PIN_EXHAUSTED, chat_id=CHAT_ID))
        await stop_event_system()

        [call] = bot_log.store_system.await_args_list
        assert call.args[1] == "auth.pin_exhausted"

    @pytest.mark.asyncio()
    async def test_never_raises(self):
        bot_log = AsyncMock()
        bot_log.store_system.side_effect = RuntimeError("log down")

        await make_audit_subscriber(bot_log)(SystemEvent(event_type=EventType.PIN_FAILED, chat_id=CHAT_ID))


# ── Loader ───────────────────────────────────────────────────────────


class TestLoader:
    @pytest.mark.asyncio()
    async def test_placeholder_deleted_on_success(self):
        messenger = FakeMessenger()

        async with loader(messenger, CHAT_ID, "Loading deposit form..."):
            pass

        placeholder = messenger.sent[0]
        assert placeholder.text == "⏳ Loading deposit form..."
        assert messenger.typing == [CHAT_ID]
        assert messenger.deleted == [(CHAT_ID, placeholder.message_id)]

    @pytest.mark.asyncio()
    async def test_placeholder_edited_on_failure(self):
        messenger = FakeMessenger()

        with pytest.raises(BackendError) as exc_info:
            async with loader(messenger, CHAT_ID, "Submitting..."):
                raise BackendError("Insufficient balance")

        assert exc_info.value.reported is True
        assert messenger.edited == [(CHAT_ID, messenger.sent[0].message_id, "❌ Insufficient balance")]
        assert messenger.deleted == []
