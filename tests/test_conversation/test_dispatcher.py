"""Dispatcher routing: commands, consume-once continuations, pre-emption, drops, expiry."""

from __future__ import annotations

import asyncio
import time
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from afripay_bot.audit.middleware import AuditedMessenger
from afripay_bot.conversation.dispatcher import EXPIRED, FALLBACK, GENERIC_ERROR, Dispatcher
from afripay_bot.conversation.flows.menu import MENU_TEXT
from afripay_bot.models.enums import FlowKind, MessageDirection, MessageType
from afripay_bot.models.session import Continuation, DepositState
from afripay_bot.schemas.backend import DepositForm, DepositWallet
from afripay_bot.schemas.events import EventType
from afripay_bot.schemas.messages import ContactRef
from tests.conftest import CHAT_ID, event_types, login, make_message


def _continuation(handler: AsyncMock, registered_at: float | None = None) -> Continuation:
    cont = Continuation(kind=FlowKind.DEPOSIT, step="amount", handler=handler)
    if registered_at is not None:
        cont.registered_at = registered_at
    return cont


@pytest.fixture()
def deposit_form(services, sessions):
    login(sessions)
    services["deposit"].fetch_form.return_value = DepositForm(wallets=[DepositWallet(id=2, code="XAF")])
    return services["deposit"]


# ── Command matching ─────────────────────────────────────────────────


class TestMatchCommand:
    @pytest.mark.parametrize(("text", "name"), [
        ("/deposit", "deposit"),
        ("/deposit@AfripayBot", "deposit"),
        ("/DEPOSIT now", "deposit"),
        ("💰 Deposit", "deposit"),
        ("🔁 Exchange", "exchange"),
        ("📤 Send", "transfer"),
        ("🏧 Withdraw", "withdraw"),
        ("/solde", "balance"),
        ("/historique", "history"),
        ("🆕 I'm new", "register"),
        ("I am new", "register"),
        ("create an account", "register"),
        ("✅ I have an account", "login"),
    ])
    def test_known_commands(self, dispatcher, text, name):
        command = dispatcher.match_command(text)
        assert command is not None
        assert command.name == name

    @pytest.mark.parametrize("text", ["/unknown", "hello", "", None, "deposit my money please"])
    def test_free_text_is_not_a_command(self, dispatcher, text):
        assert dispatcher.match_command(text) is None

    def test_only_slash_commands_preempt(self, dispatcher):
        assert dispatcher.match_command("/menu").slash is True
        assert dispatcher.match_command("💰 Deposit").slash is False


# ── Continuations ────────────────────────────────────────────────────


class TestContinuations:
    @pytest.mark.asyncio()
    async def test_continuation_consumed_once(self, dispatcher, sessions, messenger):
        handler = AsyncMock()
        dispatcher.register_continuation(CHAT_ID, _continuation(handler))

        await dispatcher.on_message(make_message("first"))
        await dispatcher.on_message(make_message("second"))

        handler.assert_awaited_once()
        assert handler.await_args.args[0].text == "first"
        assert sessions.get(CHAT_ID).continuation is None
        assert messenger.last == FALLBACK

    @pytest.mark.asyncio()
    async def test_last_registration_wins(self, dispatcher):
        first, second = AsyncMock(), AsyncMock()
        dispatcher.register_continuation(CHAT_ID, _continuation(first))
        dispatcher.register_continuation(CHAT_ID, _continuation(second))

        await dispatcher.on_message(make_message("hello"))

        first.assert_not_awaited()
        second.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_menu_label_goes_to_pending_continuation(self, dispatcher):
        handler = AsyncMock()
        dispatcher.register_continuation(CHAT_ID, _continuation(handler))

        await dispatcher.on_message(make_message("💰 Deposit"))

        handler.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_handler_crash_answers_generic_error(self, dispatcher, messenger):
        dispatcher.register_continuation(CHAT_ID, _continuation(AsyncMock(side_effect=RuntimeError("boom"))))

        await dispatcher.on_message(make_message("hi"))

        assert messenger.last == GENERIC_ERROR

    @pytest.mark.asyncio()
    async def test_expired_continuation_is_discarded(self, sessions, messenger, auth, files, services, emit_mock):
        dispatcher = Dispatcher(
            sessions, messenger, auth=auth, files=files,
            deposit=services["deposit"], exchange=services["exchange"],
            transfer=services["transfer"], account=services["account"],
            emit_fn=emit_mock, idle_timeout=60,
        )
        handler = AsyncMock()
        dispatcher.register_continuation(CHAT_ID, _continuation(handler, registered_at=time.monotonic() - 120))
        sessions.set(CHAT_ID, active_flow=DepositState())

        await dispatcher.on_message(make_message("5000"))

        handler.assert_not_awaited()
        assert messenger.texts == [EXPIRED]
        assert sessions.get(CHAT_ID).active_flow is None
        assert EventType.FLOW_EXPIRED in event_types(emit_mock)

    @pytest.mark.asyncio()
    async def test_no_timeout_by_default(self, dispatcher):
        handler = AsyncMock()
        dispatcher.register_continuation(CHAT_ID, _continuation(handler, registered_at=time.monotonic() - 10_000))

        await dispatcher.on_message(make_message("5000"))

        handler.assert_awaited_once()


# ── Pre-emption and drops ────────────────────────────────────────────


class TestPreemption:
    @pytest.mark.asyncio()
    async def test_slash_command_abandons_waiting_flow(self, send, deposit_form, sessions, messenger, emit_mock):
        await send("/deposit")
        assert sessions.get(CHAT_ID).continuation is not None

        await send("/menu")

        session = sessions.get(CHAT_ID)
        assert session.active_flow is None
        assert session.continuation is None
        assert messenger.last == MENU_TEXT
        abandoned = [c.args[0] for c in emit_mock.await_args_list if c.args[0].event_type is EventType.FLOW_ABANDONED]
        assert abandoned[0].data["superseded_by"] == "menu"

    @pytest.mark.asyncio()
    async def test_new_flow_replaces_old_one(self, send, deposit_form, services, sessions, messenger):
        await send("/deposit", "5000")

        await send("/deposit")

        state = sessions.get(CHAT_ID).active_flow
        assert isinstance(state, DepositState)
        assert state.amount is None
        assert deposit_form.fetch_form.await_count == 2

    @pytest.mark.asyncio()
    async def test_message_dropped_while_chat_busy(self, dispatcher, sessions, messenger, emit_mock):
        handler = AsyncMock()
        dispatcher.register_continuation(CHAT_ID, _continuation(handler))

        async with sessions.lock(CHAT_ID):
            await dispatcher.on_message(make_message("5000"))

        handler.assert_not_awaited()
        assert messenger.sent == []
        assert event_types(emit_mock) == [EventType.MESSAGE_DROPPED]
        assert sessions.get(CHAT_ID).continuation is not None

    @pytest.mark.asyncio()
    async def test_free_text_without_flow_gets_hint(self, send, messenger):
        await send("hello")

        assert messenger.texts == [FALLBACK]


# ── Audit trail ──────────────────────────────────────────────────────


class TestAuditTrail:
    @pytest.mark.asyncio()
    async def test_every_message_is_logged(self, sessions, messenger, auth, files, services, emit_mock):
        bot_log = AsyncMock()
        dispatcher = Dispatcher(
            sessions, messenger, auth=auth, files=files,
            deposit=services["deposit"], exchange=services["exchange"],
            transfer=services["transfer"], account=services["account"],
            bot_log=bot_log, emit_fn=emit_mock,
        )

        await dispatcher.on_message(make_message("hello"))
        await dispatcher.on_message(make_message(contact=ContactRef(phone_number="+237600000000")))
        await dispatcher.drain()

        bot_log.upsert_conversation.assert_awaited_once_with(CHAT_ID)
        calls = bot_log.store_message.await_args_list
        assert [c.kwargs["message_type"] for c in calls] == [MessageType.TEXT, MessageType.CONTACT]
        assert all(c.kwargs["direction"] is MessageDirection.INCOMING for c in calls)
        assert calls[1].kwargs["content"] == "+237600000000"

    @pytest.mark.asyncio()
    async def test_audit_failure_does_not_block_routing(self, sessions, messenger, auth, files, services, emit_mock):
        bot_log = AsyncMock()
        bot_log.store_message.side_effect = RuntimeError("log down")
        dispatcher = Dispatcher(
            sessions, messenger, auth=auth, files=files,
            deposit=services["deposit"], exchange=services["exchange"],
            transfer=services["transfer"], account=services["account"],
            bot_log=bot_log, emit_fn=emit_mock,
        )

        await dispatcher.on_message(make_message("/menu"))
        await dispatcher.drain()

        assert messenger.last == MENU_TEXT

    @pytest.mark.asyncio()
    async def test_slow_outgoing_log_does_not_hold_chat(
        self, deposit_form, sessions, messenger, auth, files, services, emit_mock,
    ):
        release = asyncio.Event()

        async def slow_store(*args, **kwargs):
            await release.wait()

        bot_log = AsyncMock()
        bot_log.store_message.side_effect = slow_store
        audited = AuditedMessenger(messenger, bot_log)
        dispatcher = Dispatcher(
            sessions, audited, auth=auth, files=files,
            deposit=services["deposit"], exchange=services["exchange"],
            transfer=services["transfer"], account=services["account"],
            emit_fn=emit_mock,
        )

        await asyncio.wait_for(dispatcher.on_message(make_message("/deposit")), timeout=1)
        await asyncio.wait_for(dispatcher.on_message(make_message("5000")), timeout=1)

        assert sessions.get(CHAT_ID).active_flow.amount == Decimal("5000")
        assert EventType.MESSAGE_DROPPED not in event_types(emit_mock)

        release.set()
        await audited.drain()
        assert bot_log.store_message.await_count == len(messenger.sent)
