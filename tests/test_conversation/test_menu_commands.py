"""Single-shot commands: /menu, /balance, /history, withdraw."""

from __future__ import annotations

import pytest

from afripay_bot.conversation.flows.base import LOGIN_REQUIRED
from afripay_bot.conversation.flows.menu import MENU_KEYBOARD, MENU_TEXT
from afripay_bot.errors import BackendError
from afripay_bot.schemas.backend import TransactionRecord
from tests.conftest import login


class TestMenu:
    @pytest.mark.asyncio()
    async def test_menu_shows_persistent_keyboard(self, send, messenger):
        await send("/menu")

        assert messenger.last == MENU_TEXT
        assert messenger.sent[-1].keyboard is MENU_KEYBOARD
        assert MENU_KEYBOARD.one_time is False

    @pytest.mark.asyncio()
    async def test_withdraw_is_not_available_yet(self, send, messenger):
        await send("🏧 Withdraw")

        assert messenger.last == "Feature under implementation."


class TestBalance:
    @pytest.mark.asyncio()
    async def test_requires_login(self, send, services, messenger):
        await send("/balance")

        assert messenger.last == LOGIN_REQUIRED
        services["account"].balance.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_shows_balance(self, send, services, sessions, messenger):
        login(sessions)
        services["account"].balance.return_value = "12500 XAF"

        await send("/solde")

        assert messenger.last == "💳 Your current balance is 12500 XAF."
        assert messenger.typing

    @pytest.mark.asyncio()
    async def test_missing_balance_is_na(self, send, services, sessions, messenger):
        login(sessions)
        services["account"].balance.return_value = None

        await send("/balance")

        assert messenger.last == "💳 Your current balance is N/A."

    @pytest.mark.asyncio()
    async def test_backend_error_is_surfaced(self, send, services, sessions, messenger):
        login(sessions)
        services["account"].balance.side_effect = BackendError("Service unavailable", status_code=503)

        await send("/balance")

        assert messenger.last == "❌ Sorry: Service unavailable"


class TestHistory:
    @pytest.mark.asyncio()
    async def test_lists_transactions(self, send, services, sessions, messenger):
        login(sessions)
        services["account"].transactions.return_value = [
            TransactionRecord(date="2024-03-05", type="deposit", amount="5000"),
            TransactionRecord(date="2024-03-06", type="exchange", amount="200"),
        ]

        await send("/historique")

        assert messenger.last == "▫️ 2024-03-05: deposit of 5000\n▫️ 2024-03-06: exchange of 200"
        assert services["account"].transactions.await_args.kwargs == {"limit": 5}

    @pytest.mark.asyncio()
    async def test_no_transactions(self, send, services, sessions, messenger):
        login(sessions)
        services["account"].transactions.return_value = []

        await send("/history")

        assert messenger.last == "No transactions found."

    @pytest.mark.asyncio()
    async def test_backend_error_is_surfaced(self, send, services, sessions, messenger):
        login(sessions)
        services["account"].transactions.side_effect = BackendError("Unauthorized")

        await send("/history")

        assert messenger.last == "❌ Error: Unauthorized"
