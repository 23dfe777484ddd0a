"""Single-shot commands: service menu, balance, history, withdraw."""

from __future__ import annotations

import logging

from afripay_bot.channels.messenger import Messenger, ReplyKeyboard
from afripay_bot.conversation.flows.base import LOGIN_REQUIRED
from afripay_bot.conversation.session_store import SessionStore
from afripay_bot.errors import FlowError
from afripay_bot.integrations.backend.services import AccountService
from afripay_bot.schemas.messages import InboundMessage

logger = logging.getLogger(__name__)

DEPOSIT_LABEL = "💰 Deposit"
EXCHANGE_LABEL = "🔁 Exchange"
SEND_LABEL = "📤 Send"
WITHDRAW_LABEL = "🏧 Withdraw"

MENU_KEYBOARD = ReplyKeyboard(
    rows=((DEPOSIT_LABEL, EXCHANGE_LABEL), (SEND_LABEL, WITHDRAW_LABEL)),
    one_time=False,
)

MENU_TEXT = "\n".join([
    "Available Afripay services:",
    f"1) {DEPOSIT_LABEL}",
    f"2) {EXCHANGE_LABEL}",
    f"3) {SEND_LABEL}",
    f"4) {WITHDRAW_LABEL}",
    "",
    "Choose an option from the keyboard below.",
])

HISTORY_LIMIT = 5


class MenuCommands:
    def __init__(self, sessions: SessionStore, messenger: Messenger, account: AccountService) -> None:
        self.sessions = sessions
        self.messenger = messenger
        self.account = account

    async def menu(self, message: InboundMessage) -> None:
        await self.messenger.send_text(message.chat_id, MENU_TEXT, keyboard=MENU_KEYBOARD)

    async def withdraw(self, message: InboundMessage) -> None:
        await self.messenger.send_text(message.chat_id, "Feature under implementation.")

    async def balance(self, message: InboundMessage) -> None:
        chat_id = message.chat_id
        session = self.sessions.get(chat_id)
        if not session.auth.is_authed:
            await self.messenger.send_text(chat_id, LOGIN_REQUIRED)
            return

        await self.messenger.send_typing(chat_id)
        try:
            balance = await self.account.balance(session)
        except FlowError as exc:
            logger.warning("Balance lookup failed for chat %s: %s", chat_id, exc.message)
            await self.messenger.send_text(chat_id, f"❌ Sorry: {exc.message}")
            return
        await self.messenger.send_text(chat_id, f"💳 Your current balance is {balance if balance is not None else 'N/A'}.")

    async def history(self, message: InboundMessage) -> None:
        chat_id = message.chat_id
        session = self.sessions.get(chat_id)
        if not session.auth.is_authed:
            await self.messenger.send_text(chat_id, LOGIN_REQUIRED)
            return

        await self.messenger.send_typing(chat_id)
        try:
            records = await self.account.transactions(session, limit=HISTORY_LIMIT)
        except FlowError as exc:
            logger.warning("History lookup failed for chat %s: %s", chat_id, exc.message)
            await self.messenger.send_text(chat_id, f"❌ Error: {exc.message}")
            return

        if not records:
            await self.messenger.send_text(chat_id, "No transactions found.")
            return
        lines = [f"▫️ {r.date}: {r.type} of {r.amount}" for r in records]
        await self.messenger.send_text(chat_id, "\n".join(lines))
