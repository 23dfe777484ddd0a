"""Inbound message router.

Every message is forwarded to the bot log first (best-effort, in the
background), then routed under the chat's lock:

1. A message arriving while the chat is still busy with the previous one is
   dropped (audit only).
2. A pending continuation older than the flow idle timeout is discarded.
3. Slash commands always run; they pre-empt (and log the abandonment of)
   whatever flow was waiting.
4. Anything else goes to the pending continuation, consumed once.
5. With nothing pending, button labels and natural-language commands match.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from afripay_bot.audit.bot_log import BotLogService
from afripay_bot.audit.events import emit
from afripay_bot.auth.gateway import AuthGateway
from afripay_bot.channels.messenger import REMOVE_KEYBOARD, Messenger
from afripay_bot.config import settings
from afripay_bot.conversation.files import FileIngestor
from afripay_bot.conversation.flows.base import EmitFn, FlowContext
from afripay_bot.conversation.flows.deposit import DepositFlow
from afripay_bot.conversation.flows.exchange import ExchangeFlow
from afripay_bot.conversation.flows.menu import (
    DEPOSIT_LABEL,
    EXCHANGE_LABEL,
    SEND_LABEL,
    WITHDRAW_LABEL,
    MenuCommands,
)
from afripay_bot.conversation.flows.onboarding import OnboardingFlow
from afripay_bot.conversation.flows.transfer import TransferFlow
from afripay_bot.conversation.session_store import SessionStore
from afripay_bot.integrations.backend.services import (
    AccountService,
    DepositService,
    ExchangeService,
    TransferService,
)
from afripay_bot.models.enums import FlowOutcome, MessageDirection, MessageType, OnboardingMode
from afripay_bot.models.session import Continuation
from afripay_bot.schemas.events import EventType, SystemEvent
from afripay_bot.schemas.messages import InboundMessage

logger = logging.getLogger(__name__)

MessageHandler = Callable[[InboundMessage], Awaitable[None]]

EXPIRED = "⌛ This operation timed out. Please start again. Type /menu to see services."
FALLBACK = "Type /menu to see services, or /start to begin."
GENERIC_ERROR = "❌ Sorry, something went wrong. Please try again later."

_SLASH_RE = re.compile(r"^/([A-Za-z_]+)(?:@\w+)?(?:\s|$)")
_NEW_USER_RE = re.compile(
    r"^(?:🆕\s*)?(?:i['’]?\s*a?m new|i am new|new (?:user|account|here)|"
    r"(?:create|open) (?:an |my )?account|register|sign ?up)[.!]?$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class Command:
    name: str
    handler: MessageHandler
    slash: bool


def _label(text: str) -> str:
    """Lower-cased label without its leading emoji (``"💰 Deposit"`` → ``"deposit"``)."""
    return re.sub(r"^[^\w/]+", "", text.strip().lower()).strip()


class Dispatcher:
    """Routes each chat's messages to a command or its pending continuation."""

    def __init__(
        self,
        sessions: SessionStore,
        messenger: Messenger,
        *,
        auth: AuthGateway,
        files: FileIngestor,
        deposit: DepositService,
        exchange: ExchangeService,
        transfer: TransferService,
        account: AccountService,
        bot_log: BotLogService | None = None,
        emit_fn: EmitFn = emit,
        idle_timeout: int | None = None,
    ) -> None:
        self.sessions = sessions
        self.messenger = messenger
        self.bot_log = bot_log
        self._emit = emit_fn
        self._idle_timeout = settings.flow.flow_idle_timeout if idle_timeout is None else idle_timeout
        self._audit_tasks: set[asyncio.Task[None]] = set()

        ctx = FlowContext(
            sessions=sessions,
            messenger=messenger,
            auth=auth,
            files=files,
            register=self.register_continuation,
            emit=emit_fn,
        )
        self.onboarding = OnboardingFlow(ctx)
        self.deposit = DepositFlow(ctx, deposit)
        self.exchange = ExchangeFlow(ctx, exchange)
        self.transfer = TransferFlow(ctx, transfer)
        self.menu = MenuCommands(sessions, messenger, account)

        self._slash: dict[str, Command] = {}
        self._labels: dict[str, Command] = {}
        self._build_commands()

    # ── Command table ─────────────────────────────────────────────────

    def _build_commands(self) -> None:
        async def welcome(m: InboundMessage) -> None:
            await self.onboarding.start(m)

        async def login(m: InboundMessage) -> None:
            await self.onboarding.start(m, mode=OnboardingMode.LOGIN)

        async def register(m: InboundMessage) -> None:
            await self.onboarding.start(m, mode=OnboardingMode.REGISTER)

        slash = {
            "start": welcome,
            "login": login,
            "register": register,
            "menu": self.menu.menu,
            "deposit": self.deposit.start,
            "exchange": self.exchange.start,
            "transfer": self.transfer.start,
            "withdraw": self.menu.withdraw,
            "balance": self.menu.balance,
            "solde": self.menu.balance,
            "history": self.menu.history,
            "historique": self.menu.history,
        }
        self._slash = {name: Command(name, handler, slash=True) for name, handler in slash.items()}

        labels = {
            _label(DEPOSIT_LABEL): ("deposit", self.deposit.start),
            _label(EXCHANGE_LABEL): ("exchange", self.exchange.start),
            _label(SEND_LABEL): ("transfer", self.transfer.start),
            _label(WITHDRAW_LABEL): ("withdraw", self.menu.withdraw),
            "i have an account": ("login", login),
        }
        self._labels = {label: Command(name, handler, slash=False) for label, (name, handler) in labels.items()}
        self._new_user = Command("register", register, slash=False)

    def match_command(self, text: str | None) -> Command | None:
        """The command a text triggers, or None for free text."""
        raw = (text or "").strip()
        if not raw:
            return None
        slash = _SLASH_RE.match(raw)
        if slash:
            return self._slash.get(slash.group(1).lower())
        if _NEW_USER_RE.match(raw):
            return self._new_user
        return self._labels.get(_label(raw))

    # ── Continuations ─────────────────────────────────────────────────

    def register_continuation(self, chat_id: int, continuation: Continuation) -> None:
        """Set the chat's one pending continuation. Last registration wins."""
        previous = self.sessions.get(chat_id).continuation
        if previous is not None:
            logger.debug(
                "Chat %s: continuation %s.%s replaced by %s.%s",
                chat_id, previous.kind.value, previous.step, continuation.kind.value, continuation.step,
            )
        self.sessions.set(chat_id, continuation=continuation)

    # ── Entry point ──────────────────────────────────────────────────

    async def on_message(self, message: InboundMessage) -> None:
        chat_id = message.chat_id
        self._audit_inbound(message)

        lock = self.sessions.lock(chat_id)
        if lock.locked():
            logger.info("Chat %s busy, dropping message %s", chat_id, message.message_id)
            await self._emit(SystemEvent(
                event_type=EventType.MESSAGE_DROPPED,
                chat_id=chat_id,
                data={"message_id": message.message_id},
                source_module="conversation.dispatcher",
            ))
            return

        async with lock:
            try:
                await self._route(message)
            except Exception:
                logger.exception("Unhandled error routing message for chat %s", chat_id)
                await self.messenger.send_text(chat_id, GENERIC_ERROR)

    async def _route(self, message: InboundMessage) -> None:
        chat_id = message.chat_id
        session = self.sessions.get(chat_id)
        command = self.match_command(message.text)
        continuation = session.continuation

        if continuation is not None and continuation.is_expired(self._idle_timeout):
            await self._expire(chat_id, continuation)
            if command is None:
                return
            continuation = None

        if continuation is not None:
            if command is not None and command.slash:
                await self._abandon(chat_id, continuation, command)
            else:
                # Consume once: cleared before the handler runs
                self.sessions.set(chat_id, continuation=None)
                await continuation.handler(message)
                return

        if command is not None:
            logger.info("Chat %s: command %s", chat_id, command.name)
            await command.handler(message)
            return

        if continuation is None and message.text is not None:
            await self.messenger.send_text(chat_id, FALLBACK)

    async def _abandon(self, chat_id: int, continuation: Continuation, command: Command) -> None:
        session = self.sessions.get(chat_id)
        flow = session.active_flow
        logger.info(
            "Chat %s: /%s abandons %s at step %s",
            chat_id, command.name, continuation.kind.value, continuation.step,
        )
        self.sessions.set(chat_id, continuation=None, active_flow=None)
        await self._emit(SystemEvent(
            event_type=EventType.FLOW_ABANDONED,
            chat_id=chat_id,
            data={
                "flow": continuation.kind.value,
                "step": flow.step.value if flow is not None else continuation.step,
                "outcome": FlowOutcome.SUPERSEDED.value,
                "superseded_by": command.name,
            },
            source_module="conversation.dispatcher",
        ))

    async def _expire(self, chat_id: int, continuation: Continuation) -> None:
        logger.info("Chat %s: %s flow expired at step %s", chat_id, continuation.kind.value, continuation.step)
        self.sessions.set(chat_id, continuation=None, active_flow=None)
        await self.messenger.send_text(chat_id, EXPIRED, keyboard=REMOVE_KEYBOARD)
        await self._emit(SystemEvent(
            event_type=EventType.FLOW_EXPIRED,
            chat_id=chat_id,
            data={"flow": continuation.kind.value, "step": continuation.step, "outcome": FlowOutcome.EXPIRED.value},
            source_module="conversation.dispatcher",
        ))

    # ── Audit ────────────────────────────────────────────────────────

    def _audit_inbound(self, message: InboundMessage) -> None:
        """Log the inbound message in the background; failures are only logged."""
        if self.bot_log is None:
            return
        is_new_chat = message.chat_id not in self.sessions
        task = asyncio.create_task(self._store_inbound(message, is_new_chat))
        self._audit_tasks.add(task)
        task.add_done_callback(self._audit_tasks.discard)

    async def _store_inbound(self, message: InboundMessage, is_new_chat: bool) -> None:
        assert self.bot_log is not None  # noqa: S101
        if message.contact is not None:
            message_type, content = MessageType.CONTACT, message.contact.phone_number
        elif message.has_attachment:
            message_type, content = MessageType.FILE, message.caption or "[file]"
        else:
            message_type, content = MessageType.TEXT, message.text
        sender = message.sender.model_dump() if message.sender else None
        try:
            if is_new_chat:
                await self.bot_log.upsert_conversation(message.chat_id)
            await self.bot_log.store_message(
                message.chat_id,
                direction=MessageDirection.INCOMING,
                message_type=message_type,
                content=content,
                payload={"from": sender},
                external_message_id=message.message_id,
                sent_at=message.sent_at,
            )
        except Exception:
            logger.exception("Failed to log inbound message for chat %s", message.chat_id)

    async def drain(self) -> None:
        """Wait for pending audit writes. Used at shutdown and in tests."""
        if self._audit_tasks:
            await asyncio.gather(*self._audit_tasks, return_exceptions=True)
