"""Object graph for one running bot: store, backend, audit and dispatcher."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from afripay_bot.audit.bot_log import BotLogService
from afripay_bot.audit.middleware import AuditedMessenger
from afripay_bot.auth.gateway import AuthGateway
from afripay_bot.channels.messenger import Messenger
from afripay_bot.config import settings
from afripay_bot.conversation.dispatcher import Dispatcher
from afripay_bot.conversation.files import FileIngestor
from afripay_bot.conversation.session_store import SessionStore
from afripay_bot.integrations.backend.client import BackendClient
from afripay_bot.integrations.backend.services import (
    AccountService,
    DepositService,
    ExchangeService,
    TransferService,
)

logger = logging.getLogger(__name__)


@dataclass
class BotRuntime:
    sessions: SessionStore
    client: BackendClient
    bot_log: BotLogService
    messenger: AuditedMessenger
    dispatcher: Dispatcher

    async def close(self) -> None:
        await self.dispatcher.drain()
        await self.messenger.drain()
        await self.client.close()


def build_runtime(transport: Messenger, client: BackendClient | None = None) -> BotRuntime:
    """Wire every component around a transport messenger."""
    sessions = SessionStore(
        max_entries=settings.sessions.session_max_entries,
        idle_ttl=settings.sessions.session_idle_ttl,
    )
    client = client or BackendClient()
    if not client.is_configured:
        logger.warning("BACKEND_BASE_URL not set, every backend call will fail")

    bot_log = BotLogService(sessions, client)
    messenger = AuditedMessenger(transport, bot_log)
    dispatcher = Dispatcher(
        sessions,
        messenger,
        auth=AuthGateway(sessions, client),
        files=FileIngestor(messenger, bot_log),
        deposit=DepositService(client),
        exchange=ExchangeService(client),
        transfer=TransferService(client),
        account=AccountService(client),
        bot_log=bot_log,
    )
    return BotRuntime(sessions=sessions, client=client, bot_log=bot_log, messenger=messenger, dispatcher=dispatcher)
