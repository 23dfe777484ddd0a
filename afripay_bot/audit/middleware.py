"""Audit decorator around a Messenger.

Composed at construction time: every outgoing text is delegated to the
wrapped transport, then recorded in the bot log by a background task so a
slow log never holds the chat lock. Recording failures never reach the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from afripay_bot.audit.bot_log import BotLogService
from afripay_bot.channels.messenger import Messenger, ReplyKeyboard
from afripay_bot.models.enums import MessageDirection

logger = logging.getLogger(__name__)


class AuditedMessenger:
    """Messenger that logs what it sends."""

    def __init__(self, inner: Messenger, bot_log: BotLogService) -> None:
        self._inner = inner
        self._bot_log = bot_log
        self._tasks: set[asyncio.Task[None]] = set()

    async def send_text(
        self,
        chat_id: int,
        text: str,
        *,
        keyboard: ReplyKeyboard | None = None,
        html: bool = False,
    ) -> int | None:
        message_id = await self._inner.send_text(chat_id, text, keyboard=keyboard, html=html)
        payload = {"keyboard": [list(row) for row in keyboard.rows]} if keyboard and keyboard.rows else None
        task = asyncio.create_task(self._record(chat_id, text, payload, message_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return message_id

    async def _record(
        self, chat_id: int, text: str, payload: dict[str, Any] | None, message_id: int | None
    ) -> None:
        try:
            await self._bot_log.store_message(
                chat_id,
                direction=MessageDirection.OUTGOING,
                content=text,
                payload=payload,
                external_message_id=message_id,
            )
        except Exception:
            logger.exception("Failed to log outgoing message for chat %s", chat_id)

    async def drain(self) -> None:
        """Wait for pending outgoing records. Used at shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def send_typing(self, chat_id: int) -> None:
        await self._inner.send_typing(chat_id)

    async def edit_text(self, chat_id: int, message_id: int, text: str) -> None:
        await self._inner.edit_text(chat_id, message_id, text)

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        await self._inner.delete_message(chat_id, message_id)

    async def resolve_file_url(self, file_id: str) -> str:
        return await self._inner.resolve_file_url(file_id)
