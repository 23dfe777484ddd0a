"""Transport-neutral outbound interface.

Flows and the dispatcher talk to a Messenger; the Telegram adapter is one
implementation, the audit decorator wraps any other.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from afripay_bot.errors import FlowError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplyKeyboard:
    """A custom reply keyboard: rows of button labels."""

    rows: Sequence[Sequence[str]] = field(default_factory=tuple)
    request_contact: bool = False
    one_time: bool = True
    remove: bool = False


REMOVE_KEYBOARD = ReplyKeyboard(remove=True)


@runtime_checkable
class Messenger(Protocol):
    async def send_text(
        self,
        chat_id: int,
        text: str,
        *,
        keyboard: ReplyKeyboard | None = None,
        html: bool = False,
    ) -> int | None:
        """Send a message and return its id."""
        ...

    async def send_typing(self, chat_id: int) -> None: ...

    async def edit_text(self, chat_id: int, message_id: int, text: str) -> None: ...

    async def delete_message(self, chat_id: int, message_id: int) -> None: ...

    async def resolve_file_url(self, file_id: str) -> str: ...


@asynccontextmanager
async def loader(messenger: Messenger, chat_id: int, text: str) -> AsyncIterator[None]:
    """Show a ``⏳`` placeholder while the body runs.

    The placeholder is deleted on success and edited to ``❌ <error>`` on
    failure; the exception is re-raised either way. Placeholder housekeeping
    failures are ignored.
    """
    placeholder = await messenger.send_text(chat_id, f"⏳ {text}")
    try:
        await messenger.send_typing(chat_id)
    except Exception:
        logger.debug("Typing indicator failed for chat %s", chat_id)
    try:
        yield
    except Exception as exc:
        if isinstance(exc, FlowError):
            exc.reported = placeholder is not None
        if placeholder is not None:
            try:
                await messenger.edit_text(chat_id, placeholder, f"❌ {getattr(exc, 'message', None) or str(exc) or 'Error'}")
            except Exception:
                logger.debug("Could not edit loader message for chat %s", chat_id)
        raise
    if placeholder is not None:
        try:
            await messenger.delete_message(chat_id, placeholder)
        except Exception:
            logger.debug("Could not delete loader message for chat %s", chat_id)
