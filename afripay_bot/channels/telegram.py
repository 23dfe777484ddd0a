"""Telegram adapter — long-polling transport for the dispatcher.

Uses python-telegram-bot v21+ async. Converts ``telegram.Message`` into the
transport-neutral InboundMessage and implements the Messenger protocol on
top of ``telegram.Bot``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from telegram import Bot, KeyboardButton, Message, ReplyKeyboardMarkup, ReplyKeyboardRemove, Update
from telegram.constants import ChatAction, ParseMode
from telegram.error import TelegramError
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from afripay_bot.channels.messenger import ReplyKeyboard
from afripay_bot.config import settings
from afripay_bot.schemas.messages import ContactRef, DocumentRef, InboundMessage, PhotoRef, Sender

if TYPE_CHECKING:
    from afripay_bot.conversation.dispatcher import Dispatcher

logger = logging.getLogger(__name__)


def to_markup(keyboard: ReplyKeyboard | None) -> ReplyKeyboardMarkup | ReplyKeyboardRemove | None:
    """Render a ReplyKeyboard as Telegram reply markup."""
    if keyboard is None:
        return None
    if keyboard.remove:
        return ReplyKeyboardRemove()
    rows = [
        [KeyboardButton(label, request_contact=keyboard.request_contact) for label in row]
        for row in keyboard.rows
    ]
    return ReplyKeyboardMarkup(rows, resize_keyboard=True, one_time_keyboard=keyboard.one_time)


def inbound_from_telegram(message: Message) -> InboundMessage:
    """Convert a Telegram message into the dispatcher's InboundMessage."""
    user = message.from_user
    sender = None
    if user is not None:
        sender = Sender(
            id=user.id,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
        )

    document = None
    if message.document is not None:
        document = DocumentRef(
            file_id=message.document.file_id,
            file_size=message.document.file_size,
            mime_type=message.document.mime_type,
            file_name=message.document.file_name,
        )

    contact = None
    if message.contact is not None:
        contact = ContactRef(
            phone_number=message.contact.phone_number,
            user_id=message.contact.user_id,
            first_name=message.contact.first_name,
            last_name=message.contact.last_name,
        )

    return InboundMessage(
        chat_id=message.chat_id,
        message_id=message.message_id,
        sender=sender,
        text=message.text,
        caption=message.caption,
        document=document,
        photo=[PhotoRef(file_id=p.file_id, file_size=p.file_size) for p in message.photo],
        contact=contact,
        date=int(message.date.timestamp()) if message.date else None,
    )


class TelegramMessenger:
    """Messenger implementation backed by ``telegram.Bot``."""

    def __init__(self, bot: Bot) -> None:
        self.bot = bot

    async def send_text(
        self,
        chat_id: int,
        text: str,
        *,
        keyboard: ReplyKeyboard | None = None,
        html: bool = False,
    ) -> int | None:
        sent = await self.bot.send_message(
            chat_id=chat_id,
            text=text,
            reply_markup=to_markup(keyboard),
            parse_mode=ParseMode.HTML if html else None,
        )
        return sent.message_id

    async def send_typing(self, chat_id: int) -> None:
        try:
            await self.bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)
        except TelegramError as exc:
            logger.debug("Typing indicator failed for chat %s: %s", chat_id, exc)

    async def edit_text(self, chat_id: int, message_id: int, text: str) -> None:
        await self.bot.edit_message_text(text=text, chat_id=chat_id, message_id=message_id)

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        await self.bot.delete_message(chat_id=chat_id, message_id=message_id)

    async def resolve_file_url(self, file_id: str) -> str:
        """Absolute download URL of a Telegram file."""
        file = await self.bot.get_file(file_id)
        if not file.file_path:
            msg = f"Telegram returned no path for file {file_id}"
            raise ValueError(msg)
        return file.file_path


def create_telegram_app(dispatcher_factory: Callable[[Bot], Dispatcher]) -> Application:
    """Build and configure the Telegram bot application.

    ``dispatcher_factory`` receives the bot once the application exists, so the
    messenger and the dispatcher share it. Returns the Application (not yet started).
    """
    token = settings.telegram.telegram_bot_token
    if not token:
        msg = "TELEGRAM_BOT_TOKEN not set in environment"
        raise ValueError(msg)

    # Concurrent updates: a chat's second message must reach the dispatcher
    # while its first is still being handled so it can be dropped.
    app = Application.builder().token(token).concurrent_updates(True).build()
    dispatcher = dispatcher_factory(app.bot)

    async def handle_update(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.message is None:
            return
        try:
            await dispatcher.on_message(inbound_from_telegram(update.message))
        except Exception:
            logger.exception("Error handling Telegram update %s", update.update_id)

    app.add_handler(MessageHandler(filters.ALL, handle_update))
    app.bot_data["dispatcher"] = dispatcher

    logger.info("Telegram bot application created")
    return app
