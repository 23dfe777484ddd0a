"""File ingestion for receipt and scan steps.

Accepts a document or the highest-resolution photo, enforces the size
limit, downloads with retry and forwards the bytes to the bot log.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

from afripay_bot.audit.bot_log import BotLogService
from afripay_bot.channels.messenger import Messenger
from afripay_bot.config import settings
from afripay_bot.errors import NetworkError, ValidationError
from afripay_bot.models.session import Attachment
from afripay_bot.schemas.messages import InboundMessage

logger = logging.getLogger(__name__)

NO_FILE = "No file detected. Please send an image or a PDF (max 2MB)."
TOO_LARGE = "File too large (max 2MB). Please send a smaller file."
DOWNLOAD_FAILED = "Download error. Please run the command again."


@dataclass(frozen=True)
class FileRef:
    """What the transport told us about an attached file."""

    file_id: str
    size: int | None
    mime: str
    name: str


def extract_file(message: InboundMessage) -> FileRef | None:
    """Document first, else the last (largest) photo variant."""
    if message.document is not None:
        doc = message.document
        return FileRef(
            file_id=doc.file_id,
            size=doc.file_size,
            mime=doc.mime_type or "application/octet-stream",
            name=doc.file_name or "file",
        )
    if message.photo:
        best = message.photo[-1]
        return FileRef(file_id=best.file_id, size=best.file_size, mime="image/jpeg", name="photo.jpg")
    return None


class FileIngestor:
    """Turns an inbound attachment into an Attachment held in flow state."""

    def __init__(
        self,
        messenger: Messenger,
        bot_log: BotLogService | None = None,
        *,
        max_bytes: int | None = None,
        attempts: int | None = None,
        backoff: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        cfg = settings.flow
        self._messenger = messenger
        self._bot_log = bot_log
        self.max_bytes = cfg.max_upload_bytes if max_bytes is None else max_bytes
        self._attempts = attempts or cfg.download_attempts
        self._backoff = cfg.download_backoff if backoff is None else backoff
        self._transport = transport
        self._sleep = sleep

    def check(self, message: InboundMessage) -> FileRef:
        """Validate presence and declared size without downloading."""
        ref = extract_file(message)
        if ref is None:
            raise ValidationError(NO_FILE)
        if ref.size is not None and ref.size > self.max_bytes:
            raise ValidationError(TOO_LARGE)
        return ref

    async def download(self, file_id: str) -> bytes:
        """Fetch the file bytes, retrying with linear backoff."""
        url = await self._messenger.resolve_file_url(file_id)
        last_error: Exception | None = None
        async with httpx.AsyncClient(
            timeout=settings.backend.upload_timeout,
            transport=self._transport,
        ) as client:
            for attempt in range(1, self._attempts + 1):
                try:
                    response = await client.get(url)
                    response.raise_for_status()
                    return response.content
                except httpx.HTTPError as exc:
                    last_error = exc
                    logger.warning(
                        "File download attempt %d/%d failed: %s",
                        attempt, self._attempts, type(exc).__name__,
                    )
                    if attempt < self._attempts:
                        await self._sleep(self._backoff * attempt)
        logger.error("File download gave up after %d attempts: %s", self._attempts, last_error)
        raise NetworkError(DOWNLOAD_FAILED)

    async def ingest(self, message: InboundMessage, *, audit: bool = True) -> Attachment:
        """Validate, download and (optionally) log the message's file.

        Raises ValidationError for a missing or oversized file and
        NetworkError when every download attempt failed.
        """
        ref = self.check(message)
        buffer = await self.download(ref.file_id)
        if len(buffer) > self.max_bytes:
            raise ValidationError(TOO_LARGE)

        attachment = Attachment(buffer=buffer, filename=ref.name, mime=ref.mime)
        logger.info("Received file for chat %s (%s, %d bytes)", message.chat_id, ref.mime, attachment.size)

        if audit and self._bot_log is not None:
            try:
                await self._bot_log.store_file(
                    message.chat_id,
                    attachment,
                    external_message_id=message.message_id,
                    sent_at=message.sent_at,
                )
            except Exception:
                logger.exception("Failed to log file for chat %s", message.chat_id)
        return attachment
