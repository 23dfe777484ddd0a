"""Backend bot log — persists every inbound/outbound message and attachment.

Best-effort by contract: failures come back as an unsuccessful ApiResponse
and are only logged. Callers never need a try/except around these calls.
"""

from __future__ import annotations

import logging
from typing import Any

from afripay_bot.conversation.session_store import SessionStore
from afripay_bot.integrations.backend.client import ApiResponse, BackendClient
from afripay_bot.integrations.backend.normalize import pick
from afripay_bot.models.enums import MessageDirection, MessageType
from afripay_bot.models.session import Attachment

logger = logging.getLogger(__name__)


class BotLogService:
    """Writes conversations, messages and attachments to the backend log."""

    def __init__(self, sessions: SessionStore, client: BackendClient, channel: str = "telegram") -> None:
        self._sessions = sessions
        self._client = client
        self.channel = channel

    def _user_id(self, chat_id: int) -> Any:
        user = self._sessions.get(chat_id).auth.user or {}
        return user.get("id")

    async def upsert_conversation(
        self,
        chat_id: int,
        *,
        user_id: Any = None,
        title: str | None = None,
    ) -> ApiResponse:
        """Ensure the conversation exists, optionally binding a user id."""
        session = self._sessions.get(chat_id)
        body = {
            "channel": self.channel,
            "external_chat_id": str(chat_id),
            "user_id": user_id if user_id is not None else self._user_id(chat_id),
            "title": title,
        }
        res = await self._client.request("/bot/conversations/upsert", chat_id, "POST", body, session=session)
        if not res.ok:
            logger.warning("Conversation upsert failed for chat %s: %s", chat_id, res.error)
        return res

    async def store_message(
        self,
        chat_id: int,
        *,
        direction: MessageDirection,
        content: str | None,
        message_type: MessageType = MessageType.TEXT,
        payload: dict[str, Any] | None = None,
        external_message_id: int | str | None = None,
        sent_at: str | None = None,
    ) -> ApiResponse:
        session = self._sessions.get(chat_id)
        body = {
            "channel": self.channel,
            "external_chat_id": str(chat_id),
            "direction": direction.value,
            "message_type": message_type.value,
            "content": content,
            "payload": payload,
            "external_message_id": external_message_id,
            "sent_at": sent_at,
            "user_id": self._user_id(chat_id),
        }
        res = await self._client.request("/bot/messages", chat_id, "POST", body, session=session)
        if not res.ok:
            logger.warning("Message log failed for chat %s: %s", chat_id, res.error)
        return res

    async def upload_attachment(self, chat_id: int, message_id: int | str, attachment: Attachment) -> ApiResponse:
        """Attach a file to a previously stored log message."""
        session = self._sessions.get(chat_id)
        res = await self._client.upload(
            f"/bot/messages/{message_id}/attachments", chat_id, {}, {"file": attachment}, session=session,
        )
        if not res.ok:
            logger.warning("Attachment upload failed for chat %s: %s", chat_id, res.error)
        return res

    async def store_system(self, chat_id: int, content: str, payload: dict[str, Any] | None = None) -> ApiResponse:
        """A system log line. Nothing is sent to the user."""
        return await self.store_message(
            chat_id,
            direction=MessageDirection.OUTGOING,
            message_type=MessageType.SYSTEM,
            content=content,
            payload=payload,
        )

    async def store_file(
        self,
        chat_id: int,
        attachment: Attachment,
        *,
        content: str | None = None,
        external_message_id: int | str | None = None,
        sent_at: str | None = None,
    ) -> bool:
        """Log an incoming file message and upload its bytes. True when both succeeded."""
        res = await self.store_message(
            chat_id,
            direction=MessageDirection.INCOMING,
            message_type=MessageType.FILE,
            content=content or attachment.filename,
            payload={"filename": attachment.filename, "mime": attachment.mime, "size": attachment.size},
            external_message_id=external_message_id,
            sent_at=sent_at,
        )
        log_id = pick(res.data, "id") if res.ok else None
        if log_id is None:
            return False
        upload = await self.upload_attachment(chat_id, log_id, attachment)
        return upload.ok
