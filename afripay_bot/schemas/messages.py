"""Transport-neutral inbound message.

The Telegram adapter converts ``telegram.Message`` into this shape so the
dispatcher and flows never import the transport library.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class Sender(BaseModel):
    id: int
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class DocumentRef(BaseModel):
    file_id: str
    file_size: int | None = None
    mime_type: str | None = None
    file_name: str | None = None


class PhotoRef(BaseModel):
    file_id: str
    file_size: int | None = None


class ContactRef(BaseModel):
    phone_number: str
    user_id: int | None = None
    first_name: str | None = None
    last_name: str | None = None


class InboundMessage(BaseModel):
    """A single message received from a chat."""

    chat_id: int
    message_id: int | None = None
    sender: Sender | None = None
    text: str | None = None
    caption: str | None = None
    document: DocumentRef | None = None
    photo: list[PhotoRef] = Field(default_factory=list)  # last element = highest resolution
    contact: ContactRef | None = None
    date: int | None = None  # epoch seconds

    @property
    def clean_text(self) -> str:
        """Stripped text, empty string when the message carries no text."""
        return (self.text or "").strip()

    @property
    def has_attachment(self) -> bool:
        return self.document is not None or bool(self.photo)

    @property
    def sent_at(self) -> str | None:
        """ISO timestamp of ``date`` for the audit log."""
        if self.date is None:
            return None
        return datetime.fromtimestamp(self.date, tz=timezone.utc).isoformat()
