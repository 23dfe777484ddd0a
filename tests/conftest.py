"""Shared fixtures: in-memory messenger, session store, stubbed backend services."""

from __future__ import annotations

from dataclasses import dataclass
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from afripay_bot.audit.events import reset_event_system
from afripay_bot.auth.gateway import AuthGateway, AuthResult
from afripay_bot.channels.messenger import ReplyKeyboard
from afripay_bot.conversation.dispatcher import Dispatcher
from afripay_bot.conversation.files import FileIngestor
from afripay_bot.conversation.session_store import SessionStore
from afripay_bot.integrations.backend.services import (
    AccountService,
    DepositService,
    ExchangeService,
    TransferService,
)
from afripay_bot.models.session import AuthState
from afripay_bot.schemas.messages import InboundMessage, Sender

CHAT_ID = 4242
FILE_BYTES = b"%PDF-1.4 receipt"


@dataclass
class SentMessage:
    chat_id: int
    text: str
    keyboard: ReplyKeyboard | None
    html: bool
    message_id: int


class FakeMessenger:
    """Records everything the bot sends."""

    def __init__(self) -> None:
        self.sent: list[SentMessage] = []
        self.edited: list[tuple[int, int, str]] = []
        self.deleted: list[tuple[int, int]] = []
        self.typing: list[int] = []
        self._next_id = 100

    async def send_text(
        self,
        chat_id: int,
        text: str,
        *,
        keyboard: ReplyKeyboard | None = None,
        html: bool = False,
    ) -> int | None:
        self._next_id += 1
        self.sent.append(SentMessage(chat_id, text, keyboard, html, self._next_id))
        return self._next_id

    async def send_typing(self, chat_id: int) -> None:
        self.typing.append(chat_id)

    async def edit_text(self, chat_id: int, message_id: int, text: str) -> None:
        self.edited.append((chat_id, message_id, text))

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        self.deleted.append((chat_id, message_id))

    async def resolve_file_url(self, file_id: str) -> str:
        return f"https://files.test/{file_id}"

    @property
    def texts(self) -> list[str]:
        """Sent texts without the loader placeholders."""
        return [m.text for m in self.sent if not m.text.startswith("⏳")]

    @property
    def last(self) -> str:
        return self.texts[-1]

    def clear(self) -> None:
        self.sent.clear()
        self.edited.clear()
        self.deleted.clear()


def make_message(text: str | None = None, chat_id: int = CHAT_ID, **fields: object) -> InboundMessage:
    """An inbound message from the chat's own user."""
    fields.setdefault("sender", Sender(id=chat_id, username="awa", first_name="Awa", last_name="Diallo"))
    return InboundMessage(chat_id=chat_id, message_id=1, text=text, date=1_700_000_000, **fields)


def login(sessions: SessionStore, chat_id: int = CHAT_ID) -> None:
    sessions.set(
        chat_id,
        auth=AuthState(
            is_authed=True,
            access_token="user-token",
            user={"id": 7, "name": "Awa Diallo"},
            email="awa@example.com",
        ),
    )


def event_types(emit_mock: AsyncMock) -> list:
    return [c.args[0].event_type for c in emit_mock.await_args_list]


def file_transport(content: bytes = FILE_BYTES) -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(200, content=content))


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _reset_events():
    yield
    reset_event_system()


@pytest.fixture()
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture()
def sessions() -> SessionStore:
    return SessionStore()


@pytest.fixture()
def emit_mock() -> AsyncMock:
    return AsyncMock()


@pytest.fixture()
def auth() -> MagicMock:
    gateway = MagicMock(spec=AuthGateway)
    gateway.login = AsyncMock(return_value=AuthResult(ok=True, token="user-token"))
    gateway.verify_pin = AsyncMock(return_value=AuthResult(ok=True))
    gateway.register_user = AsyncMock(return_value=AuthResult(ok=True))
    gateway.registration_link.return_value = "https://afripay.test/api/user/register"
    return gateway


@pytest.fixture()
def files(messenger: FakeMessenger) -> FileIngestor:
    return FileIngestor(messenger, None, transport=file_transport(), sleep=AsyncMock())


@pytest.fixture()
def services() -> dict[str, MagicMock]:
    """Backend services stubbed at the service boundary (async methods become AsyncMocks)."""
    return {
        "deposit": MagicMock(spec=DepositService),
        "exchange": MagicMock(spec=ExchangeService),
        "transfer": MagicMock(spec=TransferService),
        "account": MagicMock(spec=AccountService),
    }


@pytest.fixture()
def dispatcher(sessions, messenger, auth, files, services, emit_mock) -> Dispatcher:
    return Dispatcher(
        sessions,
        messenger,
        auth=auth,
        files=files,
        deposit=services["deposit"],
        exchange=services["exchange"],
        transfer=services["transfer"],
        account=services["account"],
        emit_fn=emit_mock,
    )


@pytest.fixture()
def send(dispatcher: Dispatcher):
    """Feed messages through the dispatcher, one after the other."""

    async def _send(*items: str | InboundMessage) -> None:
        for item in items:
            message = item if isinstance(item, InboundMessage) else make_message(item)
            await dispatcher.on_message(message)

    return _send
