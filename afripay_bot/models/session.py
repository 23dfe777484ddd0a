"""Per-chat session state held in process memory.

One Session per chat id. It carries the auth sub-record, at most one active
flow and at most one pending continuation.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any, ClassVar

from afripay_bot.models.enums import (
    DepositStep,
    ExchangeStep,
    FlowKind,
    OnboardingMode,
    OnboardingStep,
    TransferStep,
)
from afripay_bot.schemas.backend import (
    Bank,
    ChargeSchedule,
    Currency,
    DepositRecord,
    DepositWallet,
    ExchangeWallet,
    GatewayMethod,
    TransferDetails,
    TransferWallet,
)
from afripay_bot.schemas.quotes import ExchangeQuote

if TYPE_CHECKING:
    from afripay_bot.schemas.messages import InboundMessage


@dataclass
class AuthState:
    is_authed: bool = False
    access_token: str | None = None
    user: dict[str, Any] | None = None
    email: str | None = None
    pin_verified: bool = False

    @property
    def display_name(self) -> str | None:
        if self.user and self.user.get("name"):
            return str(self.user["name"])
        return self.email


@dataclass
class Attachment:
    """A downloaded file kept for a later multipart submission."""

    buffer: bytes
    filename: str
    mime: str

    @property
    def size(self) -> int:
        return len(self.buffer)


# ── Flow states ──────────────────────────────────────────────────────


@dataclass
class FlowState:
    """Common shape: a step tag plus the PIN attempt counter."""

    kind: ClassVar[FlowKind]
    step: Any = None
    pin_attempts: int = 0


@dataclass
class OnboardingState(FlowState):
    kind: ClassVar[FlowKind] = FlowKind.ONBOARDING
    step: OnboardingStep = OnboardingStep.CHOICE
    mode: OnboardingMode = OnboardingMode.LOGIN
    email: str | None = None
    password: str | None = None
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    consent: bool = False


@dataclass
class DepositState(FlowState):
    kind: ClassVar[FlowKind] = FlowKind.DEPOSIT
    step: DepositStep = DepositStep.AMOUNT
    wallets: list[DepositWallet] = field(default_factory=list)
    history: list[DepositRecord] = field(default_factory=list)
    amount: Decimal | None = None
    wallet: DepositWallet | None = None
    methods: list[GatewayMethod] = field(default_factory=list)
    gateway: GatewayMethod | None = None
    phone: str | None = None
    receipt: Attachment | None = None


@dataclass
class ExchangeState(FlowState):
    kind: ClassVar[FlowKind] = FlowKind.EXCHANGE
    step: ExchangeStep = ExchangeStep.AMOUNT
    wallets: list[ExchangeWallet] = field(default_factory=list)
    currencies: list[Currency] = field(default_factory=list)
    charge: ChargeSchedule = field(default_factory=ChargeSchedule)
    amount: Decimal | None = None
    from_wallet: ExchangeWallet | None = None
    to_currency: Currency | None = None
    quote: ExchangeQuote | None = None

    def target_currencies(self) -> list[Currency]:
        """Currencies offered as target: everything except the source wallet's."""
        if self.from_wallet is None:
            return list(self.currencies)
        return [c for c in self.currencies if str(c.id) != str(self.from_wallet.curr_id)]


@dataclass
class TransferState(FlowState):
    kind: ClassVar[FlowKind] = FlowKind.BANK_TRANSFER
    step: TransferStep = TransferStep.CHOICE
    wallets: list[TransferWallet] = field(default_factory=list)
    wallet: TransferWallet | None = None
    amount: Decimal | None = None
    banks: list[Bank] = field(default_factory=list)
    bank: str | None = None
    iban: str | None = None
    account_name: str | None = None
    purpose: str | None = None
    invoice_scan: Attachment | None = None
    bank_info_scan: Attachment | None = None
    address: str | None = None
    details: TransferDetails | None = None

    @property
    def currency_code(self) -> str | None:
        return self.wallet.currency_code if self.wallet else None


# ── Continuation + session ───────────────────────────────────────────

ContinuationHandler = Callable[["InboundMessage"], Awaitable[None]]


@dataclass
class Continuation:
    """One-shot handler awaiting the chat's next message."""

    kind: FlowKind
    step: str
    handler: ContinuationHandler
    registered_at: float = field(default_factory=time.monotonic)

    def is_expired(self, timeout: int, now: float | None = None) -> bool:
        if timeout <= 0:
            return False
        now = time.monotonic() if now is None else now
        return now - self.registered_at > timeout


@dataclass
class Session:
    chat_id: int
    auth: AuthState = field(default_factory=AuthState)
    active_flow: FlowState | None = None
    continuation: Continuation | None = None
