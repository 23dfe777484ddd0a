"""Domain enums used by session state, flows and the audit log.

All enums use str mixin so they serialize cleanly into events and log payloads.
"""

from __future__ import annotations

from enum import Enum


class FlowKind(str, Enum):
    """Which multi-step flow a chat is currently inside."""

    ONBOARDING = "onboarding"
    DEPOSIT = "deposit"
    EXCHANGE = "exchange"
    BANK_TRANSFER = "bank_transfer"


class OnboardingStep(str, Enum):
    """Login (choice → email → password) or registration
    (choice → contact → consent → email → password → confirm)."""

    CHOICE = "choice"
    CONTACT = "contact"
    CONSENT = "consent"
    EMAIL = "email"
    PASSWORD = "password"
    CONFIRM = "confirm"


class OnboardingMode(str, Enum):
    LOGIN = "login"
    REGISTER = "register"


class DepositStep(str, Enum):
    """amount → wallet → gateway → (receipt | phone) → confirm → pin."""

    AMOUNT = "amount"
    WALLET = "wallet"
    GATEWAY = "gateway"
    RECEIPT = "receipt"
    PHONE = "phone"
    CONFIRM = "confirm"
    PIN = "pin"


class ExchangeStep(str, Enum):
    """amount → from wallet → to currency → (simulation recap) pin."""

    AMOUNT = "amount"
    FROM_WALLET = "from_wallet"
    TO_CURRENCY = "to_currency"
    PIN = "pin"


class TransferStep(str, Enum):
    """Transfer type choice, the nine bank-transfer fields, confirm, pin."""

    CHOICE = "choice"
    WALLET = "wallet"
    AMOUNT = "amount"
    BANK = "bank"
    IBAN = "iban"
    ACCOUNT_NAME = "account_name"
    PURPOSE = "purpose"
    INVOICE_SCAN = "invoice_scan"
    BANK_INFO_SCAN = "bank_info_scan"
    ADDRESS = "address"
    CONFIRM = "confirm"
    PIN = "pin"


class FlowOutcome(str, Enum):
    """How a flow left the session."""

    SUBMITTED = "submitted"
    WEBVIEW_REDIRECT = "webview_redirect"
    CANCELLED = "cancelled"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"
    VALIDATION_ABANDONED = "validation_abandoned"
    BACKEND_FAILED = "backend_failed"
    AUTH_REQUIRED = "auth_required"
    SUPERSEDED = "superseded"
    EXPIRED = "expired"


class MessageDirection(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class MessageType(str, Enum):
    TEXT = "text"
    FILE = "file"
    CONTACT = "contact"
    SYSTEM = "system"
