"""Input validators shared by every flow step.

Each validator either returns the parsed value or raises ValidationError
carrying the text to re-prompt with.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from decimal import Decimal, InvalidOperation
from typing import TypeVar

from afripay_bot.errors import ValidationError

T = TypeVar("T")

PHONE_RE = re.compile(r"^\+?[0-9]{8,15}$")
PIN_RE = re.compile(r"^[0-9]{6}$")
SELECTION_RE = re.compile(r"[0-9]+")
EMAIL_RE = re.compile(r"^.+@.+\..+$")

APPROVAL_KEYWORDS = ("accept", "agree", "yes", "ok")
NEGATIONS = {"no", "not", "don't", "dont", "decline", "refuse", "cancel"}


def parse_amount(text: str | None) -> Decimal:
    """Parse a positive decimal amount; ``,`` is accepted as decimal point."""
    raw = (text or "").strip().replace(",", ".")
    try:
        amount = Decimal(raw)
    except (InvalidOperation, ValueError):
        raise ValidationError("Invalid amount. Enter a number greater than 0 (e.g. 10000).") from None
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Invalid amount. Enter a number greater than 0 (e.g. 10000).")
    return amount


def parse_selection(text: str | None, options: Sequence[T]) -> T:
    """Resolve a 1-based numeric reply into one of ``options``."""
    raw = (text or "").strip()
    if not SELECTION_RE.fullmatch(raw):
        raise ValidationError(f"Invalid choice. Reply with a number between 1 and {len(options)}.")
    index = int(raw) - 1
    if index < 0 or index >= len(options):
        raise ValidationError(f"Invalid choice. Reply with a number between 1 and {len(options)}.")
    return options[index]


def parse_phone(text: str | None) -> str:
    phone = (text or "").strip()
    if not PHONE_RE.match(phone):
        raise ValidationError("Invalid phone number. Use the international format, e.g. +2376XXXXXXXX.")
    return phone


def is_valid_pin(text: str | None) -> bool:
    return bool(PIN_RE.match((text or "").strip()))


def parse_email(text: str | None) -> str:
    email = (text or "").strip()
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email address. Please enter a valid email:")
    return email


def parse_min_length(text: str | None, min_length: int, error: str) -> str:
    value = (text or "").strip()
    if len(value) < min_length:
        raise ValidationError(error)
    return value


def is_confirmation(text: str | None) -> bool:
    """Financial confirmation: the reply must contain "confirm"."""
    return "confirm" in (text or "").lower()


def is_approval(text: str | None) -> bool:
    """Onboarding approval: "confirm" or a consent keyword, not negated."""
    lowered = (text or "").lower()
    words = set(re.findall(r"[a-z']+", lowered))
    if words & NEGATIONS:
        return False
    return "confirm" in lowered or bool(words & set(APPROVAL_KEYWORDS))
