"""Text formatting helpers shared by the flows."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any


def money(value: Any) -> str:
    """Two-decimal display of a loosely typed number (``0.00`` when unparsable)."""
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        number = Decimal("0")
    if not number.is_finite():
        number = Decimal("0")
    return f"{number.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP):f}"


def plain(value: Decimal) -> str:
    """Decimal without exponent or trailing zeros (``10.5``, ``200``)."""
    return format(value.normalize(), "f")


def short_datetime(iso: str | None) -> str:
    """``DD Mon YYYY --hh:mmam`` or empty string when unparsable."""
    if not iso:
        return ""
    try:
        moment = datetime.fromisoformat(iso.replace("Z", "+00:00"))
    except ValueError:
        return ""
    suffix = "pm" if moment.hour >= 12 else "am"
    hour = moment.hour % 12 or 12
    return f"{moment:%d %b %Y} --{hour:02d}:{moment:%M}{suffix}"


def numbered(lines: Iterable[str]) -> str:
    """``1) a`` / ``2) b`` list for selection prompts."""
    return "\n".join(f"{i}) {line}" for i, line in enumerate(lines, start=1))
