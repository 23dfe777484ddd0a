"""Local calculators: exchange fallback quote."""

from afripay_bot.calculators.exchange import fallback_quote

__all__ = ["fallback_quote"]
