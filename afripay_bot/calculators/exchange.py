"""Local exchange quote, used when the remote simulator is unavailable.

Pure Python, Decimal arithmetic:
- receive = (amount / from_rate) * to_rate
- charge  = fixed_charge * from_rate + amount * percent_charge / 100

Rates of zero are treated as 1.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from afripay_bot.schemas.backend import ChargeSchedule
from afripay_bot.schemas.quotes import ExchangeQuote

_ONE = Decimal("1")


def _to_cents(value: Decimal) -> Decimal:
    """Round to 2 decimal places for display."""
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def fallback_quote(
    amount: Decimal,
    from_rate: Decimal,
    to_rate: Decimal,
    charge: ChargeSchedule,
    *,
    from_code: str = "",
    to_code: str = "",
) -> ExchangeQuote:
    """Compute charge and received amount from rates and the charge schedule.

    Args:
        amount: Amount to exchange, in the source currency.
        from_rate: Source currency rate against the base currency.
        to_rate: Target currency rate against the base currency.
        charge: Fixed (in base currency) and percent charges.

    Returns:
        ExchangeQuote with ``simulated=False``.
    """
    from_rate = from_rate or _ONE
    to_rate = to_rate or _ONE

    receive = (amount / from_rate) * to_rate
    fee = charge.fixed_charge * from_rate + amount * (charge.percent_charge / Decimal("100"))

    return ExchangeQuote(
        from_code=from_code,
        to_code=to_code,
        amount=amount,
        charge=_to_cents(fee),
        receive=_to_cents(receive),
        simulated=False,
    )
