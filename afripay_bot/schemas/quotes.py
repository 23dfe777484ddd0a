"""Exchange quote schema shared by the simulator path and the local fallback."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel


class ExchangeQuote(BaseModel):
    """What the user is shown before entering the PIN."""

    from_code: str
    to_code: str
    amount: Decimal
    charge: Decimal
    receive: Decimal
    tva: Decimal | None = None
    rate_text: str | None = None
    simulated: bool = True
