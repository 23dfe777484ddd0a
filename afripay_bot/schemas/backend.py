"""Pydantic schemas for backend payloads consumed by the flows.

The backend is loosely typed: numbers arrive as strings, nested currency
objects sometimes carry the fields flows need. Validators here flatten and
coerce so the flows only ever see clean values.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


def _to_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """Coerce a loosely typed number; non-finite or unparsable → default."""
    if value is None or value == "":
        return default
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default
    if not result.is_finite():
        return default
    return result


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ── Deposit ──────────────────────────────────────────────────────────


class DepositWallet(_Lenient):
    id: int | str
    code: str = ""
    curr_name: str = ""


class GatewayMethod(_Lenient):
    id: int | str
    name: str = ""
    type: str = ""

    @property
    def is_manual(self) -> bool:
        return self.type.lower() == "manual"


class DepositRecord(_Lenient):
    amount: Any = None
    method: Any = None
    status: str | None = None
    created_at: str | None = None

    @property
    def day(self) -> str:
        if not self.created_at:
            return ""
        return self.created_at.split("T")[0]


class DepositForm(_Lenient):
    wallets: list[DepositWallet] = Field(default_factory=list)
    recent_deposits: list[DepositRecord] = Field(default_factory=list)


class DepositSubmission(_Lenient):
    success: bool = False
    webview_url: str | None = None
    message: str | None = None


# ── Exchange ─────────────────────────────────────────────────────────


class ExchangeWallet(_Lenient):
    """Wallet flattened from ``{id, balance, currency: {id, code, rate, type}}``."""

    id: int | str
    code: str | None = None
    curr_id: int | str | None = None
    rate: Decimal = Decimal("1")
    balance: Decimal = Decimal("0")
    type: str | None = None

    @model_validator(mode="before")
    @classmethod
    def flatten_currency(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("currency"), dict):
            currency = data["currency"]
            data = {
                "id": data.get("id"),
                "code": currency.get("code"),
                "curr_id": currency.get("id"),
                "rate": currency.get("rate"),
                "balance": data.get("balance"),
                "type": currency.get("type"),
            }
        return data

    @field_validator("rate", mode="before")
    @classmethod
    def default_rate(cls, v: Any) -> Decimal:
        rate = _to_decimal(v, Decimal("1"))
        return rate if rate != 0 else Decimal("1")

    @field_validator("balance", mode="before")
    @classmethod
    def coerce_balance(cls, v: Any) -> Decimal:
        return _to_decimal(v)


class Currency(_Lenient):
    id: int | str
    code: str = ""
    rate: Decimal = Decimal("1")
    type: str | None = None

    @field_validator("rate", mode="before")
    @classmethod
    def default_rate(cls, v: Any) -> Decimal:
        rate = _to_decimal(v, Decimal("1"))
        return rate if rate != 0 else Decimal("1")


class ChargeSchedule(_Lenient):
    fixed_charge: Decimal = Decimal("0")
    percent_charge: Decimal = Decimal("0")

    @field_validator("fixed_charge", "percent_charge", mode="before")
    @classmethod
    def coerce(cls, v: Any) -> Decimal:
        return _to_decimal(v)


class ExchangeRecord(_Lenient):
    from_currency: int | str | None = None
    to_currency: int | str | None = None
    from_amount: Decimal = Decimal("0")
    to_amount: Decimal = Decimal("0")
    created_at: str | None = None
    from_code: str | None = None
    to_code: str | None = None

    @model_validator(mode="before")
    @classmethod
    def extract_codes(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            from_curr = data.get("fromCurr") or {}
            to_curr = data.get("toCurr") or {}
            data.setdefault("from_code", from_curr.get("code") if isinstance(from_curr, dict) else None)
            data.setdefault("to_code", to_curr.get("code") if isinstance(to_curr, dict) else None)
        return data

    @field_validator("from_amount", "to_amount", mode="before")
    @classmethod
    def coerce(cls, v: Any) -> Decimal:
        return _to_decimal(v)


class ExchangeForm(_Lenient):
    wallets: list[ExchangeWallet] = Field(default_factory=list)
    currencies: list[Currency] = Field(default_factory=list)
    charge: ChargeSchedule = Field(default_factory=ChargeSchedule)
    recent_exchanges: list[ExchangeRecord] = Field(default_factory=list)


class SimulationResult(_Lenient):
    """Remote simulator quote. ``fees`` and ``receive_amount`` are required."""

    fees: Decimal
    receive_amount: Decimal
    tva: Decimal | None = None
    rate_text: str | None = None

    @field_validator("tva", mode="before")
    @classmethod
    def blank_tva(cls, v: Any) -> Any:
        return None if v in (None, "") else v

    @field_validator("rate_text", mode="before")
    @classmethod
    def rate_as_text(cls, v: Any) -> str | None:
        return None if v is None else str(v)


# ── Bank transfer ────────────────────────────────────────────────────


class TransferWallet(_Lenient):
    id: int | str
    currency_code: str | None = None
    balance: Decimal = Decimal("0")

    @model_validator(mode="before")
    @classmethod
    def flatten_currency(cls, data: Any) -> Any:
        if isinstance(data, dict) and "currency_code" not in data:
            data = dict(data)
            currency = data.get("currency")
            data["currency_code"] = currency.get("code") if isinstance(currency, dict) else None
        return data

    @field_validator("balance", mode="before")
    @classmethod
    def coerce_balance(cls, v: Any) -> Decimal:
        return _to_decimal(v)


class Bank(_Lenient):
    title: str
    id: int | str | None = None


class TransferDetails(_Lenient):
    fees: str = "0"
    tva: str = "0"
    final_amount: str | None = Field(default=None, validation_alias=AliasChoices("finalAmount", "final_amount"))

    @field_validator("fees", "tva", mode="before")
    @classmethod
    def as_text(cls, v: Any) -> str:
        return str(v) if v not in (None, "") else "0"

    @field_validator("final_amount", mode="before")
    @classmethod
    def final_as_text(cls, v: Any) -> str | None:
        return str(v) if v not in (None, "") else None


# ── Account ──────────────────────────────────────────────────────────


class TransactionRecord(_Lenient):
    date: str | None = None
    type: str | None = None
    amount: Any = None
