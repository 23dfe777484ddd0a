"""Normalization of loosely shaped backend payloads.

The backend wraps the same field under ``response.x``, ``data.x`` or a bare
``x`` depending on the endpoint. Every such lookup goes through this module
so the flows can depend on typed schemas instead.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from afripay_bot.schemas.backend import (
    ChargeSchedule,
    Currency,
    DepositForm,
    DepositRecord,
    DepositSubmission,
    DepositWallet,
    ExchangeForm,
    ExchangeRecord,
    ExchangeWallet,
    SimulationResult,
    TransferDetails,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_WRAPPERS = ("response", "data")

NETWORK_ERROR = "Network error: no response from API"


def _layers(payload: Any) -> list[dict[str, Any]]:
    """Dicts to search, innermost wrapper first, bare payload last."""
    if not isinstance(payload, dict):
        return []
    layers: list[dict[str, Any]] = []
    for outer in _WRAPPERS:
        inner = payload.get(outer)
        if isinstance(inner, dict):
            for nested in _WRAPPERS:
                if isinstance(inner.get(nested), dict):
                    layers.append(inner[nested])
            layers.append(inner)
    layers.append(payload)
    return layers


def pick(payload: Any, *keys: str, default: Any = None) -> Any:
    """First non-null value of any of ``keys`` across the wrapper layers."""
    for layer in _layers(payload):
        for key in keys:
            value = layer.get(key)
            if value is not None:
                return value
    return default


def pick_list(payload: Any, *keys: str) -> list[Any]:
    """A list found under ``keys``, or the payload / its wrapper when it is a list itself."""
    if isinstance(payload, list):
        return payload
    if keys:
        value = pick(payload, *keys)
        return value if isinstance(value, list) else []
    if isinstance(payload, dict):
        for wrapper in _WRAPPERS:
            if isinstance(payload.get(wrapper), list):
                return payload[wrapper]
    return []


def unwrap(payload: Any) -> Any:
    """The innermost ``response``/``data`` object, or the payload itself."""
    layers = _layers(payload)
    return layers[0] if layers else payload


def error_message(status_code: int, body: Any) -> str:
    """User-facing error text for a non-2xx response."""
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if message:
            return str(message)
    return f"API error {status_code}"


def parse_models(model: type[M], items: list[Any]) -> list[M]:
    """Validate each item, dropping (and logging) the malformed ones."""
    parsed: list[M] = []
    for item in items:
        try:
            parsed.append(model.model_validate(item))
        except ValidationError:
            logger.warning("Dropping malformed %s entry from backend payload", model.__name__)
    return parsed


# ── Endpoint-specific parsers ────────────────────────────────────────


def parse_deposit_form(payload: Any) -> DepositForm:
    return DepositForm(
        wallets=parse_models(DepositWallet, pick_list(payload, "wallets")),
        recent_deposits=parse_models(DepositRecord, pick_list(payload, "recent_deposits")),
    )


def parse_exchange_form(payload: Any) -> ExchangeForm:
    charge_raw = pick(payload, "charge")
    charge = ChargeSchedule.model_validate(charge_raw) if isinstance(charge_raw, dict) else ChargeSchedule()
    return ExchangeForm(
        wallets=parse_models(ExchangeWallet, pick_list(payload, "wallets")),
        currencies=parse_models(Currency, pick_list(payload, "currencies")),
        charge=charge,
        recent_exchanges=parse_models(ExchangeRecord, pick_list(payload, "recent_exchanges")),
    )


def parse_simulation(payload: Any) -> SimulationResult | None:
    """Simulator quote, or None when ``fees``/``receiveAmount`` are missing or not numeric."""
    fees = pick(payload, "fees")
    receive = pick(payload, "receiveAmount", "receive_amount")
    if fees is None or receive is None:
        return None
    try:
        return SimulationResult(
            fees=fees,
            receive_amount=receive,
            tva=pick(payload, "tva"),
            rate_text=pick(payload, "dollarText", "rate_text"),
        )
    except ValidationError:
        logger.warning("Simulator returned non-numeric amounts")
        return None


def parse_deposit_submission(payload: Any) -> DepositSubmission:
    return DepositSubmission(
        success=bool(pick(payload, "success", default=False)),
        webview_url=pick(payload, "webview_url"),
        message=pick(payload, "message"),
    )


def parse_transfer_details(payload: Any) -> TransferDetails:
    body = unwrap(payload)
    return TransferDetails.model_validate(body if isinstance(body, dict) else {})
