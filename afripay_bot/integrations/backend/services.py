"""Per-domain backend services used by the flows.

Each method performs one backend call, raises the matching FlowError on
failure (see ``ApiResponse.raise_for_error``) and returns typed schemas.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from afripay_bot.integrations.backend.client import ApiResponse, BackendClient
from afripay_bot.integrations.backend.normalize import (
    parse_deposit_form,
    parse_deposit_submission,
    parse_exchange_form,
    parse_models,
    parse_simulation,
    parse_transfer_details,
    pick,
    pick_list,
)
from afripay_bot.models.session import Attachment, Session
from afripay_bot.schemas.backend import (
    Bank,
    DepositForm,
    DepositSubmission,
    ExchangeForm,
    GatewayMethod,
    SimulationResult,
    TransactionRecord,
    TransferDetails,
    TransferWallet,
)

logger = logging.getLogger(__name__)


def _amount(value: Decimal) -> str:
    """Wire format for amounts: plain decimal string without exponent."""
    return format(value.normalize(), "f")


class DepositService:
    def __init__(self, client: BackendClient) -> None:
        self._client = client

    async def fetch_form(self, session: Session) -> DepositForm:
        res = await self._client.request("/user/deposit", session.chat_id, "GET", session=session)
        return parse_deposit_form(res.raise_for_error())

    async def fetch_methods(self, session: Session, currency_id: int | str) -> list[GatewayMethod]:
        res = await self._client.request(
            "/user/gateway-methods", session.chat_id, "GET",
            {"currency_id": str(currency_id)}, session=session,
        )
        return parse_models(GatewayMethod, pick_list(res.raise_for_error(), "methods"))

    async def submit(
        self,
        session: Session,
        fields: dict[str, Any],
        receipt: Attachment | None = None,
    ) -> DepositSubmission:
        """JSON submit for automatic gateways; multipart when a receipt is attached."""
        if receipt is not None:
            res = await self._client.upload(
                "/user/deposit/submit", session.chat_id, fields, {"receipt": receipt}, session=session,
            )
        else:
            res = await self._client.request("/user/deposit/submit", session.chat_id, "POST", fields, session=session)
        return parse_deposit_submission(res.raise_for_error())


class ExchangeService:
    def __init__(self, client: BackendClient) -> None:
        self._client = client

    async def fetch_form(self, session: Session) -> ExchangeForm:
        res = await self._client.request("/user/util-bot/echange-form", session.chat_id, "GET", session=session)
        return parse_exchange_form(res.raise_for_error())

    async def simulate(
        self,
        session: Session,
        *,
        amount: Decimal,
        currency: str,
        to_currency: str,
    ) -> SimulationResult | None:
        """Remote quote. None when the simulator is unreachable or its payload is incomplete."""
        res = await self._client.request(
            "/simulator", session.chat_id, "POST",
            {"amount": _amount(amount), "currency": currency, "to_currency": to_currency},
            session=session, authenticated=False,
        )
        if not res.ok:
            logger.warning("Simulator unavailable for chat %s: %s", session.chat_id, res.error)
            return None
        return parse_simulation(res.data)

    async def submit(
        self,
        session: Session,
        *,
        amount: Decimal,
        from_wallet_id: int | str,
        to_currency_id: int | str,
    ) -> Any:
        res = await self._client.request(
            "/user/exchange-money", session.chat_id, "POST",
            {"amount": _amount(amount), "from_wallet_id": from_wallet_id, "to_currency_id": to_currency_id},
            session=session,
        )
        return res.raise_for_error()


class TransferService:
    def __init__(self, client: BackendClient) -> None:
        self._client = client

    async def fetch_wallets(self, session: Session) -> list[TransferWallet]:
        res = await self._client.request("/user/bank-transfer/create", session.chat_id, "GET", session=session)
        return parse_models(TransferWallet, pick_list(res.raise_for_error()))

    async def fetch_banks(self, session: Session, currency_code: str) -> list[Bank]:
        res = await self._client.request(
            f"/user/bank-transfer/{currency_code}/banks", session.chat_id, "GET", session=session,
        )
        return parse_models(Bank, pick_list(res.raise_for_error()))

    async def calculate_details(
        self,
        session: Session,
        *,
        currency: str,
        amount: Decimal,
        bank: str,
    ) -> TransferDetails | None:
        """Fee breakdown; None when the backend cannot compute it."""
        res = await self._client.request(
            "/user/bank-transfer/details", session.chat_id, "POST",
            {"currency": currency, "amount": _amount(amount), "bank": bank},
            session=session,
        )
        if not res.ok:
            logger.warning("Transfer details failed for chat %s: %s", session.chat_id, res.error)
            return None
        return parse_transfer_details(res.data)

    async def submit(
        self,
        session: Session,
        fields: dict[str, Any],
        files: dict[str, Attachment],
    ) -> Any:
        res = await self._client.upload("/user/bank-transfer", session.chat_id, fields, files, session=session)
        return res.raise_for_error()


class AccountService:
    """Single-shot account queries (balance, recent transactions)."""

    def __init__(self, client: BackendClient) -> None:
        self._client = client

    async def balance(self, session: Session) -> Any:
        res: ApiResponse = await self._client.request("/user/balance", session.chat_id, "POST", session=session)
        return pick(res.raise_for_error(), "balance")

    async def transactions(self, session: Session, limit: int = 5) -> list[TransactionRecord]:
        res = await self._client.request("/user/transactions", session.chat_id, "POST", session=session)
        records = parse_models(TransactionRecord, pick_list(res.raise_for_error(), "transactions"))
        return records[:limit]
