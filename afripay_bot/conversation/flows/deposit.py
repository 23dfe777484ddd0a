"""Deposit flow.

amount → wallet → gateway → (manual: receipt | automatic: phone) → confirm → pin → submit.
Only wallets in the configured deposit currency are accepted.
"""

from __future__ import annotations

import logging

from afripay_bot.channels.messenger import loader
from afripay_bot.config import settings
from afripay_bot.conversation.flows.base import (
    CONFIRM_KEYBOARD,
    Advance,
    Flow,
    FlowContext,
    Reply,
    StepResult,
    Terminate,
)
from afripay_bot.conversation.formatters import numbered, plain
from afripay_bot.conversation.validators import (
    is_confirmation,
    parse_amount,
    parse_phone,
    parse_selection,
)
from afripay_bot.integrations.backend.services import DepositService
from afripay_bot.models.enums import DepositStep, FlowKind, FlowOutcome
from afripay_bot.models.session import DepositState, Session
from afripay_bot.schemas.messages import InboundMessage

logger = logging.getLogger(__name__)


class DepositFlow(Flow):
    kind = FlowKind.DEPOSIT
    label = "Deposit"
    restart_command = "/deposit"

    def __init__(self, ctx: FlowContext, service: DepositService) -> None:
        super().__init__(ctx)
        self.service = service

    async def begin(self, session: Session, message: InboundMessage) -> tuple[DepositState, list[Reply]] | Terminate:
        async with loader(self.messenger, session.chat_id, "Fetching deposit form…"):
            form = await self.service.fetch_form(session)

        if not form.wallets:
            return Terminate(Reply("No wallets available on your account."), FlowOutcome.VALIDATION_ABANDONED)

        notices = []
        recent = form.recent_deposits[:3]
        if recent:
            lines = [f"• {d.amount} | method: {d.method} | {d.status} | {d.day}" for d in recent]
            notices.append(Reply("Last deposits:\n" + "\n".join(lines)))

        return DepositState(wallets=form.wallets, history=form.recent_deposits), notices

    # ── amount ────────────────────────────────────────────────────────

    def prompt_amount(self, state: DepositState) -> Reply:
        return Reply(
            "Enter the amount to deposit (e.g., 10000). "
            "This amount will top up your balance in the selected wallet."
        )

    async def on_amount(self, session: Session, state: DepositState, message: InboundMessage) -> StepResult:
        state.amount = parse_amount(message.text)
        return Advance(DepositStep.WALLET)

    # ── wallet ────────────────────────────────────────────────────────

    def prompt_wallet(self, state: DepositState) -> Reply:
        options = numbered(f"{w.code} - {w.curr_name}" for w in state.wallets)
        return Reply(f"Choose the wallet:\n{options}\n\nReply with the number (e.g., 1).")

    async def on_wallet(self, session: Session, state: DepositState, message: InboundMessage) -> StepResult:
        wallet = parse_selection(message.text, state.wallets)
        supported = settings.flow.deposit_currency.upper()
        if wallet.code.upper() != supported:
            logger.info("Chat %s picked unsupported deposit wallet %s", session.chat_id, wallet.code)
            return Terminate(
                Reply(
                    f"Wallet {wallet.code} is not available for now. Only {supported} is supported. "
                    "Please run /deposit again."
                ),
                FlowOutcome.VALIDATION_ABANDONED,
            )
        state.wallet = wallet

        async with loader(self.messenger, session.chat_id, "Fetching payment methods…"):
            methods = await self.service.fetch_methods(session, wallet.id)
        if not methods:
            return Terminate(Reply("No payment methods available for this wallet."), FlowOutcome.VALIDATION_ABANDONED)

        state.methods = methods
        return Advance(DepositStep.GATEWAY)

    # ── gateway ───────────────────────────────────────────────────────

    def prompt_gateway(self, state: DepositState) -> Reply:
        options = numbered(f"{m.name} ({m.type})" for m in state.methods)
        return Reply(f"Select a payment method:\n{options}\n\nReply with the number (e.g., 1).")

    async def on_gateway(self, session: Session, state: DepositState, message: InboundMessage) -> StepResult:
        state.gateway = parse_selection(message.text, state.methods)
        if state.gateway.is_manual:
            return Advance(DepositStep.RECEIPT)
        return Advance(DepositStep.PHONE)

    # ── receipt (manual) / phone (automatic) ──────────────────────────

    def prompt_receipt(self, state: DepositState) -> Reply:
        return Reply("📎 Upload your payment receipt (image or PDF, max 2MB):")

    async def on_receipt(self, session: Session, state: DepositState, message: InboundMessage) -> StepResult:
        self.ctx.files.check(message)
        async with loader(self.messenger, session.chat_id, "Downloading receipt…"):
            state.receipt = await self.ctx.files.ingest(message)
        return Advance(DepositStep.CONFIRM)

    def prompt_phone(self, state: DepositState) -> Reply:
        return Reply("Enter the phone number to be charged (international format, e.g., +2376XXXXXXXX):")

    async def on_phone(self, session: Session, state: DepositState, message: InboundMessage) -> StepResult:
        state.phone = parse_phone(message.text)
        return Advance(DepositStep.CONFIRM)

    # ── confirm ───────────────────────────────────────────────────────

    def prompt_confirm(self, state: DepositState) -> Reply:
        assert state.amount is not None and state.wallet is not None and state.gateway is not None  # noqa: S101
        lines = [
            "Please confirm your deposit:",
            f"• Amount: {plain(state.amount)} {state.wallet.code}",
            f"• Wallet: {state.wallet.code} - {state.wallet.curr_name}",
            f"• Method: {state.gateway.name} ({state.gateway.type})",
        ]
        if state.receipt is not None:
            lines.append(f"• Receipt: {state.receipt.filename}")
        else:
            lines.append(f"• Phone: {state.phone}")
        return Reply("\n".join(lines) + "\n\nConfirm to continue.", keyboard=CONFIRM_KEYBOARD)

    async def on_confirm(self, session: Session, state: DepositState, message: InboundMessage) -> StepResult:
        if not is_confirmation(message.text):
            return self.cancelled()
        return Advance(DepositStep.PIN)

    # ── submit ────────────────────────────────────────────────────────

    async def submit(self, session: Session, state: DepositState) -> Terminate:
        assert state.amount is not None and state.wallet is not None and state.gateway is not None  # noqa: S101
        fields = {
            "amount": plain(state.amount),
            "curr_code": state.wallet.code,
            "gateway_id": state.gateway.id,
        }
        if state.phone:
            fields["phone_number"] = state.phone

        result = await self.service.submit(session, fields, receipt=state.receipt)

        if result.webview_url:
            return Terminate(
                Reply(f"Open this link to finalize your payment: {result.webview_url}"),
                FlowOutcome.WEBVIEW_REDIRECT,
            )
        if result.success:
            return Terminate(Reply("✅ Deposit submitted successfully."), FlowOutcome.SUBMITTED)
        return Terminate(Reply("Your deposit request has been received."), FlowOutcome.SUBMITTED)
