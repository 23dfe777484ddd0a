"""Currency exchange flow.

amount → from wallet → to currency → (quote recap) pin → submit.
The quote comes from the remote simulator, or from the local fallback
formula when the simulator is unreachable or answers without fees.
"""

from __future__ import annotations

import logging

from afripay_bot.calculators.exchange import fallback_quote
from afripay_bot.channels.messenger import REMOVE_KEYBOARD, loader
from afripay_bot.conversation.flows.base import Advance, Flow, FlowContext, Reply, StepResult, Terminate
from afripay_bot.conversation.formatters import money, numbered, plain, short_datetime
from afripay_bot.conversation.validators import parse_amount, parse_selection
from afripay_bot.integrations.backend.services import ExchangeService
from afripay_bot.models.enums import ExchangeStep, FlowKind, FlowOutcome
from afripay_bot.models.session import ExchangeState, Session
from afripay_bot.schemas.backend import Currency, ExchangeForm
from afripay_bot.schemas.events import EventType, SystemEvent
from afripay_bot.schemas.messages import InboundMessage
from afripay_bot.schemas.quotes import ExchangeQuote

logger = logging.getLogger(__name__)


def _recent_lines(form: ExchangeForm) -> list[str]:
    codes = {str(c.id): c.code for c in form.currencies}
    lines = []
    for record in form.recent_exchanges[:3]:
        from_code = record.from_code or codes.get(str(record.from_currency), "?")
        to_code = record.to_code or codes.get(str(record.to_currency), "?")
        when = short_datetime(record.created_at)
        line = f"▫️ {from_code} {money(record.from_amount)} → {to_code} {money(record.to_amount)}"
        lines.append(f"{line} | {when}" if when else line)
    return lines


class ExchangeFlow(Flow):
    kind = FlowKind.EXCHANGE
    label = "Exchange"
    restart_command = "/exchange"

    def __init__(self, ctx: FlowContext, service: ExchangeService) -> None:
        super().__init__(ctx)
        self.service = service

    async def begin(self, session: Session, message: InboundMessage) -> tuple[ExchangeState, list[Reply]] | Terminate:
        async with loader(self.messenger, session.chat_id, "Fetching exchange form…"):
            form = await self.service.fetch_form(session)

        recent = _recent_lines(form)
        intro = "💱 Exchange" + ("\n\nRecent exchanges:\n" + "\n".join(recent) if recent else "")
        if not form.wallets:
            return Terminate(
                Reply(intro + "\n\nNo wallet with a positive balance is available."),
                FlowOutcome.VALIDATION_ABANDONED,
            )

        state = ExchangeState(wallets=form.wallets, currencies=form.currencies, charge=form.charge)
        return state, [Reply(intro)]

    # ── amount ────────────────────────────────────────────────────────

    def prompt_amount(self, state: ExchangeState) -> Reply:
        return Reply("Enter the amount to exchange (e.g., 200):")

    async def on_amount(self, session: Session, state: ExchangeState, message: InboundMessage) -> StepResult:
        state.amount = parse_amount(message.text)
        return Advance(ExchangeStep.FROM_WALLET)

    # ── from wallet ──────────────────────────────────────────────────

    def prompt_from_wallet(self, state: ExchangeState) -> Reply:
        options = numbered(f"{w.code} | Balance: {money(w.balance)}" for w in state.wallets)
        return Reply(f"Choose the source wallet (From Currency):\n{options}\n\nReply with the number (e.g., 1).")

    async def on_from_wallet(self, session: Session, state: ExchangeState, message: InboundMessage) -> StepResult:
        state.from_wallet = parse_selection(message.text, state.wallets)
        if not state.target_currencies():
            return Terminate(
                Reply("No target currency is available for this wallet. Type /menu to see services."),
                FlowOutcome.VALIDATION_ABANDONED,
            )
        return Advance(ExchangeStep.TO_CURRENCY)

    # ── to currency ──────────────────────────────────────────────────

    def prompt_to_currency(self, state: ExchangeState) -> Reply:
        options = numbered(c.code for c in state.target_currencies())
        return Reply(f"Choose the target currency (To Currency):\n{options}\n\nReply with the number (e.g., 1).")

    async def on_to_currency(self, session: Session, state: ExchangeState, message: InboundMessage) -> StepResult:
        state.to_currency = parse_selection(message.text, state.target_currencies())
        state.quote = await self.quote(session, state, state.to_currency)
        return Advance(ExchangeStep.PIN)

    async def quote(self, session: Session, state: ExchangeState, to: Currency) -> ExchangeQuote:
        """Simulator quote, or the local fallback when it is unusable."""
        assert state.amount is not None and state.from_wallet is not None  # noqa: S101
        from_code = state.from_wallet.code or ""

        async with loader(self.messenger, session.chat_id, "Calculating the simulation…"):
            sim = await self.service.simulate(
                session, amount=state.amount, currency=from_code, to_currency=to.code,
            )

        if sim is None:
            logger.info("Exchange simulator fallback for chat %s", session.chat_id)
            await self.ctx.emit(SystemEvent(
                event_type=EventType.SIMULATOR_FALLBACK,
                chat_id=session.chat_id,
                data={"from": from_code, "to": to.code},
                source_module="flows.exchange",
            ))
            return fallback_quote(
                state.amount, state.from_wallet.rate, to.rate, state.charge,
                from_code=from_code, to_code=to.code,
            )

        return ExchangeQuote(
            from_code=from_code,
            to_code=to.code,
            amount=state.amount,
            charge=sim.fees,
            receive=sim.receive_amount,
            tva=sim.tva or None,
            rate_text=sim.rate_text,
        )

    # ── pin ──────────────────────────────────────────────────────────

    def prompt_pin(self, state: ExchangeState) -> Reply:
        quote = state.quote
        if quote is None:
            return super().prompt_pin(state)
        if quote.simulated:
            lines = [
                f"From: {quote.from_code}",
                f"To: {quote.to_code}",
                quote.rate_text,
                f"Exchange Amount: {plain(quote.amount)} {quote.from_code}",
                f"Exchange Charge: {quote.charge} {quote.from_code}",
                f"TVA: {quote.tva} {quote.from_code}" if quote.tva else None,
                f"Will get: {quote.receive} {quote.to_code}",
            ]
        else:
            lines = [
                f"From: {quote.from_code}",
                f"To: {quote.to_code}",
                f"Amount: {plain(quote.amount)} {quote.from_code}",
                f"Charge: {money(quote.charge)} {quote.from_code}",
                f"Will get: {money(quote.receive)} {quote.to_code}",
            ]
        recap = "\n".join(line for line in lines if line)
        return Reply(f"{recap}\n\n🔐 Enter your 6-digit PIN to confirm:", keyboard=REMOVE_KEYBOARD)

    # ── submit ────────────────────────────────────────────────────────

    async def submit(self, session: Session, state: ExchangeState) -> Terminate:
        assert state.amount is not None and state.from_wallet is not None and state.to_currency is not None  # noqa: S101
        await self.service.submit(
            session,
            amount=state.amount,
            from_wallet_id=state.from_wallet.id,
            to_currency_id=state.to_currency.id,
        )
        return Terminate(Reply("✅ Exchange completed successfully."), FlowOutcome.SUBMITTED)
