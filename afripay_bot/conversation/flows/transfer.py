"""Bank transfer flow.

Transfer type choice, then nine fields (wallet, amount, bank, IBAN, holder,
purpose, invoice scan, optional bank-info scan, address), fee details,
confirm, PIN and a multipart submission.
"""

from __future__ import annotations

import html
import logging

from afripay_bot.channels.messenger import REMOVE_KEYBOARD, loader
from afripay_bot.conversation.flows.base import (
    CONFIRM_KEYBOARD,
    Advance,
    Flow,
    FlowContext,
    Reply,
    StepResult,
    Terminate,
)
from afripay_bot.conversation.formatters import money, plain
from afripay_bot.conversation.validators import is_confirmation, parse_amount, parse_min_length, parse_selection
from afripay_bot.errors import FlowError, ValidationError
from afripay_bot.integrations.backend.services import TransferService
from afripay_bot.models.enums import FlowKind, FlowOutcome, TransferStep
from afripay_bot.models.session import Session, TransferState
from afripay_bot.schemas.backend import TransferDetails
from afripay_bot.schemas.messages import InboundMessage

logger = logging.getLogger(__name__)

TOTAL_STEPS = 9

TRANSFER_OPTIONS = "\n".join([
    "💸 <b>Transfer Options</b>",
    "",
    "📋 <u>Choose your transfer type:</u>",
    "",
    "1️⃣ <b>To Beneficiary</b>",
    "   • Transfer money to a saved beneficiary",
    "   • <i>🚧 Coming soon!</i>",
    "",
    "2️⃣ <b>Bank Transfer</b>",
    "   • Transfer money to any bank account",
    "   • <i>✅ Available now</i>",
    "",
    "👇 Reply with <b>1</b> or <b>2</b> to choose:",
])

COMING_SOON = "\n".join([
    "🚧 <b>Feature Coming Soon</b>",
    "",
    "⏳ The \"To Beneficiary\" transfer feature is under development.",
    "",
    "📱 Return to menu: /menu",
])


def _step(number: int, body: str) -> Reply:
    return Reply(f"🏦 <b>Bank Transfer - Step {number}/{TOTAL_STEPS}</b>\n\n{body}", html=True)


class TransferFlow(Flow):
    kind = FlowKind.BANK_TRANSFER
    label = "Transfer"
    restart_command = "/transfer"

    def __init__(self, ctx: FlowContext, service: TransferService) -> None:
        super().__init__(ctx)
        self.service = service

    async def begin(self, session: Session, message: InboundMessage) -> tuple[TransferState, list[Reply]]:
        return TransferState(), []

    # ── choice ────────────────────────────────────────────────────────

    def prompt_choice(self, state: TransferState) -> Reply:
        return Reply(TRANSFER_OPTIONS, keyboard=REMOVE_KEYBOARD, html=True)

    async def on_choice(self, session: Session, state: TransferState, message: InboundMessage) -> StepResult:
        choice = message.clean_text
        if choice == "1":
            return Terminate(Reply(COMING_SOON, html=True), FlowOutcome.CANCELLED)
        if choice != "2":
            raise ValidationError("❌ Invalid choice. Please reply with 1 or 2.")

        async with loader(self.messenger, session.chat_id, "Fetching your wallets…"):
            wallets = await self.service.fetch_wallets(session)
        if not wallets:
            return Terminate(
                Reply("⚠️ <b>No wallet available</b>\n\n💼 You don't have any wallet with sufficient balance.", html=True),
                FlowOutcome.VALIDATION_ABANDONED,
            )
        state.wallets = wallets
        return Advance(TransferStep.WALLET)

    # ── 1. wallet ─────────────────────────────────────────────────────

    def prompt_wallet(self, state: TransferState) -> Reply:
        lines = "\n".join(
            f"   {i}. <b>{html.escape(w.currency_code or 'N/A')}</b> --- ( {money(w.balance)} )"
            for i, w in enumerate(state.wallets, start=1)
        )
        return _step(1, f"💼 <u>Select your wallet:</u>\n{lines}\n\n👉 Reply with the number:")

    async def on_wallet(self, session: Session, state: TransferState, message: InboundMessage) -> StepResult:
        state.wallet = parse_selection(message.text, state.wallets)
        return Advance(TransferStep.AMOUNT)

    # ── 2. amount ─────────────────────────────────────────────────────

    def prompt_amount(self, state: TransferState) -> Reply:
        available = money(state.wallet.balance) if state.wallet else "0.00"
        code = html.escape(state.currency_code or "")
        return _step(2, f"💰 Enter amount in <b>{code}</b>:\n\n💼 Available: {available}")

    async def on_amount(self, session: Session, state: TransferState, message: InboundMessage) -> StepResult:
        state.amount = parse_amount(message.text)

        async with loader(self.messenger, session.chat_id, "Fetching banks…"):
            banks = await self.service.fetch_banks(session, state.currency_code or "")
        if not banks:
            return Terminate(Reply("⚠️ No banks available for this currency."), FlowOutcome.VALIDATION_ABANDONED)
        state.banks = banks
        return Advance(TransferStep.BANK)

    # ── 3. bank ───────────────────────────────────────────────────────

    def prompt_bank(self, state: TransferState) -> Reply:
        lines = "\n".join(f"   {i}. <b>{html.escape(b.title)}</b>" for i, b in enumerate(state.banks, start=1))
        return _step(3, f"🏦 Select bank:\n{lines}\n\n👉 Reply with number:")

    async def on_bank(self, session: Session, state: TransferState, message: InboundMessage) -> StepResult:
        state.bank = parse_selection(message.text, state.banks).title
        return Advance(TransferStep.IBAN)

    # ── 4-6. free-text fields ─────────────────────────────────────────

    def prompt_iban(self, state: TransferState) -> Reply:
        return _step(4, "🔢 Enter IBAN/Account Number:")

    async def on_iban(self, session: Session, state: TransferState, message: InboundMessage) -> StepResult:
        state.iban = parse_min_length(message.text, 5, "❌ Invalid IBAN (min 5 characters).")
        return Advance(TransferStep.ACCOUNT_NAME)

    def prompt_account_name(self, state: TransferState) -> Reply:
        return _step(5, "👤 Enter Account Holder Name:")

    async def on_account_name(self, session: Session, state: TransferState, message: InboundMessage) -> StepResult:
        state.account_name = parse_min_length(message.text, 3, "❌ Invalid name (min 3 characters).")
        return Advance(TransferStep.PURPOSE)

    def prompt_purpose(self, state: TransferState) -> Reply:
        return _step(6, "📝 Enter transfer purpose:\n\n💡 Example: Invoice payment")

    async def on_purpose(self, session: Session, state: TransferState, message: InboundMessage) -> StepResult:
        state.purpose = parse_min_length(message.text, 3, "❌ Invalid purpose (min 3 characters).")
        return Advance(TransferStep.INVOICE_SCAN)

    # ── 7-8. scans ────────────────────────────────────────────────────

    def prompt_invoice_scan(self, state: TransferState) -> Reply:
        return _step(7, "📎 Upload Invoice Scan (Required)\n\n📤 Accepted: Image or PDF (Max 2MB)")

    async def on_invoice_scan(self, session: Session, state: TransferState, message: InboundMessage) -> StepResult:
        self.ctx.files.check(message)
        async with loader(self.messenger, session.chat_id, "Downloading invoice…"):
            state.invoice_scan = await self.ctx.files.ingest(message)
        return Advance(TransferStep.BANK_INFO_SCAN)

    def prompt_bank_info_scan(self, state: TransferState) -> Reply:
        return _step(8, "📎 Upload Bank Info (Optional)\n\n💡 Type <b>SKIP</b> to continue:")

    async def on_bank_info_scan(self, session: Session, state: TransferState, message: InboundMessage) -> StepResult:
        """Optional: skip, missing file, oversize or failed download all continue without it."""
        if message.clean_text.lower() == "skip" or not message.has_attachment:
            state.bank_info_scan = None
            return Advance(TransferStep.ADDRESS)

        notices = []
        try:
            self.ctx.files.check(message)
            state.bank_info_scan = await self.ctx.files.ingest(message)
        except FlowError as exc:
            logger.info("Continuing transfer for chat %s without bank info: %s", session.chat_id, exc.message)
            state.bank_info_scan = None
            notices.append(Reply("⚠️ File not usable. Continuing without it..."))
        return Advance(TransferStep.ADDRESS, notices=notices)

    # ── 9. address ────────────────────────────────────────────────────

    def prompt_address(self, state: TransferState) -> Reply:
        return _step(9, "🏠 Enter recipient address (Required)\n\n💡 Example: Street 22, New York")

    async def on_address(self, session: Session, state: TransferState, message: InboundMessage) -> StepResult:
        state.address = parse_min_length(
            message.text, 3, "❌ Invalid address. Please provide a valid address (min 3 characters).",
        )
        assert state.amount is not None  # noqa: S101

        async with loader(self.messenger, session.chat_id, "Calculating fees…"):
            details = await self.service.calculate_details(
                session, currency=state.currency_code or "", amount=state.amount, bank=state.bank or "",
            )
        state.details = details or TransferDetails(final_amount=plain(state.amount))
        return Advance(TransferStep.CONFIRM)

    # ── confirm ───────────────────────────────────────────────────────

    def prompt_confirm(self, state: TransferState) -> Reply:
        assert state.amount is not None  # noqa: S101
        details = state.details or TransferDetails()
        esc = html.escape
        recap = "\n".join([
            "📋 <b>Bank Transfer Summary</b>",
            "",
            f"💰 Amount: {plain(state.amount)} {esc(state.currency_code or '')}",
            f"🏦 Bank: {esc(state.bank or '')}",
            f"🔢 IBAN: {esc(state.iban or '')}",
            f"👤 Holder: {esc(state.account_name or '')}",
            f"📝 Purpose: {esc(state.purpose or '')}",
            f"📎 Invoice: {esc(state.invoice_scan.filename) if state.invoice_scan else 'No'}",
            f"📎 Bank Info: {esc(state.bank_info_scan.filename) if state.bank_info_scan else 'No'}",
            f"🏠 Address: {esc(state.address or 'No')}",
            "",
            f"💳 Fees: {esc(details.fees)}",
            f"📊 TVA: {esc(details.tva)}",
            f"💰 Total: {esc(details.final_amount or plain(state.amount))}",
            "",
            "⚡ Confirm this transfer?",
        ])
        return Reply(recap, keyboard=CONFIRM_KEYBOARD, html=True)

    async def on_confirm(self, session: Session, state: TransferState, message: InboundMessage) -> StepResult:
        if not is_confirmation(message.text):
            return self.cancelled()
        return Advance(TransferStep.PIN)

    # ── pin + submit ──────────────────────────────────────────────────

    def prompt_pin(self, state: TransferState) -> Reply:
        return Reply("🔒 <b>PIN Confirmation</b>\n\n🔐 Enter your 6-digit PIN:", keyboard=REMOVE_KEYBOARD, html=True)

    async def submit(self, session: Session, state: TransferState) -> Terminate:
        assert state.wallet is not None and state.amount is not None and state.invoice_scan is not None  # noqa: S101
        fields = {
            "wallet": state.wallet.id,
            "amount": plain(state.amount),
            "bank": state.bank,
            "iban": state.iban,
            "account_name": state.account_name,
            "object": state.purpose,
            "address": state.address or "",
        }
        files = {"scan_invoice": state.invoice_scan}
        if state.bank_info_scan is not None:
            files["scan_bank_infos"] = state.bank_info_scan

        await self.service.submit(session, fields, files)

        esc = html.escape
        success = "\n".join([
            "🎉 <b>Transfer submitted successfully!</b>",
            "",
            f"💰 Amount: {plain(state.amount)} {esc(state.currency_code or '')}",
            f"🏦 Bank: {esc(state.bank or '')}",
            f"👤 To: {esc(state.account_name or '')}",
            "",
            "⏳ Your transfer is being processed.",
            "",
            "📱 /menu for other services.",
        ])
        return Terminate(Reply(success, html=True), FlowOutcome.SUBMITTED)
