"""Onboarding flow: welcome, login and in-chat registration.

Login:        choice → email → password
Registration: choice → contact → consent → email → password → confirm → register
"""

from __future__ import annotations

import logging

from afripay_bot.channels.messenger import REMOVE_KEYBOARD, ReplyKeyboard, loader
from afripay_bot.conversation.flows.base import (
    CONFIRM_KEYBOARD,
    Advance,
    Flow,
    Reply,
    StepResult,
    Terminate,
)
from afripay_bot.conversation.validators import is_approval, parse_email, parse_min_length, parse_phone
from afripay_bot.errors import ValidationError
from afripay_bot.models.enums import FlowKind, FlowOutcome, OnboardingMode, OnboardingStep
from afripay_bot.models.session import OnboardingState, Session
from afripay_bot.schemas.messages import InboundMessage

logger = logging.getLogger(__name__)

WELCOME_KEYBOARD = ReplyKeyboard(rows=(("✅ I have an account",), ("🆕 I'm new",)))
CONTACT_KEYBOARD = ReplyKeyboard(rows=(("📱 Share my phone number",),), request_contact=True)
CONSENT_KEYBOARD = ReplyKeyboard(rows=(("✅ I accept",), ("❌ Decline",)))

MIN_PASSWORD_LENGTH = 8


class OnboardingFlow(Flow):
    kind = FlowKind.ONBOARDING
    requires_auth = False
    label = "Registration"
    restart_command = "/start"

    async def begin(
        self,
        session: Session,
        message: InboundMessage,
        mode: OnboardingMode | None = None,
    ) -> tuple[OnboardingState, list[Reply]]:
        """``mode=None`` shows the welcome choice; LOGIN/REGISTER jump straight in."""
        sender = message.sender
        state = OnboardingState(first_name=sender.first_name if sender else None)
        if mode is OnboardingMode.LOGIN:
            state.mode, state.step = OnboardingMode.LOGIN, OnboardingStep.EMAIL
        elif mode is OnboardingMode.REGISTER:
            state.mode, state.step = OnboardingMode.REGISTER, OnboardingStep.CONTACT
        return state, []

    # ── choice ────────────────────────────────────────────────────────

    def prompt_choice(self, state: OnboardingState) -> Reply:
        welcome = "\n".join([
            f"👋 Hello {state.first_name or 'there'}!",
            "Welcome to Afripay, the modern banking service connected to Genius-Wallet.",
            "",
            "Do you already have an account?",
        ])
        return Reply(welcome, keyboard=WELCOME_KEYBOARD)

    async def on_choice(self, session: Session, state: OnboardingState, message: InboundMessage) -> StepResult:
        if "new" in message.clean_text.lower():
            state.mode = OnboardingMode.REGISTER
            return Advance(OnboardingStep.CONTACT)
        state.mode = OnboardingMode.LOGIN
        return Advance(OnboardingStep.EMAIL)

    # ── registration: contact + consent ──────────────────────────────

    def prompt_contact(self, state: OnboardingState) -> Reply:
        return Reply(
            "Great! Let's create your account.\n\n📱 Please share your phone number with the button below.",
            keyboard=CONTACT_KEYBOARD,
        )

    async def on_contact(self, session: Session, state: OnboardingState, message: InboundMessage) -> StepResult:
        contact = message.contact
        if contact is None:
            state.phone = parse_phone(message.text)
            return Advance(OnboardingStep.CONSENT)

        sender_id = message.sender.id if message.sender else None
        if contact.user_id is not None and sender_id is not None and contact.user_id != sender_id:
            raise ValidationError("Please share your own phone number.")
        state.phone = contact.phone_number
        state.first_name = contact.first_name or state.first_name
        state.last_name = contact.last_name
        return Advance(OnboardingStep.CONSENT)

    def prompt_consent(self, state: OnboardingState) -> Reply:
        return Reply(
            "To open an account you must accept the Afripay terms of use and privacy policy.\n\n"
            "Reply \"I accept\" to continue.",
            keyboard=CONSENT_KEYBOARD,
        )

    async def on_consent(self, session: Session, state: OnboardingState, message: InboundMessage) -> StepResult:
        if not is_approval(message.text):
            return Terminate(
                Reply(
                    "Registration cancelled. You can also register here: "
                    f"{self.ctx.auth.registration_link()}",
                    keyboard=REMOVE_KEYBOARD,
                ),
                FlowOutcome.CANCELLED,
            )
        state.consent = True
        return Advance(OnboardingStep.EMAIL)

    # ── email + password ─────────────────────────────────────────────

    def prompt_email(self, state: OnboardingState) -> Reply:
        return Reply("Please enter your email address:", keyboard=REMOVE_KEYBOARD)

    async def on_email(self, session: Session, state: OnboardingState, message: InboundMessage) -> StepResult:
        state.email = parse_email(message.text)
        return Advance(OnboardingStep.PASSWORD)

    def prompt_password(self, state: OnboardingState) -> Reply:
        if state.mode is OnboardingMode.REGISTER:
            return Reply(f"Choose a password (at least {MIN_PASSWORD_LENGTH} characters):")
        return Reply("Enter your password:")

    async def on_password(self, session: Session, state: OnboardingState, message: InboundMessage) -> StepResult:
        if state.mode is OnboardingMode.REGISTER:
            state.password = parse_min_length(
                message.text, MIN_PASSWORD_LENGTH,
                f"Password too short (at least {MIN_PASSWORD_LENGTH} characters).",
            )
            return Advance(OnboardingStep.CONFIRM)
        return await self._login(session, state, message)

    async def _login(self, session: Session, state: OnboardingState, message: InboundMessage) -> StepResult:
        password = parse_min_length(message.text, 1, "Empty password. Please enter your password:")
        assert state.email is not None  # noqa: S101

        async with loader(self.messenger, session.chat_id, "Logging in…"):
            result = await self.ctx.auth.login(session.chat_id, email=state.email, password=password)

        if not result.ok:
            return Terminate(
                Reply(f"❌ Login failed: {result.error}. Try again: /login"),
                FlowOutcome.BACKEND_FAILED,
            )
        name = self.sessions.get(session.chat_id).auth.display_name or state.email
        return Terminate(
            Reply(f"✅ Logged in as {name}. Type /menu to see services."),
            FlowOutcome.SUBMITTED,
        )

    # ── registration: confirm + register ─────────────────────────────

    def prompt_confirm(self, state: OnboardingState) -> Reply:
        name = " ".join(part for part in (state.first_name, state.last_name) if part) or "-"
        recap = "\n".join([
            "Please confirm your registration:",
            f"• Name: {name}",
            f"• Phone: {state.phone}",
            f"• Email: {state.email}",
        ])
        return Reply(recap + "\n\nConfirm to create your account.", keyboard=CONFIRM_KEYBOARD)

    async def on_confirm(self, session: Session, state: OnboardingState, message: InboundMessage) -> StepResult:
        if not is_approval(message.text):
            return self.cancelled()

        payload = {
            "first_name": state.first_name,
            "last_name": state.last_name,
            "email": state.email,
            "phone": state.phone,
            "password": state.password,
            "password_confirmation": state.password,
            "terms": state.consent,
            "telegram_user_id": message.sender.id if message.sender else None,
        }
        async with loader(self.messenger, session.chat_id, "Creating your account…"):
            result = await self.ctx.auth.register_user(session.chat_id, payload)
        state.password = None

        if not result.ok:
            return Terminate(
                Reply(
                    f"❌ Registration failed: {result.error}\n\n"
                    f"You can also register here: {self.ctx.auth.registration_link()}",
                    keyboard=REMOVE_KEYBOARD,
                ),
                FlowOutcome.BACKEND_FAILED,
            )

        auth = self.sessions.get(session.chat_id).auth
        if auth.is_authed:
            text = f"✅ Account created. Logged in as {auth.display_name or state.email}. Type /menu to see services."
        else:
            text = "✅ Account created. Send /login to continue."
        return Terminate(Reply(text, keyboard=REMOVE_KEYBOARD), FlowOutcome.SUBMITTED)
