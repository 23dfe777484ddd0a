"""Shared step machinery for every multi-step flow.

A flow is an explicit state machine: ``FlowState.step`` names the step
waiting for input, ``on_<step>`` consumes one inbound message and returns a
StepResult, ``prompt_<step>`` renders the question for a step from state
alone. This module applies the result (transition, re-prompt or terminate),
registers the next continuation and converts FlowErrors into user-facing
outcomes at the step boundary.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from afripay_bot.audit.events import emit
from afripay_bot.auth.gateway import AuthGateway
from afripay_bot.channels.messenger import REMOVE_KEYBOARD, Messenger, ReplyKeyboard, loader
from afripay_bot.config import settings
from afripay_bot.conversation.files import FileIngestor
from afripay_bot.conversation.fsm import FlowFSM
from afripay_bot.conversation.session_store import SessionStore
from afripay_bot.conversation.states import PIN_STEPS
from afripay_bot.conversation.validators import is_valid_pin
from afripay_bot.errors import (
    AuthError,
    BackendError,
    FlowError,
    NetworkError,
    RetryBudgetExhausted,
    ValidationError,
)
from afripay_bot.models.enums import FlowKind, FlowOutcome
from afripay_bot.models.session import Continuation, FlowState, Session
from afripay_bot.schemas.events import EventType, SystemEvent
from afripay_bot.schemas.messages import InboundMessage

logger = logging.getLogger(__name__)

EmitFn = Callable[[SystemEvent], Coroutine[Any, Any, None]]
RegisterFn = Callable[[int, Continuation], None]

LOGIN_REQUIRED = "🔒 Please login first with /login"
SESSION_EXPIRED = "🔒 Your session has expired. Please login again with /login"
GENERIC_ERROR = "❌ Sorry, something went wrong. Please try again later. Type /menu to see services."
CONFIRM_KEYBOARD = ReplyKeyboard(rows=(("✅ Confirm",), ("❌ Cancel",)))


# ── Step results ─────────────────────────────────────────────────────


@dataclass
class Reply:
    text: str
    keyboard: ReplyKeyboard | None = None
    html: bool = False


@dataclass
class Advance:
    """Field committed; move to ``next_step`` and ask its question."""

    next_step: Enum
    notices: list[Reply] = field(default_factory=list)


@dataclass
class Reprompt:
    """Input rejected; stay on the same step."""

    error: str
    with_prompt: bool = True


@dataclass
class Terminate:
    """Flow over: the state is cleared after ``reply`` is sent."""

    reply: Reply
    outcome: FlowOutcome


StepResult = Advance | Reprompt | Terminate

_OUTCOME_EVENTS = {
    FlowOutcome.SUBMITTED: EventType.FLOW_COMPLETED,
    FlowOutcome.WEBVIEW_REDIRECT: EventType.FLOW_COMPLETED,
    FlowOutcome.CANCELLED: EventType.FLOW_CANCELLED,
    FlowOutcome.EXPIRED: EventType.FLOW_EXPIRED,
    FlowOutcome.BACKEND_FAILED: EventType.BACKEND_ERROR,
}

_FAILED_OUTCOMES = {
    FlowOutcome.ATTEMPTS_EXHAUSTED,
    FlowOutcome.VALIDATION_ABANDONED,
    FlowOutcome.BACKEND_FAILED,
    FlowOutcome.AUTH_REQUIRED,
}


# ── Dependencies ─────────────────────────────────────────────────────


@dataclass
class FlowContext:
    """Collaborators every flow needs, built once by the dispatcher."""

    sessions: SessionStore
    messenger: Messenger
    auth: AuthGateway
    files: FileIngestor
    register: RegisterFn
    emit: EmitFn = emit


# ── Base flow ────────────────────────────────────────────────────────


class Flow:
    """One multi-step flow type. Stateless: all per-chat data lives in the session."""

    kind: ClassVar[FlowKind]
    requires_auth: ClassVar[bool] = True
    # Noun used in the terminal messages ("Deposit cancelled.")
    label: ClassVar[str] = "Operation"
    restart_command: ClassVar[str] = "/menu"

    def __init__(self, ctx: FlowContext) -> None:
        self.ctx = ctx
        self.sessions = ctx.sessions
        self.messenger = ctx.messenger

    # ── Entry points ──────────────────────────────────────────────────

    async def start(self, message: InboundMessage, **options: Any) -> None:
        """Begin the flow, abandoning any flow already in progress.

        ``options`` are passed through to ``begin`` (e.g. the onboarding entry mode).
        """
        chat_id = message.chat_id
        session = self.sessions.get(chat_id)

        if self.requires_auth and not session.auth.is_authed:
            logger.info("%s refused for unauthenticated chat %s", self.kind.value, chat_id)
            await self.messenger.send_text(chat_id, LOGIN_REQUIRED)
            return

        await self.supersede(session)

        try:
            begun = await self.begin(session, message, **options)
        except FlowError as exc:
            await self._finish(chat_id, self._convert(chat_id, exc), state=None)
            return
        except Exception:
            logger.exception("Failed to start %s for chat %s", self.kind.value, chat_id)
            await self._finish(chat_id, Terminate(Reply(GENERIC_ERROR), FlowOutcome.BACKEND_FAILED), state=None)
            return

        if isinstance(begun, Terminate):
            await self._finish(chat_id, begun, state=None)
            return

        state, notices = begun
        self.sessions.set(chat_id, active_flow=state)
        logger.info("Flow %s started for chat %s", self.kind.value, chat_id)
        await self.ctx.emit(SystemEvent(
            event_type=EventType.FLOW_STARTED,
            chat_id=chat_id,
            data={"flow": self.kind.value, "step": state.step.value},
            source_module=f"flows.{self.kind.value}",
        ))
        for notice in notices:
            await self.send(chat_id, notice)
        await self._ask(chat_id, state)

    async def resume(self, message: InboundMessage) -> None:
        """Continuation handler: consume one message for the waiting step."""
        chat_id = message.chat_id
        session = self.sessions.get(chat_id)
        state = session.active_flow
        if state is None or state.kind is not self.kind:
            logger.warning("Stale %s continuation for chat %s ignored", self.kind.value, chat_id)
            return

        try:
            if state.step in PIN_STEPS:
                result = await self._handle_pin(session, state, message)
            else:
                handler = getattr(self, f"on_{state.step.value}")
                result = await handler(session, state, message)
        except FlowError as exc:
            result = self._convert(chat_id, exc)
        except Exception:
            logger.exception("Step %s.%s failed for chat %s", self.kind.value, state.step.value, chat_id)
            result = Terminate(Reply(GENERIC_ERROR), FlowOutcome.BACKEND_FAILED)

        await self.apply(chat_id, state, result)

    async def supersede(self, session: Session) -> None:
        """Drop the chat's current flow (if any) as an explicit, logged transition."""
        previous = session.active_flow
        if previous is None:
            return
        logger.info(
            "Chat %s: abandoning %s at step %s for %s",
            session.chat_id, previous.kind.value, previous.step.value, self.kind.value,
        )
        self.sessions.set(session.chat_id, active_flow=None, continuation=None)
        await self.ctx.emit(SystemEvent(
            event_type=EventType.FLOW_ABANDONED,
            chat_id=session.chat_id,
            data={
                "flow": previous.kind.value,
                "step": previous.step.value,
                "outcome": FlowOutcome.SUPERSEDED.value,
                "superseded_by": self.kind.value,
            },
            source_module=f"flows.{self.kind.value}",
        ))

    # ── Hooks for subclasses ──────────────────────────────────────────

    async def begin(
        self,
        session: Session,
        message: InboundMessage,
        **options: Any,
    ) -> tuple[FlowState, list[Reply]] | Terminate:
        """Build the initial state (fetching forms as needed) plus any intro messages."""
        raise NotImplementedError

    def prompt(self, state: FlowState) -> Reply:
        """The question for ``state.step``, rendered from state alone."""
        return getattr(self, f"prompt_{state.step.value}")(state)

    def prompt_pin(self, state: FlowState) -> Reply:
        return Reply("🔐 Enter your 6-digit PIN:", keyboard=REMOVE_KEYBOARD)

    async def submit(self, session: Session, state: FlowState) -> Terminate:
        """Final backend call once the PIN has been verified."""
        raise NotImplementedError

    # ── Result application ───────────────────────────────────────────

    async def apply(self, chat_id: int, state: FlowState, result: StepResult) -> None:
        if isinstance(result, Advance):
            await FlowFSM(chat_id, state, self.ctx.emit).transition(result.next_step)
            for notice in result.notices:
                await self.send(chat_id, notice)
            await self._ask(chat_id, state)
        elif isinstance(result, Reprompt):
            logger.info("Re-prompting %s.%s for chat %s", self.kind.value, state.step.value, chat_id)
            await self.ctx.emit(SystemEvent(
                event_type=EventType.FLOW_REPROMPTED,
                chat_id=chat_id,
                data={"flow": self.kind.value, "step": state.step.value, "error": result.error},
                source_module=f"flows.{self.kind.value}",
            ))
            if result.with_prompt:
                prompt = self.prompt(state)
                await self.send(chat_id, Reply(f"{result.error}\n\n{prompt.text}", prompt.keyboard, prompt.html))
            else:
                await self.messenger.send_text(chat_id, result.error)
            self._wait(chat_id, state)
        else:
            await self._finish(chat_id, result, state)

    async def _ask(self, chat_id: int, state: FlowState) -> None:
        await self.send(chat_id, self.prompt(state))
        self._wait(chat_id, state)

    def _wait(self, chat_id: int, state: FlowState) -> None:
        self.ctx.register(chat_id, Continuation(kind=self.kind, step=state.step.value, handler=self.resume))

    async def _finish(self, chat_id: int, result: Terminate, state: FlowState | None) -> None:
        session = self.sessions.get(chat_id)
        if state is not None and session.active_flow is state:
            self.sessions.set(chat_id, active_flow=None)

        await self.send(chat_id, result.reply)

        step = state.step.value if state is not None else None
        event_type = _OUTCOME_EVENTS.get(result.outcome, EventType.FLOW_ABANDONED)
        log = logger.warning if result.outcome in _FAILED_OUTCOMES else logger.info
        log("Flow %s ended for chat %s: %s (step=%s)", self.kind.value, chat_id, result.outcome.value, step)
        await self.ctx.emit(SystemEvent(
            event_type=event_type,
            chat_id=chat_id,
            data={"flow": self.kind.value, "step": step, "outcome": result.outcome.value},
            source_module=f"flows.{self.kind.value}",
        ))

    async def send(self, chat_id: int, reply: Reply) -> int | None:
        return await self.messenger.send_text(chat_id, reply.text, keyboard=reply.keyboard, html=reply.html)

    # ── Error conversion ─────────────────────────────────────────────

    def _convert(self, chat_id: int, exc: FlowError) -> StepResult:
        if isinstance(exc, ValidationError):
            return Reprompt(exc.message)
        if isinstance(exc, RetryBudgetExhausted):
            return Terminate(Reply(exc.message, keyboard=REMOVE_KEYBOARD), FlowOutcome.ATTEMPTS_EXHAUSTED)
        if isinstance(exc, AuthError):
            logger.warning("Credential rejected for chat %s: %s", chat_id, exc.message)
            self.ctx.auth.logout(chat_id)
            return Terminate(Reply(SESSION_EXPIRED, keyboard=REMOVE_KEYBOARD), FlowOutcome.AUTH_REQUIRED)
        if isinstance(exc, (BackendError, NetworkError)):
            logger.warning("%s failed for chat %s: %s", self.kind.value, chat_id, exc.message)
            if exc.reported:
                text = f"{self.label} not completed. Type /menu to see services."
            else:
                text = f"❌ {self.label} failed: {exc.message}\n\nType /menu to see services."
            return Terminate(Reply(text, keyboard=REMOVE_KEYBOARD), FlowOutcome.BACKEND_FAILED)
        return Terminate(Reply(f"❌ {exc.message}"), FlowOutcome.BACKEND_FAILED)

    # ── PIN gate ─────────────────────────────────────────────────────

    async def _handle_pin(self, session: Session, state: FlowState, message: InboundMessage) -> StepResult:
        """Bounded PIN check. Format and backend rejections share one counter."""
        chat_id = session.chat_id
        if not session.auth.access_token:
            raise AuthError("Not authenticated. Please login first.")

        pin = message.clean_text
        if not is_valid_pin(pin):
            return await self._pin_failed(chat_id, state, "Invalid PIN format")

        async with loader(self.messenger, chat_id, "Verifying PIN…"):
            verdict = await self.ctx.auth.verify_pin(chat_id, email=session.auth.email, pin=pin)
        if not verdict.ok:
            return await self._pin_failed(chat_id, state, verdict.error or "PIN rejected")

        state.pin_attempts = 0
        logger.info("PIN verified for chat %s (%s)", chat_id, self.kind.value)
        async with loader(self.messenger, chat_id, f"Submitting {self.label.lower()}…"):
            return await self.submit(self.sessions.get(chat_id), state)

    async def _pin_failed(self, chat_id: int, state: FlowState, reason: str) -> StepResult:
        max_attempts = settings.flow.max_pin_attempts
        state.pin_attempts += 1
        logger.warning(
            "PIN failure %d/%d for chat %s (%s)", state.pin_attempts, max_attempts, chat_id, self.kind.value,
        )
        await self.ctx.emit(SystemEvent(
            event_type=EventType.PIN_FAILED,
            chat_id=chat_id,
            data={"flow": self.kind.value, "attempts": state.pin_attempts, "reason": reason},
            source_module=f"flows.{self.kind.value}",
        ))

        if state.pin_attempts >= max_attempts:
            await self.ctx.emit(SystemEvent(
                event_type=EventType.PIN_EXHAUSTED,
                chat_id=chat_id,
                data={"flow": self.kind.value, "attempts": state.pin_attempts},
                source_module=f"flows.{self.kind.value}",
            ))
            raise RetryBudgetExhausted(
                f"❌ Too many failed attempts. {self.label} cancelled. "
                f"Run {self.restart_command} to start again.",
                state.pin_attempts,
            )

        remaining = max_attempts - state.pin_attempts
        return Reprompt(
            f"❌ {reason}. You have {remaining} attempt(s) left. Enter your 6-digit PIN:",
            with_prompt=False,
        )

    # ── Shared step helpers ──────────────────────────────────────────

    def cancelled(self) -> Terminate:
        return Terminate(
            Reply(f"🚫 {self.label} cancelled. Type /menu to see services.", keyboard=REMOVE_KEYBOARD),
            FlowOutcome.CANCELLED,
        )
