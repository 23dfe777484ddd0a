"""Step transitions for a single flow instance.

Validates forward-only progression against the transition map and emits a
step-change event. Flow handlers decide the next step; the FSM only checks it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from enum import Enum
from typing import Any

from afripay_bot.audit.events import emit
from afripay_bot.conversation.states import TRANSITIONS
from afripay_bot.models.session import FlowState
from afripay_bot.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EmitFn = Callable[[SystemEvent], Coroutine[Any, Any, None]]


class FlowFSM:
    """Moves a FlowState from one step to the next."""

    def __init__(self, chat_id: int, state: FlowState, emit_fn: EmitFn = emit) -> None:
        self.chat_id = chat_id
        self.state = state
        self._emit = emit_fn

    def can_transition(self, next_step: Enum) -> bool:
        allowed = TRANSITIONS.get(self.state.kind, {}).get(self.state.step, set())
        return next_step in allowed

    async def transition(self, next_step: Enum) -> Enum:
        """Commit the current step and move to ``next_step``.

        Raises:
            ValueError: If ``next_step`` is not reachable from the current step.
        """
        old_step = self.state.step
        if not self.can_transition(next_step):
            msg = (
                f"Invalid transition: {self.state.kind.value}.{old_step.value} --> {next_step.value} "
                f"(valid: {sorted(s.value for s in TRANSITIONS.get(self.state.kind, {}).get(old_step, set()))})"
            )
            raise ValueError(msg)

        self.state.step = next_step
        logger.info(
            "Flow step: %s %s --> %s (chat=%s)",
            self.state.kind.value,
            old_step.value,
            next_step.value,
            self.chat_id,
        )
        await self._emit(SystemEvent(
            event_type=EventType.FLOW_STEP_CHANGED,
            chat_id=self.chat_id,
            data={
                "flow": self.state.kind.value,
                "from_step": old_step.value,
                "to_step": next_step.value,
            },
            source_module="conversation.fsm",
        ))
        return next_step

    @property
    def is_terminal(self) -> bool:
        return len(TRANSITIONS.get(self.state.kind, {}).get(self.state.step, set())) == 0
