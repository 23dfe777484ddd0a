"""Audit subscriber: forwards flow and auth events to the backend bot log.

Subscribed at startup for ``AUDITED_EVENTS``; it must never raise into the event bus.
"""

from __future__ import annotations

import logging

from afripay_bot.audit.bot_log import BotLogService
from afripay_bot.audit.events import EventHandler
from afripay_bot.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

# Step changes and re-prompts are already visible in the message transcript
AUDITED_EVENTS = frozenset(EventType) - {EventType.FLOW_STEP_CHANGED, EventType.FLOW_REPROMPTED}


def make_audit_subscriber(bot_log: BotLogService) -> EventHandler:
    """Build the handler bound to a BotLogService."""

    async def audit_on_event(event: SystemEvent) -> None:
        if event.chat_id is None:
            return
        try:
            await bot_log.store_system(
                event.chat_id,
                event.event_type.value,
                {
                    "event_id": str(event.id),
                    "source_module": event.source_module,
                    "timestamp": event.timestamp.isoformat(),
                    **event.data,
                },
            )
        except Exception:
            logger.exception("Failed to audit event %s", event.event_type.value)

    return audit_on_event
