"""SystemEvent schema — the event type that flows through the bot.

Flows emit SystemEvents on every transition. Subscribers (the audit
subscriber, tests) consume them asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Messages
    MESSAGE_DROPPED = "message.dropped"

    # Flow lifecycle
    FLOW_STARTED = "flow.started"
    FLOW_STEP_CHANGED = "flow.step_changed"
    FLOW_REPROMPTED = "flow.reprompted"
    FLOW_COMPLETED = "flow.completed"
    FLOW_CANCELLED = "flow.cancelled"
    FLOW_ABANDONED = "flow.abandoned"
    FLOW_EXPIRED = "flow.expired"

    # Authentication
    LOGIN_SUCCEEDED = "auth.login_succeeded"
    LOGIN_FAILED = "auth.login_failed"
    PIN_FAILED = "auth.pin_failed"
    PIN_EXHAUSTED = "auth.pin_exhausted"
    REGISTERED = "auth.registered"

    # Backend
    BACKEND_ERROR = "backend.error"
    SIMULATOR_FALLBACK = "backend.simulator_fallback"


class SystemEvent(BaseModel):
    """Core event emitted by flows, the dispatcher and the auth gateway.

    Immutable once created.
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    chat_id: int | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
