"""Error taxonomy for conversation flows.

Flows never let these escape to the transport: the step boundary in
``conversation.flows.base`` converts each kind into a user-facing outcome.
"""

from __future__ import annotations


class FlowError(Exception):
    """Base class for everything a flow step can raise on purpose."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        # Set once the message has already been shown to the user
        self.reported = False


class ValidationError(FlowError):
    """Locally detected bad input. The same step is prompted again."""


class AuthError(FlowError):
    """Missing or expired session credential. The user must log in again."""


class BackendError(FlowError):
    """Non-2xx or malformed backend payload. Surfaced verbatim, flow aborted."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkError(FlowError):
    """No response received from a remote endpoint."""


class RetryBudgetExhausted(FlowError):
    """Too many failed PIN attempts. Terminal; the flow is cleared."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts
