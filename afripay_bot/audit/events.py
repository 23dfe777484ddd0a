"""In-process bus for SystemEvents.

Emitters only enqueue; a single worker task delivers each event to the
handlers whose filter accepts it. The audit subscriber is the one consumer
in production, registered for the lifecycle events it records.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable
from typing import Any

from afripay_bot.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]

# ── Bus state ────────────────────────────────────────────────────────

# None as filter means every event type
_subscriptions: list[tuple[EventHandler, frozenset[EventType] | None]] = []
_queue: asyncio.Queue[SystemEvent] | None = None
_worker: asyncio.Task[None] | None = None


# ── Subscriptions ────────────────────────────────────────────────────


def subscribe(handler: EventHandler, event_types: Iterable[EventType] | None = None) -> None:
    """Deliver events to ``handler``, optionally only those of ``event_types``."""
    accepted = frozenset(event_types) if event_types is not None else None
    _subscriptions.append((handler, accepted))
    logger.info(
        "Subscribed %s to %s",
        handler.__name__,
        "all events" if accepted is None else sorted(t.value for t in accepted),
    )


def unsubscribe(handler: EventHandler) -> None:
    _subscriptions[:] = [entry for entry in _subscriptions if entry[0] is not handler]


# ── Emitting ─────────────────────────────────────────────────────────


async def emit(event: SystemEvent) -> None:
    """Enqueue an event; delivery happens on the worker, never on the caller."""
    queue = _bind_queue()
    await queue.put(event)
    logger.debug("Event queued: %s (chat=%s)", event.event_type.value, event.chat_id)


def _bind_queue() -> asyncio.Queue[SystemEvent]:
    """Return the queue served by a live worker on the running loop."""
    global _queue, _worker
    loop = asyncio.get_running_loop()
    if _queue is None or _worker is None or _worker.done() or _worker.get_loop() is not loop:
        _queue = asyncio.Queue()
        _worker = loop.create_task(_deliver_forever(_queue))
    return _queue


async def _deliver_forever(queue: asyncio.Queue[SystemEvent]) -> None:
    while True:
        event = await queue.get()
        try:
            await _deliver(event)
        finally:
            queue.task_done()


async def _deliver(event: SystemEvent) -> None:
    handlers = [h for h, accepted in _subscriptions if accepted is None or event.event_type in accepted]
    outcomes = await asyncio.gather(*(h(event) for h in handlers), return_exceptions=True)
    for handler, outcome in zip(handlers, outcomes):
        if isinstance(outcome, Exception):
            logger.error(
                "Subscriber %s failed on %s",
                handler.__name__,
                event.event_type.value,
                exc_info=outcome,
            )


# ── Lifecycle ────────────────────────────────────────────────────────


async def start_event_system() -> None:
    """Start the delivery worker. Called from the FastAPI lifespan."""
    _bind_queue()
    logger.info("Event system started with %d subscriber(s)", len(_subscriptions))


async def stop_event_system() -> None:
    """Deliver whatever is queued, then stop the worker."""
    global _queue, _worker
    if _worker is not None and _worker.get_loop() is asyncio.get_running_loop():
        if _queue is not None and not _worker.done():
            await _queue.join()
        _worker.cancel()
        try:
            await _worker
        except asyncio.CancelledError:
            pass
    _queue = None
    _worker = None


def reset_event_system() -> None:
    """Forget subscribers and queue state. Test helper."""
    global _queue, _worker
    _subscriptions.clear()
    _queue = None
    _worker = None
