"""In-memory, size-bounded session store.

Owns every chat's Session for the life of the process. Sessions are created
lazily on first access. The store is bounded (LRU) and can optionally evict
chats idle for longer than a TTL. A per-chat asyncio.Lock lets the
dispatcher treat each step as one critical section.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from afripay_bot.models.session import Session

logger = logging.getLogger(__name__)


class SessionStore:
    """Mapping chat id → Session with lazy creation and LRU eviction."""

    def __init__(
        self,
        max_entries: int = 10_000,
        idle_ttl: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_entries = max_entries
        self._idle_ttl = idle_ttl
        self._clock = clock
        self._sessions: OrderedDict[int, Session] = OrderedDict()
        self._last_seen: dict[int, float] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    def get(self, chat_id: int) -> Session:
        """Return the chat's session, creating a default one if absent."""
        self._expire_idle()
        session = self._sessions.get(chat_id)
        if session is None:
            session = Session(chat_id=chat_id)
            self._sessions[chat_id] = session
            logger.debug("Created session for chat %s", chat_id)
            self._enforce_bound()
        else:
            self._sessions.move_to_end(chat_id)
        self._last_seen[chat_id] = self._clock()
        return session

    def set(self, chat_id: int, **patch: Any) -> Session:
        """Shallow-merge ``patch`` into the chat's session and return the result."""
        current = self.get(chat_id)
        merged = dataclasses.replace(current, **patch)
        self._sessions[chat_id] = merged
        return merged

    def clear(self, chat_id: int) -> None:
        self._sessions.pop(chat_id, None)
        self._last_seen.pop(chat_id, None)
        lock = self._locks.get(chat_id)
        if lock is not None and not lock.locked():
            del self._locks[chat_id]

    def reset(self) -> None:
        """Drop every session. Teardown hook for tests and shutdown."""
        self._sessions.clear()
        self._last_seen.clear()
        self._locks.clear()

    def lock(self, chat_id: int) -> asyncio.Lock:
        """Per-chat mutex guarding a read-modify-write on the session."""
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[chat_id] = lock
        return lock

    def __contains__(self, chat_id: object) -> bool:
        return chat_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    # ── Eviction ──────────────────────────────────────────────────────

    def _is_busy(self, chat_id: int) -> bool:
        lock = self._locks.get(chat_id)
        return lock is not None and lock.locked()

    def _enforce_bound(self) -> None:
        while len(self._sessions) > self._max_entries:
            victim = next(
                (cid for cid in self._sessions if not self._is_busy(cid)),
                None,
            )
            if victim is None:
                return
            logger.info("Evicting least recently used session for chat %s", victim)
            self.clear(victim)

    def _expire_idle(self) -> None:
        if self._idle_ttl <= 0:
            return
        cutoff = self._clock() - self._idle_ttl
        expired = [
            cid for cid, seen in self._last_seen.items()
            if seen < cutoff and not self._is_busy(cid)
        ]
        for cid in expired:
            logger.info("Expiring idle session for chat %s", cid)
            self.clear(cid)
