"""Process-wide session registry.

Owns the two keyed containers shared by every component: live session
records and per-identity retry counters. It also tracks the pending
reconnect task for each identity so deletion can stop a reconnect loop, and
a deletion generation so a creation that was in flight when its identity was
deleted can tell it must not register.
Entries are replaced whole per key; readers get ``None`` on a miss.
"""

import asyncio
import logging
from typing import Any

from session_gateway.domain.models import SessionRecord
from session_gateway.infra.observability.metrics import set_sessions_live

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Keyed containers for session records, retry counters and reconnects."""

    def __init__(self) -> None:
        self.sessions: dict[str, SessionRecord] = {}
        self.retries: dict[str, int] = {}
        self.reconnects: dict[str, asyncio.Task[Any]] = {}
        self.generations: dict[str, int] = {}

    # Records

    def get(self, session_id: str) -> SessionRecord | None:
        return self.sessions.get(session_id)

    def has(self, session_id: str) -> bool:
        return session_id in self.sessions

    def is_current(self, record: SessionRecord) -> bool:
        """Whether ``record`` is still the registered record for its identity."""
        return self.sessions.get(record.session_id) is record

    def put(self, record: SessionRecord) -> SessionRecord | None:
        """Register a record, returning the one it replaced (if any)."""
        previous = self.sessions.get(record.session_id)
        self.sessions[record.session_id] = record
        set_sessions_live(len(self.sessions))
        return previous

    def pop(self, session_id: str) -> SessionRecord | None:
        record = self.sessions.pop(session_id, None)
        set_sessions_live(len(self.sessions))
        return record

    def all(self) -> list[SessionRecord]:
        return list(self.sessions.values())

    # Retry counters

    def attempts(self, session_id: str) -> int:
        return self.retries.get(session_id, 0)

    def set_attempts(self, session_id: str, attempts: int) -> None:
        self.retries[session_id] = attempts

    def clear_attempts(self, session_id: str) -> None:
        self.retries.pop(session_id, None)

    # Reconnect tasks

    def set_reconnect(self, session_id: str, task: asyncio.Task[Any]) -> None:
        self.reconnects[session_id] = task

    def get_reconnect(self, session_id: str) -> asyncio.Task[Any] | None:
        return self.reconnects.get(session_id)

    def discard_reconnect(self, session_id: str, task: asyncio.Task[Any]) -> None:
        if self.reconnects.get(session_id) is task:
            del self.reconnects[session_id]

    def cancel_reconnect(self, session_id: str) -> bool:
        """Cancel a scheduled reconnect for ``session_id``.

        Returns:
            True if a pending reconnect was cancelled
        """
        task = self.reconnects.pop(session_id, None)
        if task is None or task.done():
            return False
        if task is asyncio.current_task():
            return False
        task.cancel()
        logger.debug("Pending reconnect cancelled", extra={"session_id": session_id})
        return True

    # Deletion generations

    def generation(self, session_id: str) -> int:
        return self.generations.get(session_id, 0)

    def bump_generation(self, session_id: str) -> int:
        """Mark ``session_id`` as deleted for every creation started before now."""
        self.generations[session_id] = self.generation(session_id) + 1
        return self.generations[session_id]
