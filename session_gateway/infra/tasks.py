"""Best-effort background operations.

Webhook relays and event-driven store flushes must not hold up the event
handler that triggered them. They are spawned as tasks whose result is
only inspected for failure: exceptions are logged with the operation name
and dropped.

Example:
    runner = BestEffortRunner()
    runner.spawn(relay.relay(session_id, upsert), "webhook_relay", session_id=session_id)
    ...
    await runner.drain()  # on shutdown
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class BestEffortRunner:
    """Spawns fire-and-forget coroutines and reports their failures."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        operation: str,
        *,
        session_id: str | None = None,
    ) -> asyncio.Task[Any]:
        """Schedule a coroutine without awaiting it.

        Args:
            coro: Coroutine to run
            operation: Name used in failure logs
            session_id: Session the operation belongs to

        Returns:
            The created task
        """
        task = asyncio.create_task(coro, name=f"{operation}:{session_id or '-'}")
        self._tasks.add(task)
        task.add_done_callback(
            lambda t: self._on_done(t, operation=operation, session_id=session_id)
        )
        return task

    def _on_done(self, task: asyncio.Task[Any], *, operation: str, session_id: str | None) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Best-effort operation {operation} failed: {exc}",
                extra={"operation": operation, "session_id": session_id},
                exc_info=exc,
            )

    async def drain(self) -> None:
        """Wait for all outstanding operations to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
