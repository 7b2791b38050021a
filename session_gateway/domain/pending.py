"""Out-of-band answer channel for a session creation request.

The front-end that asks for a new session waits on a ``PendingRequest``
until the lifecycle produces exactly one terminal answer: a QR challenge,
or a failure. Later answers are refused, which makes repeated QR refreshes
and reconnect passes harmless.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class PendingResponse:
    """Answer delivered to the creator of a session."""

    status_code: int
    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)


class PendingRequest:
    """Single-assignment response slot."""

    def __init__(self) -> None:
        self._future: asyncio.Future[PendingResponse] = (
            asyncio.get_running_loop().create_future()
        )

    @property
    def answered(self) -> bool:
        return self._future.done()

    def respond(self, response: PendingResponse) -> bool:
        """Deliver the answer if none has been delivered yet.

        Returns:
            True if this call answered the request
        """
        if self._future.done():
            return False
        self._future.set_result(response)
        return True

    async def wait(self, timeout: float | None = None) -> PendingResponse:
        """Wait for the answer.

        Raises:
            TimeoutError: If no answer arrives within ``timeout`` seconds
        """
        return await asyncio.wait_for(asyncio.shield(self._future), timeout)
