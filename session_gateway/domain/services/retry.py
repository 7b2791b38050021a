"""Bounded reconnect policy.

Maps (identity, attempt count, configured maximum) to retry-or-give-up.
Counters are kept per identity in the session registry, so one session's
exhausted retries never affect another's.
"""

import logging

from session_gateway.domain.registry import SessionRegistry
from session_gateway.infra.observability.metrics import record_reconnect_decision

logger = logging.getLogger(__name__)


class RetryPolicy:
    """Per-identity bounded retry counter.

    Example:
        policy = RetryPolicy(registry, max_retries=3)
        if policy.should_reconnect("alice"):
            schedule_reconnect()
        ...
        policy.reset("alice")  # on connection open
    """

    def __init__(self, registry: SessionRegistry, max_retries: int = 1) -> None:
        """Initialize retry policy.

        Args:
            registry: Registry holding the counters
            max_retries: Configured maximum; values below 1 act as 1
        """
        self.registry = registry
        self.max_retries = max(1, max_retries)

    def should_reconnect(self, session_id: str) -> bool:
        """Decide whether another connection attempt is allowed.

        Increments the counter when granting an attempt. At the ceiling the
        counter is left unchanged.

        Args:
            session_id: Session identity

        Returns:
            True to retry, False to give up
        """
        attempts = self.registry.attempts(session_id)
        if attempts < self.max_retries:
            attempts += 1
            self.registry.set_attempts(session_id, attempts)
            record_reconnect_decision(True)
            logger.info(
                "Reconnecting...",
                extra={
                    "session_id": session_id,
                    "attempt": attempts,
                    "max_retries": self.max_retries,
                },
            )
            return True

        record_reconnect_decision(False)
        logger.warning(
            "Retry limit reached",
            extra={
                "session_id": session_id,
                "attempt": attempts,
                "max_retries": self.max_retries,
            },
        )
        return False

    def reset(self, session_id: str) -> None:
        """Clear the counter after a successful open."""
        self.registry.clear_attempts(session_id)
