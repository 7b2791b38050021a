"""Connection lifecycle state machine.

A pure transition function ``(state, event) -> (next state, effects)``.
Effects are returned as data and executed by the connection supervisor,
so the transition table can be tested without a live transport.

States: CONNECTING → OPEN → CLOSED, with CLOSED → CONNECTING handled by
the supervisor re-creating the session after a ``ScheduleReconnect``.

Close handling:
- status LOGGED_OUT: terminal, the retry policy is not consulted
- retry policy refuses: terminal
- otherwise: reconnect after 0 ms (RESTART_REQUIRED) or the configured interval
"""

from dataclasses import dataclass, field

from session_gateway.domain.models import CloseOutcome, ConnectionState
from session_gateway.infra.protocol.engine import DisconnectReason

SESSION_FAILURE_MESSAGE = "Unable to create session."


# ==================== Events ====================


@dataclass(frozen=True)
class Opened:
    """The connection signalled readiness."""


@dataclass(frozen=True)
class Disconnected:
    """The connection closed.

    Attributes:
        status_code: Disconnect status from the transport, if any
        retry_allowed: Retry policy verdict (ignored for LOGGED_OUT)
    """

    status_code: int | None = None
    retry_allowed: bool = False


@dataclass(frozen=True)
class QrReceived:
    """A pairing QR challenge is available."""

    payload: str


LifecycleEvent = Opened | Disconnected | QrReceived


# ==================== Effects ====================


@dataclass(frozen=True)
class ClearRetries:
    pass


@dataclass(frozen=True)
class FlushStore:
    pass


@dataclass(frozen=True)
class DeliverQr:
    payload: str


@dataclass(frozen=True)
class RespondFailure:
    message: str = SESSION_FAILURE_MESSAGE


@dataclass(frozen=True)
class Finalize:
    """Remove the session record and release the connection."""

    outcome: CloseOutcome


@dataclass(frozen=True)
class ScheduleReconnect:
    delay_ms: int


Effect = ClearRetries | FlushStore | DeliverQr | RespondFailure | Finalize | ScheduleReconnect


@dataclass(frozen=True)
class Transition:
    state: ConnectionState
    effects: list[Effect] = field(default_factory=list)


# ==================== Machine ====================


class LifecycleMachine:
    """Transition table for one session's connection state."""

    def __init__(self, reconnect_interval_ms: int = 0) -> None:
        """Initialize machine.

        Args:
            reconnect_interval_ms: Delay before ordinary reconnect attempts
        """
        self.reconnect_interval_ms = reconnect_interval_ms

    @staticmethod
    def needs_retry_decision(state: ConnectionState, status_code: int | None) -> bool:
        """Whether a close in ``state`` must consult the retry policy.

        Repeated closes and logged-out closes never do, so they never
        consume an attempt.
        """
        return state is not ConnectionState.CLOSED and status_code != DisconnectReason.LOGGED_OUT

    def reconnect_delay_ms(self, status_code: int | None) -> int:
        if status_code == DisconnectReason.RESTART_REQUIRED:
            return 0
        return self.reconnect_interval_ms

    def transition(self, state: ConnectionState, event: LifecycleEvent) -> Transition:
        """Compute the next state and the effects to run.

        Args:
            state: Current state
            event: Incoming lifecycle event

        Returns:
            Next state and ordered effects
        """
        if isinstance(event, Opened):
            if state is ConnectionState.CONNECTING:
                return Transition(ConnectionState.OPEN, [ClearRetries(), FlushStore()])
            return Transition(state)

        if isinstance(event, QrReceived):
            if state is ConnectionState.CONNECTING:
                return Transition(state, [DeliverQr(event.payload)])
            return Transition(state)

        if isinstance(event, Disconnected):
            if state is ConnectionState.CLOSED:
                return Transition(state)

            if event.status_code == DisconnectReason.LOGGED_OUT:
                return Transition(
                    ConnectionState.CLOSED,
                    [RespondFailure(), Finalize(outcome=CloseOutcome.LOGGED_OUT)],
                )

            if not event.retry_allowed:
                return Transition(
                    ConnectionState.CLOSED,
                    [RespondFailure(), Finalize(outcome=CloseOutcome.RETRY_EXHAUSTED)],
                )

            return Transition(
                ConnectionState.CLOSED,
                [ScheduleReconnect(delay_ms=self.reconnect_delay_ms(event.status_code))],
            )

        raise TypeError(f"Unknown lifecycle event: {event!r}")
