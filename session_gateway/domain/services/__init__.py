"""Domain services for the Session Gateway.

Services in this package:
- SessionService: Public session registry API
- ConnectionSupervisor: Connection lifecycle and event routing
- RetryPolicy: Bounded per-identity reconnect counter
- LifecycleMachine: Connection state transition table
- WebhookRelay: Inbound direct message forwarding
"""

from session_gateway.domain.services.lifecycle import LifecycleMachine
from session_gateway.domain.services.relay import WebhookRelay
from session_gateway.domain.services.retry import RetryPolicy
from session_gateway.domain.services.session import SessionService
from session_gateway.domain.services.supervisor import ConnectionSupervisor

__all__ = [
    "ConnectionSupervisor",
    "LifecycleMachine",
    "RetryPolicy",
    "SessionService",
    "WebhookRelay",
]
