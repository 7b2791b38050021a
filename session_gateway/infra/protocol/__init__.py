"""Protocol engine seam: connection interface, event names and framing."""

from session_gateway.infra.protocol.engine import (
    ConnectionConfig,
    ConnectionEvent,
    ConnectionUpdate,
    DisconnectReason,
    ProtocolConnection,
    ProtocolEngine,
    load_engine,
)
from session_gateway.infra.protocol.framing import patch_message_before_sending

__all__ = [
    "ConnectionConfig",
    "ConnectionEvent",
    "ConnectionUpdate",
    "DisconnectReason",
    "ProtocolConnection",
    "ProtocolEngine",
    "load_engine",
    "patch_message_before_sending",
]
