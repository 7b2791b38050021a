"""Protocol engine interface.

The wire protocol is implemented by an external engine. This module
defines the seam the gateway talks to: an engine that opens connections,
and a connection handle exposing send/query/logout primitives plus
event subscription.

Engines are resolved from a dotted path at startup:

    engine = load_engine("my_engine.adapter:create_engine")
    connection = await engine.connect(config)
    connection.on(ConnectionEvent.CONNECTION_UPDATE, handler)
"""

import importlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

from session_gateway.domain.models import SessionMode

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Awaitable[None]]
MessagePatch = Callable[[dict[str, Any]], dict[str, Any]]


class ConnectionEvent(str, Enum):
    """Event names emitted by a protocol connection."""

    CREDENTIALS_UPDATED = "creds.update"
    CHATS_SNAPSHOT = "chats.set"
    HISTORY_SNAPSHOT = "messaging-history.set"
    MESSAGES_UPSERTED = "messages.upsert"
    CONNECTION_UPDATE = "connection.update"


class DisconnectReason(IntEnum):
    """Status codes attached to a connection close."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411


@dataclass
class ConnectionUpdate:
    """Payload of a ``connection.update`` event.

    Attributes:
        connection: "connecting", "open" or "close" when the state changed
        status_code: Disconnect status code, present on close
        qr: QR challenge payload, present while waiting for pairing
    """

    connection: str | None = None
    status_code: int | None = None
    qr: str | None = None


@dataclass
class ConnectionConfig:
    """Everything an engine needs to open a connection for one session."""

    session_id: str
    mode: SessionMode
    auth_state: dict[str, Any]
    version: list[int]
    browser: list[str]
    patch_message_before_sending: MessagePatch
    extra: dict[str, Any] = field(default_factory=dict)


class ProtocolConnection(ABC):
    """Live connection handle owned by the connection supervisor."""

    @abstractmethod
    def on(self, event: ConnectionEvent, handler: EventHandler) -> None:
        """Subscribe an async handler to an event."""

    @abstractmethod
    async def send(
        self, jid: str, content: dict[str, Any], options: dict[str, Any]
    ) -> Any:
        """Send a message and return the engine's delivery result."""

    @abstractmethod
    async def query_group_metadata(self, jid: str) -> dict[str, Any]:
        """Fetch group metadata; includes ``id`` when the group exists."""

    @abstractmethod
    async def query_existence(self, jid: str) -> Any:
        """Check directory existence.

        Legacy connections return a single ``{"exists": bool}`` object,
        modern connections return a one-element list of such objects.
        """

    @abstractmethod
    async def logout(self) -> None:
        """Invalidate credentials on the remote end."""

    @abstractmethod
    async def close(self) -> None:
        """Release transport resources without logging out."""


class ProtocolEngine(ABC):
    """Factory for protocol connections."""

    @abstractmethod
    async def connect(self, config: ConnectionConfig) -> ProtocolConnection:
        """Open a connection for the configured session."""


def load_engine(path: str) -> ProtocolEngine:
    """Instantiate an engine from a ``package.module:Factory`` path.

    Args:
        path: Dotted module path and attribute name separated by a colon

    Returns:
        Engine instance

    Raises:
        ImportError: If the module or attribute cannot be found
        TypeError: If the factory does not produce a ProtocolEngine
    """
    module_path, _, attr = path.partition(":")
    module = importlib.import_module(module_path)
    try:
        factory = getattr(module, attr)
    except AttributeError as e:
        raise ImportError(f"Engine factory '{attr}' not found in {module_path}") from e

    engine = factory()
    if not isinstance(engine, ProtocolEngine):
        raise TypeError(f"{path} did not produce a ProtocolEngine")

    logger.info("Protocol engine loaded", extra={"path": path})
    return engine
