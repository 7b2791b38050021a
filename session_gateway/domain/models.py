"""Domain models for the Session Gateway.

Session records, the in-memory chat store, and the DTOs exchanged with
the webhook consumer. Records hold a reference to the live protocol
connection rather than copying its attributes.
"""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from session_gateway.domain.exceptions import InvalidSessionIdError

if TYPE_CHECKING:
    from session_gateway.infra.protocol.engine import ProtocolConnection


# JID domain suffixes
USER_JID_SUFFIX = "@s.whatsapp.net"
GROUP_JID_SUFFIX = "@g.us"

# Alphanumeric, hyphen, underscore only (used as a file name component)
_SESSION_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


def validate_session_id(session_id: str) -> str:
    """Validate that a session identity is non-empty and path-safe.

    Args:
        session_id: Caller-assigned session identity

    Returns:
        The identity, unchanged

    Raises:
        InvalidSessionIdError: If the identity is empty or has unsafe characters
    """
    if not session_id:
        raise InvalidSessionIdError("Session ID must be non-empty")

    if not _SESSION_ID_PATTERN.match(session_id):
        raise InvalidSessionIdError(
            f"Session ID '{session_id}' contains invalid characters; "
            "only alphanumeric characters, hyphen (-), and underscore (_) are allowed",
            context={"session_id": session_id},
        )
    return session_id


class SessionMode(str, Enum):
    """Credential-persistence and API-call strategy of a session.

    The value doubles as the on-disk credential name prefix.
    """

    MODERN = "md"
    LEGACY = "legacy"

    @property
    def is_legacy(self) -> bool:
        return self is SessionMode.LEGACY


class ConnectionState(str, Enum):
    """Connection state machine.

    Valid transitions:
    - connecting → open
    - connecting → closed
    - open → closed
    - closed → connecting (reconnect)
    """

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class CloseOutcome(str, Enum):
    """How a connection close was resolved.

    - reconnect: transient connection loss, retried per policy
    - logged_out: terminal authentication failure, never retried
    - retry_exhausted: retry budget spent, session finalized
    """

    RECONNECT = "reconnect"
    LOGGED_OUT = "logged_out"
    RETRY_EXHAUSTED = "retry_exhausted"

    @property
    def is_terminal(self) -> bool:
        return self is not CloseOutcome.RECONNECT


class ChatStore:
    """In-memory cache of chat and contact metadata for one session.

    Entries are dicts keyed by their ``id``. Two merge strategies exist:
    ``insert_if_absent`` for data read back from disk (never overwrites what
    is already in memory) and ``upsert`` for live protocol events (updates
    fields of existing entries). Neither removes entries, so the store only
    grows between restarts.
    """

    def __init__(self) -> None:
        self.chats: dict[str, dict[str, Any]] = {}
        self.contacts: dict[str, dict[str, Any]] = {}
        self.disk_merged = False

    @staticmethod
    def _insert_if_absent(target: dict[str, dict[str, Any]], entries: list[dict]) -> int:
        added = 0
        for entry in entries:
            entry_id = entry.get("id") if isinstance(entry, dict) else None
            if not entry_id or entry_id in target:
                continue
            target[entry_id] = dict(entry)
            added += 1
        return added

    @staticmethod
    def _upsert(target: dict[str, dict[str, Any]], entries: list[dict]) -> None:
        for entry in entries:
            entry_id = entry.get("id") if isinstance(entry, dict) else None
            if not entry_id:
                continue
            target.setdefault(entry_id, {}).update(entry)

    def insert_chats_if_absent(self, chats: list[dict]) -> int:
        """Add chats whose id is not yet known. Returns number added."""
        return self._insert_if_absent(self.chats, chats)

    def insert_contacts_if_absent(self, contacts: list[dict]) -> int:
        """Add contacts whose id is not yet known. Returns number added."""
        return self._insert_if_absent(self.contacts, contacts)

    def upsert_chats(self, chats: list[dict]) -> None:
        self._upsert(self.chats, chats)

    def upsert_contacts(self, contacts: list[dict]) -> None:
        self._upsert(self.contacts, contacts)

    def all_chats(self) -> list[dict[str, Any]]:
        return list(self.chats.values())

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        """Snapshot the store as the persisted blob shape."""
        return {
            "chats": [dict(chat) for chat in self.chats.values()],
            "contacts": [dict(contact) for contact in self.contacts.values()],
        }


@dataclass
class SessionRecord:
    """Registry entry binding a session identity to its live connection."""

    session_id: str
    mode: SessionMode
    connection: "ProtocolConnection"
    store: ChatStore
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_legacy(self) -> bool:
        return self.mode.is_legacy


class WebhookNotification(BaseModel):
    """Inbound direct message forwarded to the webhook consumer."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(exclude=True)
    sender: str = Field(serialization_alias="from")
    from_me: bool = False
    message_id: str | None = None
    message: dict[str, Any] | None = None
    message_type: str | None = Field(default=None, serialization_alias="type")
    raw: dict[str, Any] = Field(default_factory=dict, serialization_alias="replay_message_json")

    def to_payload(self) -> dict[str, Any]:
        """Build the JSON body posted to the consumer."""
        return self.model_dump(by_alias=True)


class DeviceStatus(int, Enum):
    """Device status values reported to the consumer."""

    INACTIVE = 0
