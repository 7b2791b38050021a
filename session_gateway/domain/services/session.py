"""Session registry API.

Public surface consumed by the HTTP front-end: create, look up, delete and
message through sessions; list cached chats; check identifier existence;
format phone and group identifiers. Also owns start-up restoration and
shutdown of the whole session population.
"""

import logging
from typing import Any

from session_gateway.config import Settings
from session_gateway.domain.exceptions import InvalidSessionIdError, SessionNotFoundError
from session_gateway.domain.models import (
    GROUP_JID_SUFFIX,
    USER_JID_SUFFIX,
    SessionMode,
    SessionRecord,
)
from session_gateway.domain.pending import PendingRequest
from session_gateway.domain.registry import SessionRegistry
from session_gateway.domain.services.relay import WebhookRelay
from session_gateway.domain.services.supervisor import ConnectionSupervisor
from session_gateway.domain.utils import format_group, format_phone
from session_gateway.infra.consumer.client import ConsumerClient
from session_gateway.infra.protocol.engine import ProtocolEngine
from session_gateway.infra.storage.chat_store import ChatStoreRepository
from session_gateway.infra.storage.credentials import CredentialStore
from session_gateway.infra.tasks import BestEffortRunner

logger = logging.getLogger(__name__)


class SessionService:
    """Facade over the session registry and connection supervisor.

    Example:
        service = SessionService.from_settings(settings, engine)
        await service.restore_sessions()

        pending = PendingRequest()
        await service.create_session("alice", SessionMode.MODERN, pending)
        response = await pending.wait(timeout=60)
    """

    def __init__(
        self,
        settings: Settings,
        registry: SessionRegistry,
        supervisor: ConnectionSupervisor,
        credentials: CredentialStore,
        stores: ChatStoreRepository,
        consumer: ConsumerClient,
        runner: BestEffortRunner,
    ) -> None:
        """Initialize session service.

        Args:
            settings: Application settings
            registry: Shared session registry
            supervisor: Connection supervisor
            credentials: Credential storage (used for restoration)
            stores: Chat store persistence
            consumer: Consumer client (closed on shutdown)
            runner: Best-effort runner (drained on shutdown)
        """
        self.settings = settings
        self.registry = registry
        self.supervisor = supervisor
        self.credentials = credentials
        self.stores = stores
        self.consumer = consumer
        self.runner = runner

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        engine: ProtocolEngine,
        consumer: ConsumerClient | None = None,
    ) -> "SessionService":
        """Wire up a service and its collaborators from settings.

        Args:
            settings: Application settings
            engine: Protocol engine
            consumer: Consumer client override (default: built from settings)

        Returns:
            Ready-to-use SessionService
        """
        registry = SessionRegistry()
        credentials = CredentialStore(settings.sessions_dir)
        stores = ChatStoreRepository(settings.sessions_dir)
        runner = BestEffortRunner()
        consumer = consumer or ConsumerClient(
            settings.app_url,
            token=settings.app_key,
            timeout_seconds=settings.consumer_timeout_seconds,
        )
        supervisor = ConnectionSupervisor(
            settings,
            engine,
            registry,
            credentials,
            stores,
            WebhookRelay(consumer),
            consumer,
            runner,
        )
        return cls(settings, registry, supervisor, credentials, stores, consumer, runner)

    # ==================== Lifecycle ====================

    async def create_session(
        self,
        session_id: str,
        mode: SessionMode = SessionMode.MODERN,
        pending: PendingRequest | None = None,
    ) -> None:
        """Start (or restart) a session. See ConnectionSupervisor.create_session."""
        await self.supervisor.create_session(session_id, mode, pending)

    def get_session(self, session_id: str) -> SessionRecord | None:
        """Return the live record for ``session_id``, or None."""
        return self.registry.get(session_id)

    def require_session(self, session_id: str) -> SessionRecord:
        """Return the live record for ``session_id``.

        Raises:
            SessionNotFoundError: If no session is registered under the identity
        """
        record = self.registry.get(session_id)
        if record is None:
            raise SessionNotFoundError(
                f"Session '{session_id}' not found", context={"session_id": session_id}
            )
        return record

    def is_session_exists(self, session_id: str) -> bool:
        return self.registry.has(session_id)

    async def delete_session(
        self, session_id: str, mode: SessionMode = SessionMode.MODERN, logout: bool = False
    ) -> None:
        """Tear down a session. See ConnectionSupervisor.delete_session."""
        await self.supervisor.delete_session(session_id, mode, logout=logout)

    # ==================== Queries ====================

    async def list_chats(self, session_id: str, is_group: bool = False) -> list[dict[str, Any]]:
        """List cached chats of one kind.

        Args:
            session_id: Session identity
            is_group: Group chats instead of direct chats

        Returns:
            Chat entries whose id carries the matching suffix; empty when
            the session does not exist
        """
        record = self.registry.get(session_id)
        if record is None:
            return []

        if not record.store.disk_merged:
            await self.stores.hydrate(session_id, record.store)

        suffix = GROUP_JID_SUFFIX if is_group else USER_JID_SUFFIX
        return [chat for chat in record.store.all_chats() if str(chat.get("id", "")).endswith(suffix)]

    async def is_exists(self, session: SessionRecord, jid: str, is_group: bool = False) -> bool:
        """Check whether ``jid`` exists. Failures read as False."""
        return await self.supervisor.is_exists(session, jid, is_group)

    async def send_message(
        self,
        session: SessionRecord,
        receiver: str,
        message: dict[str, Any],
        delay_ms: int | None = None,
    ) -> Any:
        """Send a message through ``session`` after a pacing delay.

        Raises:
            SendFailure: If the session is not live or the send fails
        """
        return await self.supervisor.send_message(
            session.session_id, receiver, message, delay_ms=delay_ms
        )

    @staticmethod
    def format_phone(phone: str) -> str:
        return format_phone(phone)

    @staticmethod
    def format_group(group: str) -> str:
        return format_group(group)

    # ==================== Process lifecycle ====================

    async def restore_sessions(self) -> int:
        """Start a session for every credential entry found on disk.

        Returns:
            Number of sessions started
        """
        restored = 0
        for session_id, mode in self.credentials.list_stored():
            try:
                await self.supervisor.create_session(session_id, mode)
            except InvalidSessionIdError as e:
                logger.warning(f"Skipping stored session: {e}", extra=e.context)
                continue
            restored += 1

        logger.info(f"Restored {restored} session(s) from disk")
        return restored

    async def flush_all(self) -> int:
        """Flush every live chat store. Returns the number flushed."""
        return await self.supervisor.flush_all()

    async def shutdown(self) -> None:
        """Flush stores, close connections and release HTTP resources."""
        await self.supervisor.shutdown()
        await self.runner.drain()
        await self.consumer.close()
        logger.info("Session service shut down")
