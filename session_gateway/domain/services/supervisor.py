"""Connection supervisor: owns the lifecycle of every session identity.

Responsibilities:
- Hydrate credentials and the chat store, open the protocol connection
- Register the session record (replacing any prior one for the identity)
- Route connection events: credential updates, chat and history snapshots,
  inbound messages, connection state changes
- Drive the lifecycle state machine and execute its effects
- Schedule reconnects and finalize sessions on terminal close
- Answer a pending creation request exactly once

Events from a connection that is no longer the registered one for its
identity are ignored, so a replaced or deleted session cannot trigger
reconnects. A creation that was in flight when its identity was deleted
closes what it opened instead of registering.

Example:
    supervisor = ConnectionSupervisor(settings, engine, registry, ...)
    pending = PendingRequest()
    await supervisor.create_session("alice", SessionMode.MODERN, pending)
    response = await pending.wait(timeout=60)
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from session_gateway.config import Settings
from session_gateway.domain.exceptions import (
    RelayDeliveryFailure,
    SendFailure,
    StorageIOError,
)
from session_gateway.domain.models import (
    ChatStore,
    CloseOutcome,
    ConnectionState,
    DeviceStatus,
    SessionMode,
    SessionRecord,
    validate_session_id,
)
from session_gateway.domain.pending import PendingRequest, PendingResponse
from session_gateway.domain.registry import SessionRegistry
from session_gateway.domain.services.lifecycle import (
    ClearRetries,
    DeliverQr,
    Disconnected,
    Effect,
    Finalize,
    FlushStore,
    LifecycleEvent,
    LifecycleMachine,
    Opened,
    QrReceived,
    RespondFailure,
    ScheduleReconnect,
)
from session_gateway.domain.services.relay import WebhookRelay
from session_gateway.domain.services.retry import RetryPolicy
from session_gateway.infra.consumer.client import ConsumerClient
from session_gateway.infra.observability.logging import set_correlation_id
from session_gateway.infra.observability.metrics import (
    record_message_sent,
    record_session_close,
)
from session_gateway.infra.protocol.engine import (
    ConnectionConfig,
    ConnectionEvent,
    ConnectionUpdate,
    ProtocolConnection,
    ProtocolEngine,
)
from session_gateway.infra.protocol.framing import patch_message_before_sending
from session_gateway.infra.qr import render_qr_data_url
from session_gateway.infra.storage.chat_store import ChatStoreRepository
from session_gateway.infra.storage.credentials import CredentialStore
from session_gateway.infra.tasks import BestEffortRunner

logger = logging.getLogger(__name__)

QR_MESSAGE = "QR code received, please scan the QR code."
QR_FAILURE_MESSAGE = "Unable to create QR code."


@dataclass
class _Lifecycle:
    """Mutable state of one connection attempt."""

    session_id: str
    mode: SessionMode
    pending: PendingRequest | None
    record: SessionRecord | None = None
    state: ConnectionState = ConnectionState.CONNECTING


def _as_update(payload: Any) -> ConnectionUpdate:
    if isinstance(payload, ConnectionUpdate):
        return payload
    if isinstance(payload, dict):
        return ConnectionUpdate(
            connection=payload.get("connection"),
            status_code=payload.get("status_code"),
            qr=payload.get("qr"),
        )
    raise TypeError(f"Unsupported connection update payload: {type(payload).__name__}")


class ConnectionSupervisor:
    """Creates, reconnects and tears down protocol connections."""

    def __init__(
        self,
        settings: Settings,
        engine: ProtocolEngine,
        registry: SessionRegistry,
        credentials: CredentialStore,
        stores: ChatStoreRepository,
        relay: WebhookRelay,
        consumer: ConsumerClient,
        runner: BestEffortRunner,
        retry_policy: RetryPolicy | None = None,
        machine: LifecycleMachine | None = None,
    ) -> None:
        """Initialize supervisor.

        Args:
            settings: Application settings
            engine: Protocol engine opening connections
            registry: Shared session registry
            credentials: Credential storage
            stores: Chat store persistence
            relay: Webhook relay for inbound messages
            consumer: Consumer client (device status)
            runner: Runner for best-effort background operations
            retry_policy: Retry policy (default: from settings)
            machine: Lifecycle state machine (default: from settings)
        """
        self.settings = settings
        self.engine = engine
        self.registry = registry
        self.credentials = credentials
        self.stores = stores
        self.relay = relay
        self.consumer = consumer
        self.runner = runner
        self.retry_policy = retry_policy or RetryPolicy(registry, settings.max_retries)
        self.machine = machine or LifecycleMachine(settings.reconnect_interval_ms)

    # ==================== Creation ====================

    async def create_session(
        self,
        session_id: str,
        mode: SessionMode = SessionMode.MODERN,
        pending: PendingRequest | None = None,
    ) -> None:
        """Open a connection for ``session_id`` and register it.

        Does not return the connection: the outcome reaches the caller
        through ``pending`` (QR challenge or failure) or through the
        registry once the session is live.

        Args:
            session_id: Session identity
            mode: Session mode
            pending: Optional request awaiting a QR code or failure

        Raises:
            InvalidSessionIdError: If the identity is empty or unsafe
        """
        validate_session_id(session_id)
        set_correlation_id(f"{session_id}-{uuid.uuid4().hex[:8]}")

        lifecycle = _Lifecycle(session_id=session_id, mode=mode, pending=pending)
        generation = self.registry.generation(session_id)

        auth_state = await self.credentials.load(session_id, mode)
        store = ChatStore()
        await self.stores.hydrate(session_id, store)
        if self._deleted_since(lifecycle, generation):
            return

        config = ConnectionConfig(
            session_id=session_id,
            mode=mode,
            auth_state=auth_state,
            version=list(self.settings.protocol_version),
            browser=list(self.settings.protocol_browser),
            patch_message_before_sending=patch_message_before_sending,
        )

        try:
            connection = await self.engine.connect(config)
        except Exception as e:
            if self._deleted_since(lifecycle, generation):
                return
            logger.error(
                f"Connection could not be established: {e}",
                extra={"session_id": session_id, "session_mode": mode.value},
            )
            await self._close_event(lifecycle, status_code=None)
            return

        record = SessionRecord(
            session_id=session_id, mode=mode, connection=connection, store=store
        )
        if self._deleted_since(lifecycle, generation):
            await self._close_connection(record)
            return
        lifecycle.record = record

        previous = self.registry.put(record)
        if previous is not None and previous.connection is not connection:
            self.runner.spawn(
                self._close_connection(previous), "close_replaced", session_id=session_id
            )

        self._subscribe(lifecycle, connection, auth_state)

        logger.info(
            "Session connecting",
            extra={"session_id": session_id, "session_mode": mode.value},
        )

    def _deleted_since(self, lifecycle: _Lifecycle, generation: int) -> bool:
        """Whether the identity was deleted after this attempt started.

        An abandoned attempt answers its pending request with a failure.
        """
        if self.registry.generation(lifecycle.session_id) == generation:
            return False

        logger.info(
            "Session deleted while connecting, abandoning attempt",
            extra={"session_id": lifecycle.session_id},
        )
        if lifecycle.pending is not None:
            lifecycle.pending.respond(PendingResponse(500, False, RespondFailure().message))
        return True

    def _subscribe(
        self,
        lifecycle: _Lifecycle,
        connection: ProtocolConnection,
        auth_state: dict[str, Any],
    ) -> None:
        record = lifecycle.record
        session_id = lifecycle.session_id

        async def on_credentials(update: Any) -> None:
            if not self.registry.is_current(record):
                return
            if isinstance(update, dict):
                auth_state.setdefault("creds", {}).update(update)
            try:
                await self.credentials.save(session_id, lifecycle.mode, auth_state)
            except StorageIOError as e:
                logger.error(
                    f"Credentials could not be saved: {e}",
                    extra={"session_id": session_id},
                )

        async def on_chats(payload: dict[str, Any]) -> None:
            if not self.registry.is_current(record):
                return
            record.store.upsert_chats(payload.get("chats") or [])
            self._spawn_flush(record)

        async def on_history(payload: dict[str, Any]) -> None:
            if not self.registry.is_current(record):
                return
            record.store.upsert_chats(payload.get("chats") or [])
            record.store.upsert_contacts(payload.get("contacts") or [])
            self._spawn_flush(record)

        async def on_messages(payload: dict[str, Any]) -> None:
            if not self.registry.is_current(record):
                return
            self.runner.spawn(
                self.relay.relay(session_id, payload), "webhook_relay", session_id=session_id
            )

        async def on_connection_update(payload: Any) -> None:
            if not self.registry.is_current(record):
                logger.debug(
                    "Ignoring event from replaced connection",
                    extra={"session_id": session_id},
                )
                return
            update = _as_update(payload)
            if update.connection == "open":
                await self._apply(lifecycle, Opened())
            elif update.connection == "close":
                await self._close_event(lifecycle, update.status_code)
            if update.qr:
                await self._apply(lifecycle, QrReceived(update.qr))

        connection.on(ConnectionEvent.CREDENTIALS_UPDATED, on_credentials)
        connection.on(ConnectionEvent.CHATS_SNAPSHOT, on_chats)
        connection.on(ConnectionEvent.HISTORY_SNAPSHOT, on_history)
        connection.on(ConnectionEvent.MESSAGES_UPSERTED, on_messages)
        connection.on(ConnectionEvent.CONNECTION_UPDATE, on_connection_update)

    # ==================== State machine ====================

    async def _close_event(self, lifecycle: _Lifecycle, status_code: int | None) -> None:
        retry_allowed = False
        if self.machine.needs_retry_decision(lifecycle.state, status_code):
            retry_allowed = self.retry_policy.should_reconnect(lifecycle.session_id)
        await self._apply(lifecycle, Disconnected(status_code, retry_allowed))

    async def _apply(self, lifecycle: _Lifecycle, event: LifecycleEvent) -> None:
        transition = self.machine.transition(lifecycle.state, event)
        if transition.state is not lifecycle.state:
            logger.info(
                f"Session {lifecycle.state.value} -> {transition.state.value}",
                extra={
                    "session_id": lifecycle.session_id,
                    "status_code": getattr(event, "status_code", None),
                },
            )
        lifecycle.state = transition.state

        for effect in transition.effects:
            await self._run_effect(lifecycle, effect, event)

    async def _run_effect(
        self, lifecycle: _Lifecycle, effect: Effect, event: LifecycleEvent
    ) -> None:
        session_id = lifecycle.session_id

        if isinstance(effect, ClearRetries):
            self.retry_policy.reset(session_id)

        elif isinstance(effect, FlushStore):
            if lifecycle.record is not None:
                self._spawn_flush(lifecycle.record)

        elif isinstance(effect, DeliverQr):
            await self._deliver_qr(lifecycle, effect.payload)

        elif isinstance(effect, RespondFailure):
            if lifecycle.pending is not None:
                lifecycle.pending.respond(PendingResponse(500, False, effect.message))

        elif isinstance(effect, Finalize):
            self._log_close(effect.outcome, session_id, getattr(event, "status_code", None))
            await self._finalize(lifecycle)

        elif isinstance(effect, ScheduleReconnect):
            self._log_close(
                CloseOutcome.RECONNECT, session_id, getattr(event, "status_code", None)
            )
            self._schedule_reconnect(lifecycle, effect.delay_ms)

    def _log_close(
        self, outcome: CloseOutcome, session_id: str, status_code: int | None
    ) -> None:
        record_session_close(outcome.value)
        logger.log(
            logging.WARNING if outcome.is_terminal else logging.INFO,
            f"Connection closed ({outcome.value})",
            extra={
                "session_id": session_id,
                "status_code": status_code,
                "outcome": outcome.value,
            },
        )

    async def _deliver_qr(self, lifecycle: _Lifecycle, payload: str) -> None:
        pending = lifecycle.pending
        if pending is None or pending.answered:
            if pending is None:
                logger.warning(
                    "QR challenge received with no pending request; session needs pairing",
                    extra={"session_id": lifecycle.session_id},
                )
            return

        try:
            data_url = await render_qr_data_url(payload)
        except Exception as e:
            logger.error(
                f"QR code rendering failed: {e}",
                extra={"session_id": lifecycle.session_id},
            )
            pending.respond(PendingResponse(500, False, QR_FAILURE_MESSAGE))
            return

        pending.respond(PendingResponse(200, True, QR_MESSAGE, {"qr": data_url}))

    async def _finalize(self, lifecycle: _Lifecycle) -> None:
        session_id = lifecycle.session_id
        self.registry.cancel_reconnect(session_id)
        self.retry_policy.reset(session_id)

        # A failed connect never registered a record of its own.
        record = lifecycle.record or self.registry.get(session_id)
        if record is not None and self.registry.is_current(record):
            self.registry.pop(session_id)
        if record is not None:
            await self._close_connection(record)

    def _schedule_reconnect(self, lifecycle: _Lifecycle, delay_ms: int) -> None:
        session_id = lifecycle.session_id
        self.registry.cancel_reconnect(session_id)
        task = asyncio.create_task(
            self._reconnect_after(lifecycle.session_id, lifecycle.mode, lifecycle.pending, delay_ms),
            name=f"reconnect:{session_id}",
        )
        self.registry.set_reconnect(session_id, task)

    async def _reconnect_after(
        self,
        session_id: str,
        mode: SessionMode,
        pending: PendingRequest | None,
        delay_ms: int,
    ) -> None:
        task = asyncio.current_task()
        try:
            await asyncio.sleep(delay_ms / 1000)
            await self.create_session(session_id, mode, pending)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Reconnect failed", extra={"session_id": session_id})
            if pending is not None:
                pending.respond(PendingResponse(500, False, RespondFailure().message))
        finally:
            if task is not None:
                self.registry.discard_reconnect(session_id, task)

    def pending_reconnect(self, session_id: str) -> asyncio.Task[Any] | None:
        """Return the scheduled reconnect task for ``session_id``, if any."""
        return self.registry.get_reconnect(session_id)

    # ==================== Store flushing ====================

    def _spawn_flush(self, record: SessionRecord) -> None:
        self.runner.spawn(
            self.stores.flush(record.session_id, record.store),
            "store_flush",
            session_id=record.session_id,
        )

    async def flush_all(self) -> int:
        """Flush every live store.

        Returns:
            Number of stores flushed successfully
        """
        records = self.registry.all()
        results = await asyncio.gather(
            *(self.stores.flush(r.session_id, r.store) for r in records)
        )
        return sum(1 for ok in results if ok)

    # ==================== Messaging ====================

    async def send_message(
        self,
        session_id: str,
        jid: str,
        content: dict[str, Any],
        delay_ms: int | None = None,
    ) -> Any:
        """Send a message through a live session.

        Args:
            session_id: Session identity
            jid: Target JID
            content: Message content; an ``options`` key is passed as send options
            delay_ms: Pacing delay before sending (default: settings.send_delay_ms)

        Returns:
            Engine delivery result

        Raises:
            SendFailure: If the session is not live or the send fails
        """
        record = self.registry.get(session_id)
        if record is None:
            record_message_sent(False)
            raise SendFailure()

        delay = self.settings.send_delay_ms if delay_ms is None else delay_ms
        body = dict(content)
        options = body.pop("options", None) or {}

        try:
            await asyncio.sleep(max(0, int(delay)) / 1000)
            result = await record.connection.send(jid, body, options)
        except Exception as e:
            record_message_sent(False)
            logger.warning(
                f"Message send failed: {type(e).__name__}",
                extra={"session_id": session_id, "jid": jid},
            )
            raise SendFailure() from None

        record_message_sent(True)
        return result

    async def is_exists(self, record: SessionRecord, jid: str, is_group: bool = False) -> bool:
        """Check whether a JID exists on the network.

        Any failure of the underlying query reads as "does not exist".

        Args:
            record: Live session to query through
            jid: JID to check
            is_group: Query group metadata instead of the directory

        Returns:
            True if the entity exists
        """
        try:
            if is_group:
                metadata = await record.connection.query_group_metadata(jid)
                return bool(metadata.get("id"))

            result = await record.connection.query_existence(jid)
            if not record.is_legacy:
                result = result[0]
            return bool(result.get("exists"))
        except Exception as e:
            logger.debug(
                f"Existence check failed: {e}",
                extra={"session_id": record.session_id, "jid": jid},
            )
            return False

    # ==================== Teardown ====================

    async def delete_session(
        self, session_id: str, mode: SessionMode = SessionMode.MODERN, logout: bool = False
    ) -> None:
        """Tear down a session and remove its durable files.

        Args:
            session_id: Session identity
            mode: Session mode (selects the credential layout)
            logout: Log out on the remote end before closing

        Raises:
            InvalidSessionIdError: If the identity is empty or unsafe
        """
        validate_session_id(session_id)

        self.registry.bump_generation(session_id)
        self.registry.cancel_reconnect(session_id)
        record = self.registry.pop(session_id)
        self.registry.clear_attempts(session_id)

        if record is not None:
            if logout:
                try:
                    await record.connection.logout()
                except Exception as e:
                    logger.warning(
                        f"Logout failed: {e}", extra={"session_id": session_id}
                    )
            await self._close_connection(record)

        await self.credentials.remove(session_id, mode)
        await self.stores.remove(session_id)

        self.runner.spawn(
            self._report_device_status(session_id, DeviceStatus.INACTIVE),
            "device_status",
            session_id=session_id,
        )

        logger.info("Session deleted", extra={"session_id": session_id})

    async def _report_device_status(self, session_id: str, status: DeviceStatus) -> None:
        try:
            await self.consumer.set_device_status(session_id, int(status))
        except RelayDeliveryFailure as e:
            logger.error(
                f"Device status update failed: {e}",
                extra={"session_id": session_id, **e.context},
            )

    async def _close_connection(self, record: SessionRecord) -> None:
        try:
            await record.connection.close()
        except Exception as e:
            logger.warning(
                f"Connection close failed: {e}", extra={"session_id": record.session_id}
            )

    async def shutdown(self) -> None:
        """Flush all stores and release every connection."""
        for session_id in list(self.registry.reconnects):
            self.registry.cancel_reconnect(session_id)

        flushed = await self.flush_all()
        logger.info(f"Flushed {flushed} store(s) before exit")

        records = self.registry.all()
        for record in records:
            self.registry.pop(record.session_id)
        await asyncio.gather(*(self._close_connection(r) for r in records))
