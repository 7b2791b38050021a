"""Webhook relay for inbound direct messages.

Forwards each inbound message whose chat JID is a direct-message JID to
the consumer's ``/api/send-webhook/<session_id>`` endpoint. Group messages
are filtered out here. Delivery is best-effort: failures are logged and
counted, never retried or queued.
"""

import logging
from typing import Any

from session_gateway.domain.exceptions import RelayDeliveryFailure
from session_gateway.domain.models import USER_JID_SUFFIX, WebhookNotification
from session_gateway.infra.consumer.client import ConsumerClient
from session_gateway.infra.observability.metrics import record_webhook_delivery

logger = logging.getLogger(__name__)


def message_type(content: dict[str, Any] | None) -> str | None:
    """Type tag of a message: the first key of its content variant."""
    if not content:
        return None
    return next(iter(content))


def build_notification(session_id: str, message: dict[str, Any]) -> WebhookNotification | None:
    """Build a webhook notification for a qualifying message.

    Args:
        session_id: Session the message arrived on
        message: Raw upserted message (``key``, ``message``, ...)

    Returns:
        Notification, or None when the message is not from a direct chat
    """
    key = message.get("key") or {}
    remote_jid = key.get("remoteJid") or ""
    if not remote_jid.endswith(USER_JID_SUFFIX):
        return None

    content = message.get("message")
    return WebhookNotification(
        session_id=session_id,
        sender=remote_jid,
        from_me=bool(key.get("fromMe", False)),
        message_id=key.get("id"),
        message=content,
        message_type=message_type(content),
        raw=message,
    )


class WebhookRelay:
    """Delivers inbound message notifications to the consumer."""

    def __init__(self, consumer: ConsumerClient) -> None:
        """Initialize relay.

        Args:
            consumer: HTTP client for the consumer endpoints
        """
        self.consumer = consumer

    async def relay(self, session_id: str, upsert: dict[str, Any]) -> int:
        """Relay every qualifying message of a ``messages.upsert`` event.

        Args:
            session_id: Session the event arrived on
            upsert: Event payload with a ``messages`` list

        Returns:
            Number of notifications delivered successfully
        """
        delivered = 0
        for message in upsert.get("messages") or []:
            notification = build_notification(session_id, message)
            if notification is None:
                continue
            if await self.deliver(notification):
                delivered += 1
        return delivered

    async def deliver(self, notification: WebhookNotification) -> bool:
        """Post one notification.

        Returns:
            True if the consumer accepted it, False otherwise
        """
        try:
            await self.consumer.send_webhook(notification.session_id, notification.to_payload())
        except RelayDeliveryFailure as e:
            record_webhook_delivery(False)
            logger.error(
                f"Webhook delivery failed: {e}",
                extra={
                    "session_id": notification.session_id,
                    "jid": notification.sender,
                    **e.context,
                },
            )
            return False

        record_webhook_delivery(True)
        logger.debug(
            "Webhook delivered",
            extra={"session_id": notification.session_id, "jid": notification.sender},
        )
        return True
