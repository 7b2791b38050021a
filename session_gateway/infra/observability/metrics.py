"""Prometheus metrics for observability.

Provides metrics collection for session lifecycle, reconnect decisions,
store flushes, outbound sends and webhook deliveries.
"""

import logging

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Global registry for metrics
_registry = CollectorRegistry()


# Session Lifecycle Metrics
sessions_live = Gauge(
    "session_gateway_sessions_live",
    "Number of sessions currently registered",
    registry=_registry,
)

session_closes_total = Counter(
    "session_gateway_session_closes_total",
    "Total number of connection close events",
    ["outcome"],
    registry=_registry,
)

reconnect_decisions_total = Counter(
    "session_gateway_reconnect_decisions_total",
    "Total number of retry policy decisions",
    ["decision"],
    registry=_registry,
)

# Storage Metrics
store_flushes_total = Counter(
    "session_gateway_store_flushes_total",
    "Total number of chat store flushes",
    ["status"],
    registry=_registry,
)

# Messaging Metrics
messages_sent_total = Counter(
    "session_gateway_messages_sent_total",
    "Total number of outbound message sends",
    ["status"],
    registry=_registry,
)

webhook_deliveries_total = Counter(
    "session_gateway_webhook_deliveries_total",
    "Total number of webhook relay deliveries",
    ["status"],
    registry=_registry,
)


def get_registry() -> CollectorRegistry:
    """Get the Prometheus metrics registry.

    Returns:
        CollectorRegistry instance
    """
    return _registry


def get_metrics_text() -> str:
    """Render all metrics in Prometheus text exposition format.

    Returns:
        Metrics text
    """
    return generate_latest(_registry).decode("utf-8")


def record_session_close(outcome: str) -> None:
    """Record a connection close and how it was resolved.

    Args:
        outcome: reconnect, logged_out or retry_exhausted
    """
    session_closes_total.labels(outcome=outcome).inc()


def record_reconnect_decision(allowed: bool) -> None:
    """Record a retry policy decision.

    Args:
        allowed: Whether another attempt was granted
    """
    reconnect_decisions_total.labels(decision="retry" if allowed else "give_up").inc()


def record_store_flush(success: bool) -> None:
    """Record a chat store flush outcome."""
    store_flushes_total.labels(status="success" if success else "error").inc()


def record_message_sent(success: bool) -> None:
    """Record an outbound send outcome."""
    messages_sent_total.labels(status="success" if success else "error").inc()


def record_webhook_delivery(success: bool) -> None:
    """Record a webhook relay delivery outcome."""
    webhook_deliveries_total.labels(status="success" if success else "error").inc()


def set_sessions_live(count: int) -> None:
    """Update the live session gauge."""
    sessions_live.set(count)
