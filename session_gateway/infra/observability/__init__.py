"""Observability infrastructure for the Session Gateway.

Provides structured logging and Prometheus metrics for monitoring
and debugging production deployments.
"""

from session_gateway.infra.observability.logging import (
    CorrelationIDFilter,
    JSONFormatter,
    correlation_id_var,
    get_correlation_id,
    set_correlation_id,
    setup_logging,
)
from session_gateway.infra.observability.metrics import (
    get_metrics_text,
    get_registry,
    record_message_sent,
    record_reconnect_decision,
    record_session_close,
    record_store_flush,
    record_webhook_delivery,
    set_sessions_live,
)

__all__ = [
    # Logging
    "correlation_id_var",
    "get_correlation_id",
    "set_correlation_id",
    "CorrelationIDFilter",
    "JSONFormatter",
    "setup_logging",
    # Metrics
    "get_registry",
    "get_metrics_text",
    "record_message_sent",
    "record_reconnect_decision",
    "record_session_close",
    "record_store_flush",
    "record_webhook_delivery",
    "set_sessions_live",
]
