"""Client for the external webhook and device-status consumer."""

from session_gateway.infra.consumer.client import TOKEN_HEADER, ConsumerClient

__all__ = ["ConsumerClient", "TOKEN_HEADER"]
