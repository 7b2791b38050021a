"""HTTP client for the external webhook / device-status consumer.

Wraps an ``httpx.AsyncClient`` bound to the consumer base URL. Every
network error and non-2xx response is mapped to ``RelayDeliveryFailure``;
callers decide whether to log and drop it.

Example:
    client = ConsumerClient(base_url="https://app.example.com", token="secret")
    await client.send_webhook("alice", {"from": "123@s.whatsapp.net", ...})
    await client.set_device_status("alice", 0)
    await client.close()
"""

import logging
from typing import Any

import httpx

from session_gateway.domain.exceptions import RelayDeliveryFailure

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-Webhook-Token"


class ConsumerClient:
    """Async HTTP client for consumer callbacks."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize consumer client.

        Args:
            base_url: Consumer base URL (no trailing slash)
            token: Optional shared key sent in the X-Webhook-Token header
            timeout_seconds: Request timeout in seconds
            transport: Optional transport override (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.token = (token or "").strip() or None
        self.timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {TOKEN_HEADER: self.token} if self.token else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
                follow_redirects=False,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client and cleanup connections."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, json: dict[str, Any] | None = None) -> httpx.Response:
        """POST to the consumer.

        Raises:
            RelayDeliveryFailure: On network errors or non-2xx responses
        """
        client = self._get_client()
        try:
            response = await client.post(path, json=json)
        except httpx.HTTPError as e:
            raise RelayDeliveryFailure(
                f"POST {path} failed: {type(e).__name__}",
                context={"url": f"{self.base_url}{path}"},
            ) from e

        if not response.is_success:
            raise RelayDeliveryFailure(
                f"POST {path} returned {response.status_code}",
                context={"url": f"{self.base_url}{path}", "status_code": response.status_code},
            )
        return response

    async def send_webhook(self, session_id: str, payload: dict[str, Any]) -> None:
        """Forward an inbound message notification.

        Args:
            session_id: Session the message arrived on
            payload: Webhook JSON body
        """
        await self._post(f"/api/send-webhook/{session_id}", json=payload)

    async def set_device_status(self, session_id: str, status: int) -> None:
        """Report a device status change.

        Args:
            session_id: Session identity
            status: Status code (0 = inactive)
        """
        await self._post(f"/api/set-device-status/{session_id}/{status}")
