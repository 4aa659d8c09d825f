"""
Slack incoming-webhook delivery.
"""

from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from news_relay.exceptions import DeliveryFailure
from news_relay.logger import get_logger

logger = get_logger(__name__)


@dataclass
class DeliveryResult:
    """Outcome of one delivery call."""

    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None

    def __post_init__(self):
        """Validate delivery result."""
        if self.success and self.error:
            raise ValueError("Successful delivery cannot have an error")
        if not self.success and not self.error:
            self.error = "Unknown error"


class Notifier(Protocol):
    """Deliver one rendered payload to a destination."""

    async def deliver(self, payload: dict, destination: str) -> DeliveryResult:
        ...


class SlackWebhookNotifier:
    """Post payloads to Slack incoming webhooks."""

    def __init__(self, timeout_seconds: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        """Initialize notifier.

        Args:
            timeout_seconds: Request timeout
            client: Preconfigured client, mainly for tests
        """
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "SlackWebhookNotifier":
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def post(self, payload: dict, destination: str) -> int:
        """Post one payload and return the status code.

        Raises:
            DeliveryFailure: Timeout, network error or non-2xx answer
        """
        if self._client is None:
            raise RuntimeError("SlackWebhookNotifier used outside of 'async with'")

        try:
            response = await self._client.post(destination, json=payload)
        except httpx.TimeoutException as e:
            raise DeliveryFailure(f"Timeout: {e}") from e
        except httpx.RequestError as e:
            raise DeliveryFailure(f"Request error: {e}") from e

        if not response.is_success:
            error = f"HTTP {response.status_code}: {response.text.strip()[:200] or response.reason_phrase}"
            if response.status_code == 429:
                error += f" (retry after {response.headers.get('Retry-After', '?')}s)"
            raise DeliveryFailure(error, status_code=response.status_code)
        return response.status_code

    async def deliver(self, payload: dict, destination: str) -> DeliveryResult:
        """Post one payload.

        Network and HTTP errors are reported in the result, never raised.

        Args:
            payload: Slack message payload
            destination: Webhook URL

        Returns:
            DeliveryResult
        """
        try:
            status_code = await self.post(payload, destination)
        except DeliveryFailure as e:
            logger.error(f"Slack delivery failed: {e}")
            return DeliveryResult(success=False, status_code=e.status_code, error=str(e))

        logger.info("Slack delivery succeeded")
        return DeliveryResult(success=True, status_code=status_code)
