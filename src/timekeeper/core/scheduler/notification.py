# src/timekeeper/core/scheduler/notification.py
"""Delivery protocol for scheduler.

Provides an abstraction layer for delivering due tasks, allowing different
delivery backends (webhook, chat client, log, etc.).
"""

import logging
from typing import Any, Protocol

import httpx
import tenacity

from timekeeper.core.scheduler.models import Delivery

logger = logging.getLogger(__name__)


class DeliveryProtocol(Protocol):
    """Protocol for delivering due tasks.

    This protocol defines the interface that delivery backends must implement.
    It decouples the scheduler from the transport that reaches the user.
    """

    async def deliver(self, delivery: Delivery) -> bool:
        """Deliver a task that is due.

        Args:
            delivery: Destination, resolved message and task metadata.

        Returns:
            True on success, False on failure. Raising counts as failure.
        """
        ...


class LoggingNotifier:
    """Delivery backend that writes each delivery to the log."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    async def deliver(self, delivery: Delivery) -> bool:
        logger.log(
            self._level,
            "Delivery for task %s to %s: %s",
            delivery.task_id,
            delivery.destination,
            delivery.message,
        )
        return True


def delivery_to_dict(delivery: Delivery) -> dict[str, Any]:
    """Convert a delivery to a JSON-serializable dict."""
    return {
        "task_id": delivery.task_id,
        "owner_id": delivery.owner_id,
        "destination": delivery.destination,
        "message": delivery.message,
        "kind": delivery.kind.value,
        "fired_at": delivery.fired_at,
    }


class WebhookNotifier:
    """Webhook implementation of DeliveryProtocol.

    POSTs each delivery as JSON. Transient failures (timeouts, connection
    errors, HTTP error status) are retried with exponential backoff.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
        attempts: int = 3,
        backoff: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the notifier.

        Args:
            url: Webhook URL to POST to.
            headers: Extra headers (e.g., auth tokens).
            timeout: Per-request timeout in seconds.
            attempts: Total attempts per delivery.
            backoff: Base delay in seconds between attempts.
            transport: Optional httpx transport (used by tests).
        """
        self._url = url
        self._headers = {"Content-Type": "application/json", **(headers or {})}
        self._timeout = timeout
        self._attempts = attempts
        self._backoff = backoff
        self._transport = transport

    async def deliver(self, delivery: Delivery) -> bool:
        """POST the delivery to the webhook.

        Args:
            delivery: Delivery to send.

        Returns:
            True if the webhook accepted it, False after the last failed attempt.
        """
        retrying = tenacity.AsyncRetrying(
            stop=tenacity.stop_after_attempt(self._attempts),
            wait=tenacity.wait_exponential(
                multiplier=self._backoff, min=self._backoff, max=5
            ),
            retry=tenacity.retry_if_exception_type(
                (httpx.TimeoutException, httpx.ConnectError, httpx.HTTPStatusError)
            ),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._post(delivery)
        except httpx.HTTPError as e:
            logger.warning(
                "Webhook delivery failed for task %s: %s", delivery.task_id, e
            )
            return False
        return True

    async def _post(self, delivery: Delivery) -> None:
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            response = await client.post(
                self._url, json=delivery_to_dict(delivery), headers=self._headers
            )
            response.raise_for_status()
        logger.info("Webhook sent for task %s to %s", delivery.task_id, self._url)
