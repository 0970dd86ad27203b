"""Notification Sinks: outbound delivery of NotificationMessage to subscribers.

Invariants:
    - WebhookNotificationSink POSTs the message JSON to every configured subscriber URL
    - Any transport error or non-2xx response raises NotificationDeliveryError,
      so the dispatcher retries and eventually dead-letters
    - LoggingNotificationSink never raises (notifications disabled)

Design Decisions:
    - httpx.AsyncClient shared per sink: connection reuse across deliveries
    - Subscribers are all attempted before raising: one dead endpoint does not
      starve the others (retry re-delivers to all, at-least-once)
"""

import logging

import httpx

from groupsync.core.errors import NotificationDeliveryError
from groupsync.core.events import NotificationMessage

logger = logging.getLogger(__name__)


class WebhookNotificationSink:
    """Delivers notifications as JSON POST requests."""

    def __init__(
        self, subscribers: list[str], timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._subscribers = list(subscribers)
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def publish(self, message: NotificationMessage) -> None:
        body = message.model_dump(mode="json", exclude_none=True)
        failures: list[tuple[str, str]] = []
        for url in self._subscribers:
            try:
                response = await self._client.post(url, json=body)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                failures.append((url, f"HTTP {e.response.status_code}"))
            except httpx.HTTPError as e:
                failures.append((url, str(e) or type(e).__name__))
        if failures:
            for url, reason in failures:
                logger.warning(
                    f"Notification {message.event.value} to {url} failed: {reason}",
                    extra={"course_id": message.course_id},
                )
            url, reason = failures[0]
            raise NotificationDeliveryError(reason, url)

    async def aclose(self) -> None:
        await self._client.aclose()


class LoggingNotificationSink:
    """Used when notifications are disabled: records the message in the log only."""

    async def publish(self, message: NotificationMessage) -> None:
        logger.debug(
            f"Notification {message.event.value} (delivery disabled)",
            extra={"course_id": message.course_id},
        )

    async def aclose(self) -> None:
        return None
