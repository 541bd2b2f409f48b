from __future__ import annotations

import logging
from typing import Iterable, Optional

import httpx

from ..config import Settings
from ..domain.errors import NotificationDeliveryFailedError
from ..domain.notifications import NotificationDispatcher, NotificationRequest

logger = logging.getLogger(__name__)


class HttpNotificationDispatcher(NotificationDispatcher):
    """POSTs `{to, subject, body}` as JSON to the mail webhook."""

    def __init__(self, url: str, *, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client

    async def send(self, request: NotificationRequest) -> None:
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=request.as_payload(), timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=request.as_payload())
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationDeliveryFailedError(f"delivery to {request.to} failed") from exc


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Used when no webhook is configured."""

    def __init__(self) -> None:
        self.sent: list[NotificationRequest] = []

    async def send(self, request: NotificationRequest) -> None:
        self.sent.append(request)
        logger.info("Notification queued without transport", extra={"to": request.to, "subject": request.subject})


def build_dispatcher(settings: Settings) -> NotificationDispatcher:
    if settings.notification_webhook_url:
        return HttpNotificationDispatcher(
            settings.notification_webhook_url,
            timeout=settings.notification_timeout_seconds,
        )
    return LoggingNotificationDispatcher()


async def dispatch_all(
    dispatcher: NotificationDispatcher,
    requests: Iterable[Optional[NotificationRequest]],
) -> int:
    """Fire-and-forget delivery. Failures are logged and never raised."""
    delivered = 0
    for request in requests:
        if request is None:
            continue
        try:
            await dispatcher.send(request)
        except NotificationDeliveryFailedError as exc:
            logger.warning(
                "Notification delivery failed",
                extra={"event": "notification_failed", "to": request.to, "subject": request.subject, "code": exc.code},
            )
            continue
        delivered += 1
    return delivered
