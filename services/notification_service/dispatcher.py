"""
Outbound notification delivery.

The mailer itself lives outside this system. HttpNotificationDispatcher hands
the rendered message to it over HTTP; LoggingNotificationDispatcher is used
when no NOTIFY_URL is configured. Errors are raised to the caller (the outbox
runner), which records and logs them.
"""
from typing import Protocol

import httpx
import structlog

from shared.config.settings import NOTIFY_TIMEOUT_SECONDS, NOTIFY_URL
from shared.security.api_key import INTERNAL_API_KEY
from .templates import RenderedNotification

logger = structlog.get_logger(__name__)


class NotificationDispatcher(Protocol):
    async def send(self, message: RenderedNotification) -> None: ...


class LoggingNotificationDispatcher:
    async def send(self, message: RenderedNotification) -> None:
        logger.info(
            "notification_logged",
            notification_event=message.event.value,
            order_id=message.order_id,
            recipient=message.recipient,
            subject=message.subject,
        )


class HttpNotificationDispatcher:
    def __init__(self, url: str, timeout: float = NOTIFY_TIMEOUT_SECONDS, transport: httpx.AsyncBaseTransport | None = None):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def send(self, message: RenderedNotification) -> None:
        payload = {
            "event": message.event.value,
            "order_id": message.order_id,
            "to": message.recipient,
            "subject": message.subject,
            "body": message.body,
            "channels": ["email"],
        }
        headers = {"X-Internal-API-Key": INTERNAL_API_KEY}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.post(self.url, json=payload, headers=headers)
            resp.raise_for_status()
        logger.info(
            "notification_sent",
            notification_event=message.event.value,
            order_id=message.order_id,
            recipient=message.recipient,
        )


def build_dispatcher() -> NotificationDispatcher:
    if NOTIFY_URL:
        return HttpNotificationDispatcher(NOTIFY_URL)
    return LoggingNotificationDispatcher()
