"""
Best-effort notification fan-out.

Sends never block or fail the operation that triggered them: the
dispatcher schedules each send as a background task, keeps a reference
until it finishes, and logs failures. ``drain()`` waits for everything in
flight (shutdown, tests).
"""
import asyncio
import logging
from typing import Any, Optional, Protocol

import httpx

from dispatch.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

ADMIN_RECIPIENT = "role:admin"


class GatewayError(Exception):
    pass


class NotificationSink(Protocol):
    async def send(self, recipient_id: str, event: str, data: dict[str, Any]) -> None: ...


class LoggingSink:
    """Default sink when no gateway is configured."""

    async def send(self, recipient_id: str, event: str, data: dict[str, Any]) -> None:
        logger.info("notify recipient=%s event=%s data=%s", recipient_id, event, data)


class HttpGatewaySink:
    """Posts notifications to the push/email gateway."""

    def __init__(self, base_url: str, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.gateway_timeout_seconds
        self._transport = transport

    async def send(self, recipient_id: str, event: str, data: dict[str, Any]) -> None:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(
                f"{self.base_url}/notifications",
                json={"recipient_id": recipient_id, "event": event, "data": data},
            )
        if resp.status_code >= 400:
            raise GatewayError(f"Gateway error {resp.status_code}: {resp.text}")


class NotificationDispatcher:
    def __init__(self, sink: Optional[NotificationSink] = None):
        self.sink = sink or LoggingSink()
        self._pending: set[asyncio.Task] = set()

    def notify(self, recipient_id: str, event: str, data: dict[str, Any]) -> None:
        task = asyncio.create_task(self._deliver(recipient_id, event, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def notify_admins(self, event: str, data: dict[str, Any]) -> None:
        self.notify(ADMIN_RECIPIENT, event, data)

    async def _deliver(self, recipient_id: str, event: str, data: dict[str, Any]) -> None:
        try:
            await self.sink.send(recipient_id, event, data)
        except Exception as exc:
            logger.error("Notification %s to %s failed: %s", event, recipient_id, exc)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending))


def build_sink() -> NotificationSink:
    if settings.notification_gateway_url:
        return HttpGatewaySink(settings.notification_gateway_url)
    return LoggingSink()
