"""
Notification sender.

Best-effort delivery to the notification service. Failures are logged and
never raised to the caller.
"""
import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from business_service.core.config import settings

logger = logging.getLogger("business_service.notifications")


class NotificationSender(Protocol):
    async def send_notification(
        self, template: str, channel: str, recipient: str, payload: Dict[str, Any]
    ) -> bool:
        ...


class HttpNotificationSender:
    """POSTs notifications as JSON to ``{NOTIFICATION_SERVICE_URL}/api/notification``."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.NOTIFICATION_SERVICE_URL
        self.timeout = timeout or settings.NOTIFICATION_TIMEOUT_SECONDS
        self._transport = transport

    async def send_notification(
        self, template: str, channel: str, recipient: str, payload: Dict[str, Any]
    ) -> bool:
        if not self.base_url:
            logger.warning("[notifications] NOTIFICATION_SERVICE_URL not set, dropping", extra={"template": template})
            return False

        url = f"{self.base_url.rstrip('/')}/api/notification"
        body = {
            "template": template,
            "channel": channel,
            "recipient": recipient,
            "payload": payload,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=body)
        except httpx.HTTPError as exc:
            logger.error(
                "[notifications] delivery failed",
                extra={"template": template, "channel": channel, "error": str(exc)},
            )
            return False

        if not response.is_success:
            logger.error(
                "[notifications] delivery rejected",
                extra={"template": template, "channel": channel, "status": response.status_code},
            )
            return False
        return True
