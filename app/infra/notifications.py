"""
Notification Service

Hands booking outcome messages to the notification dispatcher over HTTP.
Delivery (email/SMS) is the dispatcher's job; this side is best effort:
failures are logged and reported as ``False``, never raised.
"""

import logging
from typing import Optional

import httpx

from app.config import get_settings

logger = logging.getLogger(__name__)


class NotificationService:
    """Posts ``{recipient, subject, body}`` to the dispatcher webhook."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: Optional[float] = None):
        """Initialize notification service.

        Args:
            webhook_url: Dispatcher endpoint (defaults to settings, unset disables sending)
            timeout: Request timeout in seconds
        """
        settings = get_settings()
        self.webhook_url = webhook_url or settings.notification_webhook_url
        self.timeout = timeout or settings.notification_timeout
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send(self, recipient: Optional[str], subject: str, body: str) -> bool:
        """Send one notification.

        Args:
            recipient: Email address or requester identifier
            subject: Message subject
            body: Message body

        Returns:
            True if the dispatcher accepted the message
        """
        if not recipient:
            logger.warning(f"Notification skipped, no recipient | Subject: {subject}")
            return False

        if not self.enabled:
            logger.info(f"Notification delivery disabled | To: {recipient} | Subject: {subject}")
            return False

        client = await self._get_client()
        try:
            response = await client.post(
                self.webhook_url,
                json={"recipient": recipient, "subject": subject, "body": body},
            )
            response.raise_for_status()
            logger.info(f"Notification sent | To: {recipient} | Subject: {subject}")
            return True

        except httpx.HTTPStatusError as e:
            logger.error(f"Notification rejected: {e.response.status_code} | To: {recipient}")
            return False
        except httpx.RequestError as e:
            logger.error(f"Notification request failed: {e} | To: {recipient}")
            return False


# Singleton instance
_notifier: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    """Get singleton NotificationService."""
    global _notifier
    if _notifier is None:
        _notifier = NotificationService()
    return _notifier


async def close_notification_service() -> None:
    """Close the singleton's HTTP client."""
    global _notifier
    if _notifier is not None:
        await _notifier.close()
        _notifier = None
