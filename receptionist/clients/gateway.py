"""
Email and SMS delivery over HTTP.

SMS goes through the Telnyx messages REST API; email goes through a
configurable HTTP mail endpoint. Each send raises
NotificationDeliveryError on failure so callers can treat channels
independently.
"""

import logging
from typing import Any, Optional, Protocol

import httpx

from receptionist.config import NotificationConfig, settings

logger = logging.getLogger(__name__)


class NotificationDeliveryError(Exception):
    """Raised when a channel is unconfigured or the provider rejects a send."""


class NotificationGateway(Protocol):
    async def send_email(self, to: str, subject: str, body: str) -> None:
        ...

    async def send_sms(self, to: str, message: str) -> None:
        ...


class HttpNotificationGateway:
    """NotificationGateway that talks to the providers with httpx."""

    def __init__(
        self,
        config: Optional[NotificationConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._config = config or settings.notifications
        self._client = client

    async def send_sms(self, to: str, message: str) -> None:
        if not self._config.telnyx_api_key or not self._config.telnyx_from_number:
            raise NotificationDeliveryError(
                "SMS not configured (missing TELNYX_API_KEY or TELNYX_FROM_NUMBER)"
            )
        await self._post(
            self._config.telnyx_api_url,
            headers={"Authorization": f"Bearer {self._config.telnyx_api_key}"},
            payload={"from": self._config.telnyx_from_number, "to": to, "text": message},
        )
        logger.info("SMS sent to %s", to)

    async def send_email(self, to: str, subject: str, body: str) -> None:
        if not self._config.mail_api_url:
            raise NotificationDeliveryError("Email not configured (missing MAIL_API_URL)")
        headers = {}
        if self._config.mail_api_key:
            headers["Authorization"] = f"Bearer {self._config.mail_api_key}"
        await self._post(
            self._config.mail_api_url,
            headers=headers,
            payload={
                "from": self._config.mail_from_address,
                "to": to,
                "subject": subject,
                "text": body,
            },
        )
        logger.info("Email sent to %s", to)

    async def _post(self, url: str, headers: dict[str, str], payload: dict[str, Any]) -> None:
        try:
            if self._client is not None:
                response = await self._client.post(
                    url, headers=headers, json=payload, timeout=self._config.timeout_sec
                )
            else:
                async with httpx.AsyncClient(timeout=self._config.timeout_sec) as client:
                    response = await client.post(url, headers=headers, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationDeliveryError(
                f"{url} returned {e.response.status_code}: {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(f"{url} request failed: {e}") from e
