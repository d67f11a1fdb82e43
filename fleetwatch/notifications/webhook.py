"""Generic JSON webhook notification channel for fleetwatch.

Posts the notification payload (``status``, ``groupKey``, ``commonLabels``,
``alerts`` ...) as a JSON body to any configured HTTP endpoint. The schema
follows the Alertmanager webhook format so existing consumers can parse it.
"""

from __future__ import annotations

import httpx
import structlog

from fleetwatch.models.alerts import Notification
from fleetwatch.notifications.manager import NotificationChannel

_log = structlog.get_logger(component="notifications.webhook")

_PAYLOAD_VERSION = "4"


class WebhookNotificationChannel(NotificationChannel):
    """Delivers notifications by POSTing a JSON payload to a configurable URL.

    Args:
        url:       Full endpoint URL (must be HTTPS in production).
        headers:   Optional extra headers (e.g. Authorization).
        timeout:   HTTP request timeout in seconds. Defaults to 10.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url:
            raise ValueError("Webhook url must not be empty")
        self._url = url
        self._headers = headers or {}
        self._timeout = timeout
        self._transport = transport

    @property
    def channel_name(self) -> str:
        return "webhook"

    async def send(self, notification: Notification) -> bool:
        """POST *notification* as JSON to the configured endpoint.

        Returns True on 2xx response, False otherwise.
        """
        payload = self._build_payload(notification)
        request_headers = {
            "Content-Type": "application/json",
            **self._headers,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self._url,
                    json=payload,
                    headers=request_headers,
                )
                if response.is_success:
                    return True
                _log.warning(
                    "webhook_non_2xx_response",
                    status_code=response.status_code,
                    body=response.text[:200],
                    group_key=notification.group_key,
                )
                return False
        except httpx.TimeoutException:
            _log.warning("webhook_request_timeout", group_key=notification.group_key, url=self._url)
            return False
        except httpx.HTTPError as exc:
            _log.warning("webhook_http_error", error=str(exc), group_key=notification.group_key)
            return False

    def _build_payload(self, notification: Notification) -> dict[str, object]:
        return {"version": _PAYLOAD_VERSION, **notification.to_payload()}
