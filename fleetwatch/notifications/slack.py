"""Slack incoming-webhook notification channel for fleetwatch.

Renders one attachment per notification. Title, colour and text are
Alertmanager-style templates (see ``fleetwatch.alerting.templates``); the
defaults give a ``FIRING: <alertname>`` title, danger/good colouring by
status and one block of text per alert with its name, severity, instance
and description.
"""

from __future__ import annotations

import httpx
import structlog

from fleetwatch.alerting.templates import NotificationTemplate, template_data
from fleetwatch.models.alerts import ALERTNAME_LABEL, AlertStatus, Notification, NotifiedAlert
from fleetwatch.notifications.manager import NotificationChannel

_log = structlog.get_logger(component="notifications.slack")

_COLOR_FIRING = "danger"
_COLOR_RESOLVED = "good"
_DEFAULT_TITLE = '{{ .Status | toUpper }}: {{ .CommonLabels.alertname | default "multiple alerts" }}'
# Slack truncates attachments beyond this many characters.
_MAX_TEXT = 7000


class SlackNotificationChannel(NotificationChannel):
    """Posts notifications to a Slack incoming webhook.

    Args:
        webhook_url: Incoming-webhook URL.
        channel:     Channel override (``#alerts``); webhook default when empty.
        username:    Display name of the poster.
        title:       Title template.
        color:       Colour template, applied for every status; danger/good
                     by status when empty or when it renders empty.
        text:        Text template; the built-in per-alert block when empty.
        timeout:     HTTP request timeout in seconds.
        transport:   Optional httpx transport (tests use httpx.MockTransport).

    Raises:
        ValueError: empty URL or an unsupported template.
    """

    def __init__(
        self,
        webhook_url: str,
        channel: str = "",
        username: str = "fleetwatch",
        title: str = "",
        color: str = "",
        text: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not webhook_url:
            raise ValueError("Slack webhook url must not be empty")
        self._url = webhook_url
        self._channel = channel
        self._username = username
        self._title = NotificationTemplate(title or _DEFAULT_TITLE)
        self._color = NotificationTemplate(color) if color else None
        self._text = NotificationTemplate(text) if text else None
        self._timeout = timeout
        self._transport = transport

    @property
    def channel_name(self) -> str:
        return "slack"

    async def send(self, notification: Notification) -> bool:
        try:
            payload = self.build_payload(notification)
        except Exception as exc:  # noqa: BLE001
            _log.error("slack_payload_render_failed", error=str(exc), group_key=notification.group_key)
            return False
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json=payload)
                if response.is_success:
                    return True
                _log.warning(
                    "slack_non_2xx_response",
                    status_code=response.status_code,
                    body=response.text[:200],
                    group_key=notification.group_key,
                )
                return False
        except httpx.TimeoutException:
            _log.warning("slack_request_timeout", group_key=notification.group_key)
            return False
        except httpx.HTTPError as exc:
            _log.warning("slack_http_error", error=str(exc), group_key=notification.group_key)
            return False

    def build_payload(self, notification: Notification) -> dict[str, object]:
        data = template_data(notification)
        title = self._title.render(data).strip()
        color = self._color.render(data).strip() if self._color is not None else ""
        if not color:
            color = _COLOR_FIRING if notification.status == AlertStatus.FIRING else _COLOR_RESOLVED
        if self._text is not None:
            text = self._text.render(data).strip()
        else:
            text = "\n\n".join(_alert_text(a) for a in notification.alerts)
        text = text[:_MAX_TEXT]

        payload: dict[str, object] = {
            "username": self._username,
            "attachments": [
                {
                    "fallback": title,
                    "color": color,
                    "title": title,
                    "text": text,
                    "mrkdwn_in": ["text"],
                }
            ],
        }
        if self._channel:
            payload["channel"] = self._channel
        return payload


def _alert_text(alert: NotifiedAlert) -> str:
    description = (
        alert.annotations.get("description")
        or alert.annotations.get("summary")
        or "No description"
    )
    lines = [
        f"*Alert:* {alert.labels.get(ALERTNAME_LABEL, '')}",
        f"*Status:* {alert.status.value}",
        f"*Severity:* {alert.labels.get('severity', 'info')}",
        f"*Instance:* {alert.labels.get('instance', 'N/A')}",
        f"*Description:* {description}",
    ]
    return "\n".join(lines)
