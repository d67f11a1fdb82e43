"""Notification system for fleetwatch.

Delivers Notification payloads produced by the alert engine to the channels
configured for each receiver.

Exports:
    NotificationChannel        -- Abstract base for all channel implementations.
    NotificationDispatcher     -- Fans a notification out to its receiver's
                                  channels without blocking the engine.
    SlackNotificationChannel   -- Slack incoming-webhook channel.
    WebhookNotificationChannel -- Generic JSON POST webhook channel.
    build_receiver_channels       -- Channel wiring for a routing config.
    build_notification_dispatcher -- Factory used by the application bootstrap.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from fleetwatch.notifications.manager import NotificationChannel, NotificationDispatcher
from fleetwatch.notifications.slack import SlackNotificationChannel
from fleetwatch.notifications.webhook import WebhookNotificationChannel

if TYPE_CHECKING:
    from fleetwatch.alerting.config_loader import RoutingConfig
    from fleetwatch.models.config import NotificationConfig, SlackChannelConfig

_log = structlog.get_logger(component="notifications")

__all__ = [
    "NotificationChannel",
    "NotificationDispatcher",
    "SlackNotificationChannel",
    "WebhookNotificationChannel",
    "build_notification_dispatcher",
    "build_receiver_channels",
]


def _read_secret_file(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise ValueError(f"cannot read Slack api_url_file {path!r}: {exc}") from exc


def _slack_url(slack: SlackChannelConfig, routing: RoutingConfig) -> str:
    """Resolve the webhook URL: channel url, channel file, then the global pair."""
    if slack.api_url:
        return slack.api_url
    if slack.api_url_file:
        return _read_secret_file(slack.api_url_file)
    if routing.slack_api_url:
        return routing.slack_api_url
    if routing.slack_api_url_file:
        return _read_secret_file(routing.slack_api_url_file)
    raise ValueError("no Slack api_url configured for channel or in global")


def build_receiver_channels(
    routing: RoutingConfig,
    config: NotificationConfig,
) -> dict[str, list[NotificationChannel]]:
    """Instantiate the channels of every receiver in *routing*.

    A channel that cannot be built (unreadable secret, missing URL) is
    logged and skipped; the rest of the receiver keeps working. Receivers
    left without channels behave as null receivers.
    """
    receivers: dict[str, list[NotificationChannel]] = {}
    for name, receiver in routing.receivers.items():
        if receiver.is_null:
            receivers[name] = []
            _log.debug("null_receiver_configured", receiver=name)
            continue
        channels: list[NotificationChannel] = []

        for slack in receiver.slack_configs:
            try:
                channels.append(
                    SlackNotificationChannel(
                        webhook_url=_slack_url(slack, routing),
                        channel=slack.channel,
                        username=slack.username,
                        title=slack.title,
                        color=slack.color,
                        text=slack.text,
                        timeout=config.timeout_seconds,
                    )
                )
            except ValueError as exc:
                _log.warning("slack_channel_init_failed", receiver=name, error=str(exc))

        for hook in receiver.webhook_configs:
            try:
                channels.append(
                    WebhookNotificationChannel(
                        url=hook.url,
                        headers=dict(hook.headers),
                        timeout=config.timeout_seconds,
                    )
                )
            except ValueError as exc:
                _log.warning("webhook_channel_init_failed", receiver=name, error=str(exc))

        receivers[name] = channels

    enabled = {name: [c.channel_name for c in chans] for name, chans in receivers.items() if chans}
    _log.info("notification_receivers_configured", receivers=enabled)
    return receivers


def build_notification_dispatcher(
    routing: RoutingConfig,
    config: NotificationConfig,
) -> NotificationDispatcher:
    """Build a NotificationDispatcher wired to the receivers of *routing*."""
    return NotificationDispatcher(
        build_receiver_channels(routing, config),
        max_retries=config.max_retries,
        backoff_base=config.backoff_base_seconds,
    )
