"""Notification dispatcher for fleetwatch.

NotificationChannel    -- ABC every channel must implement.
NotificationDispatcher -- Delivers each Notification to the channels of its
                          receiver in background tasks, retrying failed
                          deliveries with exponential backoff. A slow or
                          failing receiver never holds up another receiver
                          or another group.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections import Counter as _Tally
from collections.abc import Awaitable, Callable

import structlog

from fleetwatch.models.alerts import Notification
from fleetwatch.observability.metrics import notifications_dropped_total, notifications_total

_log = structlog.get_logger(component="notifications.manager")

_DRAIN_TIMEOUT_SECONDS = 15.0


class NotificationChannel(ABC):
    """Abstract base class for all notification channels.

    Every concrete channel must implement ``send``, which should be
    idempotent and not raise; it returns ``False`` instead of raising.
    """

    @property
    @abstractmethod
    def channel_name(self) -> str:
        """Human-readable channel identifier used in metrics and logs."""

    @abstractmethod
    async def send(self, notification: Notification) -> bool:
        """Deliver *notification* via this channel.

        Returns:
            True  -- message accepted by the remote endpoint.
            False -- delivery failed (already logged inside implementation).
        """


class NotificationDispatcher:
    """Routes notifications to receiver channels.

    * Never raises: exceptions from individual channels are caught and logged.
    * Never blocks the caller: ``dispatch`` schedules delivery as background
      asyncio tasks, one per channel.
    * Receivers without channels are null receivers: their notifications are
      dropped and counted.
    """

    def __init__(
        self,
        receivers: dict[str, list[NotificationChannel]],
        max_retries: int = 3,
        backoff_base: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._receivers = receivers
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._sleep = sleep
        self._inflight: set[asyncio.Task[bool]] = set()
        self._dropped: _Tally[str] = _Tally()

    @property
    def dropped(self) -> dict[str, int]:
        """Silently dropped notifications per null receiver."""
        return dict(self._dropped)

    @property
    def receivers(self) -> list[str]:
        return sorted(self._receivers)

    def replace_receivers(self, receivers: dict[str, list[NotificationChannel]]) -> None:
        """Swap channel wiring after a config reload; in-flight sends finish as-is."""
        self._receivers = receivers

    def dispatch(self, notification: Notification) -> None:
        """Schedule delivery of *notification* to every channel of its receiver."""
        channels = self._receivers.get(notification.receiver, [])
        if not channels:
            self._dropped[notification.receiver] += 1
            notifications_dropped_total.labels(receiver=notification.receiver).inc()
            _log.debug(
                "notification_dropped_null_receiver",
                receiver=notification.receiver,
                group_key=notification.group_key,
                status=notification.status.value,
                alerts=len(notification.alerts),
            )
            return
        for channel in channels:
            task = asyncio.ensure_future(self._send_with_retry(channel, notification))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _send_with_retry(self, channel: NotificationChannel, notification: Notification) -> bool:
        """Deliver to a single channel, retrying with exponential backoff."""
        attempts = self._max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                success = await channel.send(notification)
            except Exception as exc:  # noqa: BLE001
                _log.error(
                    "notification_channel_unexpected_error",
                    receiver=notification.receiver,
                    channel=channel.channel_name,
                    group_key=notification.group_key,
                    error=str(exc),
                )
                success = False

            label = "true" if success else "false"
            notifications_total.labels(
                receiver=notification.receiver,
                channel=channel.channel_name,
                success=label,
            ).inc()

            if success:
                _log.info(
                    "notification_sent",
                    receiver=notification.receiver,
                    channel=channel.channel_name,
                    group_key=notification.group_key,
                    status=notification.status.value,
                    alerts=len(notification.alerts),
                    attempt=attempt,
                )
                return True

            if attempt < attempts:
                delay = self._backoff_base * (2 ** (attempt - 1))
                _log.warning(
                    "notification_retry_scheduled",
                    receiver=notification.receiver,
                    channel=channel.channel_name,
                    group_key=notification.group_key,
                    attempt=attempt,
                    delay_seconds=delay,
                )
                await self._sleep(delay)

        _log.error(
            "notification_delivery_failed",
            receiver=notification.receiver,
            channel=channel.channel_name,
            group_key=notification.group_key,
            attempts=attempts,
        )
        return False

    async def drain(self, timeout: float = _DRAIN_TIMEOUT_SECONDS) -> None:
        """Wait for in-flight deliveries, cancelling whatever is left after *timeout*."""
        if not self._inflight:
            return
        pending = set(self._inflight)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            _log.warning("notifications_abandoned_on_shutdown", count=len(still_running))

    async def stop(self) -> None:
        await self.drain()
