"""Grouping, deduplication and the group timing state machine.

``AlertEngine`` owns every NotificationGroup. Per group::

    PENDING --(second alert joins)--> GROUPED
    PENDING/GROUPED --(group_wait expires)--> NOTIFIED
    NOTIFIED --(tick every group_interval)--> NOTIFIED   (send on change or repeat_interval)
    any --(all members resolved, final notification sent)--> RESOLVED (torn down)

Alerts are deduplicated by fingerprint: re-sent events replace the stored
event of the same alert instance. An alert that resolves before its group's
first deadline keeps the deadline; the first notification then reports it as
resolved (if the receiver sends resolved notifications) instead of being
cancelled.

All mutation happens on the event loop thread, so per-group state needs no
locks. Route matching is a pure function of the immutable routing tree.
"""

from __future__ import annotations

import asyncio
import hashlib
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

import structlog

from fleetwatch.alerting.config_loader import RoutingConfig
from fleetwatch.alerting.inhibition import Inhibitor
from fleetwatch.alerting.routing import RouteNode
from fleetwatch.alerting.timers import TimerQueue
from fleetwatch.models.alerts import (
    AlertEvent,
    AlertRecord,
    AlertStatus,
    GroupState,
    Notification,
    NotificationGroup,
    NotifiedAlert,
)
from fleetwatch.observability.metrics import (
    alert_groups_active,
    alerts_inhibited,
    alerts_received_total,
)

_log = structlog.get_logger(component="alerting.grouping")

Dispatch = Callable[[Notification], None]


class AlertEngine:
    """Routes, groups, inhibits and times alert notifications.

    Args:
        config:   Validated routing configuration.
        dispatch: Called with every notification that is due. Must not block.
        clock:    Wall-clock source (tests pin it).
    """

    def __init__(
        self,
        config: RoutingConfig,
        dispatch: Dispatch,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._inhibitor = Inhibitor(config.inhibit_rules)
        self._dispatch = dispatch
        self._clock = clock or (lambda: datetime.now(tz=UTC))
        self._groups: dict[str, NotificationGroup] = {}
        self._routes: dict[str, RouteNode] = {}
        self._timers = TimerQueue()
        self._runner: asyncio.Task[None] | None = None

    @property
    def config(self) -> RoutingConfig:
        return self._config

    def groups(self) -> list[NotificationGroup]:
        return list(self._groups.values())

    def group(self, group_key: str) -> NotificationGroup | None:
        return self._groups.get(group_key)

    def next_deadline(self, group_key: str) -> datetime | None:
        return self._timers.deadline(group_key)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest(self, event: AlertEvent, now: datetime | None = None) -> list[str]:
        """Add or update *event*; returns the keys of the groups holding it."""
        now = now or self._clock()
        alerts_received_total.labels(status=event.status.value).inc()
        fp = event.fingerprint
        labels = event.label_set
        routes = self._config.route.match(labels)

        keys: list[str] = []
        for route in routes:
            key = route.group_key(labels)
            group = self._groups.get(key)
            if event.status == AlertStatus.RESOLVED and (group is None or fp not in group.members):
                # Nothing was ever held for this instance under this route.
                _log.debug("resolved_alert_unknown", fingerprint=fp, alertname=event.alert_name)
                continue
            if group is None:
                group = self._create_group(key, route, labels, now)
            self._add_record(group, AlertRecord(event=event, received_at=now), now)
            keys.append(key)

        self._refresh_inhibition(now)
        return keys

    def _create_group(
        self,
        key: str,
        route: RouteNode,
        labels: dict[str, str],
        now: datetime,
    ) -> NotificationGroup:
        deadline = now + route.group_wait
        group = NotificationGroup(
            group_key=key,
            receiver=route.receiver,
            group_labels=route.group_labels(labels),
            first_seen_at=now,
            pending_deadline=deadline,
        )
        self._groups[key] = group
        self._routes[key] = route
        self._timers.schedule(key, deadline)
        alert_groups_active.set(len(self._groups))
        _log.info(
            "group_created",
            group_key=key,
            receiver=route.receiver,
            flush_at=deadline.isoformat(),
        )
        return group

    def _add_record(self, group: NotificationGroup, record: AlertRecord, now: datetime) -> None:
        fp = record.fingerprint
        existing = group.members.get(fp)
        if existing is not None:
            # Same alert instance re-emitted: keep the notification history.
            record.notified_status = existing.notified_status
            record.inhibited = existing.inhibited
            if (
                existing.event.status != record.event.status
                and group.state in (GroupState.PENDING, GroupState.GROUPED)
            ):
                _log.info(
                    "pending_notification_recomputed",
                    group_key=group.group_key,
                    fingerprint=fp,
                    status=record.event.status.value,
                    flush_at=group.pending_deadline.isoformat() if group.pending_deadline else None,
                )
        group.members[fp] = record
        if group.state == GroupState.PENDING and len(group.members) > 1:
            group.state = GroupState.GROUPED

    # ------------------------------------------------------------------
    # Inhibition
    # ------------------------------------------------------------------

    def _firing_label_sets(self, now: datetime) -> dict[str, dict[str, str]]:
        timeout = self._config.resolve_timeout
        firing: dict[str, dict[str, str]] = {}
        for group in self._groups.values():
            for fp, record in group.members.items():
                if not record.is_resolved(now, timeout):
                    firing[fp] = record.event.label_set
        return firing

    def _refresh_inhibition(self, now: datetime) -> None:
        """Recompute every member's inhibited flag against the firing set."""
        firing = self._firing_label_sets(now)
        muted = self._inhibitor.inhibited(firing)
        for group in self._groups.values():
            for fp, record in group.members.items():
                if fp not in firing:
                    # A resolved alert keeps the flag it resolved with.
                    continue
                was = record.inhibited
                record.inhibited = fp in muted
                if record.inhibited != was:
                    _log.info(
                        "alert_inhibited" if record.inhibited else "alert_uninhibited",
                        group_key=group.group_key,
                        fingerprint=fp,
                        alertname=record.event.alert_name,
                        source_fingerprint=muted.get(fp, ""),
                    )
        alerts_inhibited.set(len(muted))

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    def flush_due(self, now: datetime | None = None) -> list[Notification]:
        """Flush every group whose timer expired; dispatch and return notifications."""
        now = now or self._clock()
        due = self._timers.pop_due(now)
        if not due:
            return []
        self._refresh_inhibition(now)
        sent: list[Notification] = []
        for key in due:
            group = self._groups.get(key)
            if group is None:
                continue
            notification = self._flush(group, now)
            if notification is not None:
                sent.append(notification)
                self._dispatch(notification)
        alert_groups_active.set(len(self._groups))
        return sent

    def _flush(self, group: NotificationGroup, now: datetime) -> Notification | None:
        route = self._routes[group.group_key]
        receiver = self._config.receiver(group.receiver)
        timeout = self._config.resolve_timeout

        payload: list[NotifiedAlert] = []
        for fp, record in sorted(group.members.items(), key=lambda kv: (kv[1].event.starts_at, kv[0])):
            resolved = record.is_resolved(now, timeout)
            if record.inhibited:
                continue
            if resolved and not receiver.send_resolved:
                continue
            event = record.event
            payload.append(
                NotifiedAlert(
                    status=AlertStatus.RESOLVED if resolved else AlertStatus.FIRING,
                    labels=event.label_set,
                    annotations=dict(event.annotations),
                    starts_at=event.starts_at,
                    ends_at=record.resolved_at(now, timeout) if resolved else event.ends_at,
                    fingerprint=fp,
                )
            )

        any_firing = any(a.status == AlertStatus.FIRING for a in payload)
        digest = _payload_digest(payload)
        first = group.last_notified_at is None
        repeat_due = (
            group.last_notified_at is not None
            and now - group.last_notified_at >= route.repeat_interval
        )
        should_send = bool(payload) and (
            first or digest != group.last_payload_digest or (any_firing and repeat_due)
        )

        notification: Notification | None = None
        if should_send:
            notification = _build_notification(group, payload, any_firing)
            group.last_notified_at = now
            group.state = GroupState.NOTIFIED
            for alert in payload:
                group.members[alert.fingerprint].notified_status = alert.status
            _log.info(
                "group_notified",
                group_key=group.group_key,
                receiver=group.receiver,
                status=notification.status.value,
                firing=len(notification.firing),
                resolved=len(notification.resolved),
            )

        # Resolved members have been reported (or never will be); drop them.
        for fp in [fp for fp, r in group.members.items() if r.is_resolved(now, timeout)]:
            del group.members[fp]
        if should_send:
            group.last_payload_digest = _payload_digest(
                [a for a in payload if a.status == AlertStatus.FIRING]
            )
        group.pending_deadline = None

        if not group.members:
            self._teardown(group)
        else:
            self._timers.schedule(group.group_key, now + route.group_interval)
        return notification

    def _teardown(self, group: NotificationGroup) -> None:
        group.state = GroupState.RESOLVED
        self._groups.pop(group.group_key, None)
        self._routes.pop(group.group_key, None)
        self._timers.cancel(group.group_key)
        _log.info("group_resolved", group_key=group.group_key, receiver=group.receiver)

    # ------------------------------------------------------------------
    # Reload
    # ------------------------------------------------------------------

    def reload(self, config: RoutingConfig, now: datetime | None = None) -> None:
        """Swap in a new routing configuration.

        Groups whose route is equivalent in the new tree (same key, receiver
        and group_by) keep their state and timers; every other alert is
        regrouped under the new tree with a fresh ``group_wait``.
        """
        now = now or self._clock()
        old_groups = self._groups
        old_routes = self._routes
        old_members = {key: dict(g.members) for key, g in old_groups.items()}

        latest: dict[str, AlertRecord] = {}
        for group in old_groups.values():
            for fp, record in group.members.items():
                if fp not in latest or record.received_at > latest[fp].received_at:
                    latest[fp] = record

        self._config = config
        self._inhibitor = Inhibitor(config.inhibit_rules)
        self._groups = {}
        self._routes = {}

        kept: set[str] = set()
        for fp, record in latest.items():
            labels = record.event.label_set
            for route in config.route.match(labels):
                key = route.group_key(labels)
                group = self._groups.get(key)
                if group is None:
                    previous = old_groups.get(key)
                    if previous is not None and old_routes[key].equivalent_to(route):
                        previous.members = {}
                        previous.receiver = route.receiver
                        self._groups[key] = previous
                        self._routes[key] = route
                        group = previous
                        kept.add(key)
                    else:
                        group = self._create_group(key, route, labels, now)
                carried = old_members[key].get(fp) if key in kept else None
                self._add_record(group, carried or _fresh_copy(record), now)

        for key in old_groups:
            if key not in self._groups:
                self._timers.cancel(key)

        self._refresh_inhibition(now)
        alert_groups_active.set(len(self._groups))
        _log.info(
            "alert_engine_reloaded",
            source=config.source,
            groups=len(self._groups),
            groups_kept=len(kept),
        )

    # ------------------------------------------------------------------
    # Timer loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            try:
                self.flush_due()
            except Exception as exc:
                _log.error("group_flush_failed", error=str(exc), exc_info=True)
            await self._timers.wait(self._clock())

    async def start(self) -> None:
        if self._runner is None:
            self._runner = asyncio.create_task(self._run(), name="alert-engine")
            _log.info("alert_engine_started", receivers=sorted(self._config.receivers))

    async def stop(self) -> None:
        if self._runner is not None:
            self._runner.cancel()
            await asyncio.gather(self._runner, return_exceptions=True)
            self._runner = None
            _log.info("alert_engine_stopped", groups=len(self._groups))


def _fresh_copy(record: AlertRecord) -> AlertRecord:
    return AlertRecord(event=record.event, received_at=record.received_at)


def _payload_digest(alerts: Iterable[NotifiedAlert]) -> str:
    h = hashlib.sha256()
    for alert in alerts:
        h.update(f"{alert.fingerprint}:{alert.status.value};".encode())
    return h.hexdigest()


def _common(maps: list[dict[str, str]]) -> dict[str, str]:
    if not maps:
        return {}
    common = dict(maps[0])
    for m in maps[1:]:
        common = {k: v for k, v in common.items() if m.get(k) == v}
    return dict(sorted(common.items()))


def _build_notification(
    group: NotificationGroup,
    payload: list[NotifiedAlert],
    any_firing: bool,
) -> Notification:
    return Notification(
        receiver=group.receiver,
        group_key=group.group_key,
        status=AlertStatus.FIRING if any_firing else AlertStatus.RESOLVED,
        group_labels=dict(group.group_labels),
        common_labels=_common([a.labels for a in payload]),
        common_annotations=_common([a.annotations for a in payload]),
        alerts=tuple(payload),
    )
