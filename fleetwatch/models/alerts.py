"""Alert, group and notification data structures."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

ALERTNAME_LABEL = "alertname"


class AlertStatus(StrEnum):
    """Status reported by the rule evaluator."""

    FIRING = "firing"
    RESOLVED = "resolved"


class GroupState(StrEnum):
    """Lifecycle of a notification group."""

    PENDING = "pending"
    GROUPED = "grouped"
    NOTIFIED = "notified"
    RESOLVED = "resolved"


def fingerprint(alert_name: str, labels: dict[str, str]) -> str:
    """Deterministic identity of an alert instance across re-evaluations.

    The ``alertname`` label, when present, is the alert name itself and is
    not hashed a second time.
    """
    h = hashlib.sha256()
    h.update(alert_name.encode("utf-8"))
    for key in sorted(labels):
        if key == ALERTNAME_LABEL:
            continue
        h.update(b"\xff")
        h.update(key.encode("utf-8"))
        h.update(b"\xfe")
        h.update(labels[key].encode("utf-8"))
    return h.hexdigest()[:16]


@dataclass(frozen=True)
class AlertEvent:
    """Canonical alert signal received from the rule evaluator.

    Immutable: a later event with the same fingerprint supersedes it.
    """

    alert_name: str
    labels: dict[str, str]
    annotations: dict[str, str]
    starts_at: datetime
    status: AlertStatus = AlertStatus.FIRING
    ends_at: datetime | None = None

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.alert_name, self.labels)

    @property
    def label_set(self) -> dict[str, str]:
        """Labels used for routing and inhibition, ``alertname`` included."""
        return {**self.labels, ALERTNAME_LABEL: self.alert_name}


@dataclass
class AlertRecord:
    """Engine-side state of one alert instance inside a group."""

    event: AlertEvent
    received_at: datetime
    inhibited: bool = False
    # Status last reported to the receiver, None when never reported.
    notified_status: AlertStatus | None = None

    @property
    def fingerprint(self) -> str:
        return self.event.fingerprint

    def is_resolved(self, now: datetime, resolve_timeout: timedelta) -> bool:
        if self.event.status == AlertStatus.RESOLVED:
            return True
        if self.event.ends_at is not None:
            return self.event.ends_at <= now
        return self.received_at + resolve_timeout <= now

    def resolved_at(self, now: datetime, resolve_timeout: timedelta) -> datetime:
        if self.event.ends_at is not None:
            return self.event.ends_at
        if self.event.status == AlertStatus.RESOLVED:
            return self.received_at
        return min(now, self.received_at + resolve_timeout)


@dataclass
class NotificationGroup:
    """Alerts batched together for one receiver under one group key."""

    group_key: str
    receiver: str
    group_labels: dict[str, str]
    first_seen_at: datetime
    members: dict[str, AlertRecord] = field(default_factory=dict)
    state: GroupState = GroupState.PENDING
    last_notified_at: datetime | None = None
    pending_deadline: datetime | None = None
    # Digest of the last payload delivered, used to detect changes.
    last_payload_digest: str = ""


@dataclass(frozen=True)
class NotifiedAlert:
    """One alert as it appears in a notification payload."""

    status: AlertStatus
    labels: dict[str, str]
    annotations: dict[str, str]
    starts_at: datetime
    ends_at: datetime | None
    fingerprint: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
            "startsAt": self.starts_at.isoformat(),
            "endsAt": self.ends_at.isoformat() if self.ends_at else None,
            "fingerprint": self.fingerprint,
        }


@dataclass(frozen=True)
class Notification:
    """Routed, non-inhibited group content handed to a receiver."""

    receiver: str
    group_key: str
    status: AlertStatus
    group_labels: dict[str, str]
    common_labels: dict[str, str]
    common_annotations: dict[str, str]
    alerts: tuple[NotifiedAlert, ...]

    @property
    def firing(self) -> list[NotifiedAlert]:
        return [a for a in self.alerts if a.status == AlertStatus.FIRING]

    @property
    def resolved(self) -> list[NotifiedAlert]:
        return [a for a in self.alerts if a.status == AlertStatus.RESOLVED]

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "receiver": self.receiver,
            "groupKey": self.group_key,
            "groupLabels": dict(self.group_labels),
            "commonLabels": dict(self.common_labels),
            "commonAnnotations": dict(self.common_annotations),
            "alerts": [a.to_dict() for a in self.alerts],
        }
