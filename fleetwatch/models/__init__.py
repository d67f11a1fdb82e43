"""Core data structures for fleetwatch."""

from fleetwatch.models.alerts import (
    ALERTNAME_LABEL,
    AlertEvent,
    AlertRecord,
    AlertStatus,
    GroupState,
    Notification,
    NotificationGroup,
    NotifiedAlert,
    fingerprint,
)
from fleetwatch.models.config import FleetWatchConfig, ReceiverConfig
from fleetwatch.models.targets import TargetDescriptor, TaskDescriptor

__all__ = [
    "ALERTNAME_LABEL",
    "AlertEvent",
    "AlertRecord",
    "AlertStatus",
    "FleetWatchConfig",
    "GroupState",
    "Notification",
    "NotificationGroup",
    "NotifiedAlert",
    "ReceiverConfig",
    "TargetDescriptor",
    "TaskDescriptor",
    "fingerprint",
]
