"""Prometheus metrics for fleetwatch.

All collectors live on the default registry and are served by the REST API
at ``/metrics``.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

# --- Discovery ---------------------------------------------------------------

discovery_cycles_total = Counter(
    "fleetwatch_discovery_cycles_total",
    "Discovery reconciliation cycles by outcome.",
    ["outcome"],  # success | query_error | publish_error
)

discovery_ticks_skipped_total = Counter(
    "fleetwatch_discovery_ticks_skipped_total",
    "Ticks skipped because the previous cycle was still running.",
)

discovery_targets = Gauge(
    "fleetwatch_discovery_targets",
    "Number of targets in the last published target set.",
)

discovery_last_success_timestamp = Gauge(
    "fleetwatch_discovery_last_success_timestamp_seconds",
    "Unix time of the last successful discovery cycle.",
)

# --- Alerting ----------------------------------------------------------------

alerts_received_total = Counter(
    "fleetwatch_alerts_received_total",
    "Alert events accepted for processing.",
    ["status"],
)

alerts_malformed_total = Counter(
    "fleetwatch_alerts_malformed_total",
    "Alert events rejected because they failed validation.",
)

alert_groups_active = Gauge(
    "fleetwatch_alert_groups_active",
    "Notification groups currently held by the engine.",
)

alerts_inhibited = Gauge(
    "fleetwatch_alerts_inhibited",
    "Alerts currently suppressed by an inhibition rule.",
)

# --- Notifications -------------------------------------------------------------

notifications_total = Counter(
    "fleetwatch_notifications_total",
    "Notification delivery attempts by receiver, channel and outcome.",
    ["receiver", "channel", "success"],
)

notifications_dropped_total = Counter(
    "fleetwatch_notifications_dropped_total",
    "Notifications silently dropped because the receiver has no channels.",
    ["receiver"],
)
