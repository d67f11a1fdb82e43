"""Alert routing engine.

Submodules:
    matchers       -- Equality and anchored-regex label matchers.
    routing        -- RouteNode tree and depth-first route evaluation.
    inhibition     -- InhibitionRule / Inhibitor.
    timers         -- Min-heap deadline queue for group timers.
    grouping       -- AlertEngine: dedup, grouping and the group timing state machine.
    ingest         -- Validation of raw events into AlertEvents.
    config_loader  -- YAML routing configuration (alertmanager.yml layout).
"""

from fleetwatch.alerting.config_loader import (
    NULL_RECEIVER,
    RoutingConfig,
    RoutingConfigError,
    default_routing_config,
    load_routing_config,
    parse_routing_config,
)
from fleetwatch.alerting.grouping import AlertEngine
from fleetwatch.alerting.inhibition import InhibitionRule, Inhibitor
from fleetwatch.alerting.ingest import MalformedEventError, parse_alert_batch, parse_alert_event
from fleetwatch.alerting.matchers import Matcher
from fleetwatch.alerting.routing import RouteNode

__all__ = [
    "NULL_RECEIVER",
    "AlertEngine",
    "InhibitionRule",
    "Inhibitor",
    "MalformedEventError",
    "Matcher",
    "RouteNode",
    "RoutingConfig",
    "RoutingConfigError",
    "default_routing_config",
    "load_routing_config",
    "parse_alert_batch",
    "parse_alert_event",
    "parse_routing_config",
]
