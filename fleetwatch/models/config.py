"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class DiscoveryConfig:
    """Target discovery configuration."""

    enabled: bool = True
    cluster: str = ""
    service_name: str = ""
    region: str = "us-east-1"
    interval_seconds: int = 60
    targets_file: str = "/etc/prometheus/targets/workload.json"
    target_port: int = 9080
    # Empty means "first container of the task".
    container_name: str = ""


@dataclass
class TargetLabelConfig:
    """Fixed labels stamped on every published target."""

    job: str = "workload"
    environment: str = "production"
    deployment_type: str = "elastic"


@dataclass
class AlertingConfig:
    """Alert routing configuration."""

    routing_config_path: str = ""


@dataclass
class NotificationConfig:
    """Notification delivery configuration."""

    timeout_seconds: float = 10.0
    max_retries: int = 3
    backoff_base_seconds: float = 1.0


@dataclass
class APIConfig:
    """REST API configuration."""

    port: int = 9094


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class FleetWatchConfig:
    """Top-level fleetwatch configuration."""

    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    target_labels: TargetLabelConfig = field(default_factory=TargetLabelConfig)
    alerting: AlertingConfig = field(default_factory=AlertingConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)


@dataclass(frozen=True)
class SlackChannelConfig:
    """One ``slack_configs`` entry of a receiver."""

    api_url: str = ""
    api_url_file: str = ""
    channel: str = ""
    username: str = "fleetwatch"
    title: str = ""
    color: str = ""
    text: str = ""


@dataclass(frozen=True)
class WebhookChannelConfig:
    """One ``webhook_configs`` entry of a receiver."""

    url: str
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ReceiverConfig:
    """A named notification target.

    A receiver with no channel configs is a null receiver: notifications
    routed to it are counted and dropped.
    """

    name: str
    send_resolved: bool = True
    slack_configs: tuple[SlackChannelConfig, ...] = ()
    webhook_configs: tuple[WebhookChannelConfig, ...] = ()

    @property
    def is_null(self) -> bool:
        return not self.slack_configs and not self.webhook_configs
