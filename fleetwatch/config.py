"""Configuration loading from environment variables."""

from __future__ import annotations

import os
import re

from fleetwatch.models.config import (
    AlertingConfig,
    APIConfig,
    DiscoveryConfig,
    FleetWatchConfig,
    LogConfig,
    NotificationConfig,
    TargetLabelConfig,
)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"FLEETWATCH_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float) -> float:
    return float(_env(key, str(default)))


def _validate_label_value(key: str, value: str) -> str:
    if not value:
        raise ValueError(f"FLEETWATCH_{key} must not be empty")
    return value


def _validate_region(value: str) -> str:
    if not re.match(r"^[a-z]{2}(-[a-z]+)+-[0-9]+$", value):
        raise ValueError(f"Invalid AWS region: {value}")
    return value


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def load_config() -> FleetWatchConfig:
    """Load configuration from FLEETWATCH_* environment variables."""
    discovery_enabled = _env_bool("DISCOVERY_ENABLED", True)
    cluster = _env("CLUSTER", "")
    if discovery_enabled and not cluster:
        raise ValueError("FLEETWATCH_CLUSTER is required when discovery is enabled")

    return FleetWatchConfig(
        discovery=DiscoveryConfig(
            enabled=discovery_enabled,
            cluster=cluster,
            service_name=_env("SERVICE_NAME", ""),
            region=_validate_region(_env("REGION", os.environ.get("AWS_REGION", "us-east-1"))),
            interval_seconds=_env_int("DISCOVERY_INTERVAL", 60, min_val=5, max_val=3600),
            targets_file=_env("TARGETS_FILE", "/etc/prometheus/targets/workload.json"),
            target_port=_env_int("TARGET_PORT", 9080, min_val=1, max_val=65535),
            container_name=_env("CONTAINER_NAME", ""),
        ),
        target_labels=TargetLabelConfig(
            job=_validate_label_value("JOB_LABEL", _env("JOB_LABEL", "workload")),
            environment=_validate_label_value("ENVIRONMENT", _env("ENVIRONMENT", "production")),
            deployment_type=_validate_label_value("DEPLOYMENT_TYPE", _env("DEPLOYMENT_TYPE", "elastic")),
        ),
        alerting=AlertingConfig(
            routing_config_path=_env("ROUTING_CONFIG", ""),
        ),
        notifications=NotificationConfig(
            timeout_seconds=_env_float("NOTIFY_TIMEOUT", 10.0),
            max_retries=_env_int("NOTIFY_MAX_RETRIES", 3, min_val=0, max_val=10),
            backoff_base_seconds=_env_float("NOTIFY_BACKOFF_BASE", 1.0),
        ),
        api=APIConfig(
            port=_env_int("API_PORT", 9094, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
