"""Pydantic response models for the fleetwatch REST API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error envelope returned by every failing endpoint."""

    error: str
    detail: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str


class CycleStatus(BaseModel):
    started_at: str
    outcome: str
    target_count: int
    published: bool
    error: str = ""


class DiscoveryStatus(BaseModel):
    enabled: bool
    targets_file: str = ""
    last_cycle: CycleStatus | None = None
    last_success_at: str | None = None


class AlertingStatus(BaseModel):
    config_source: str
    groups: int
    receivers: list[str]
    inhibit_rules: int
    dropped_notifications: dict[str, int] = Field(default_factory=dict)


class StatusResponse(BaseModel):
    version: str
    discovery: DiscoveryStatus
    alerting: AlertingStatus


class GroupMember(BaseModel):
    fingerprint: str
    alertname: str
    status: str
    inhibited: bool
    starts_at: str
    labels: dict[str, str]


class GroupView(BaseModel):
    group_key: str
    receiver: str
    state: str
    group_labels: dict[str, str]
    first_seen_at: str
    last_notified_at: str | None = None
    next_flush_at: str | None = None
    alerts: list[GroupMember]


class GroupsResponse(BaseModel):
    groups: list[GroupView]


class AlertsResponse(BaseModel):
    accepted: int
    rejected: int
    errors: list[str] = Field(default_factory=list)


class ReloadResponse(BaseModel):
    status: str = "reloaded"
    source: str
    receivers: list[str]
