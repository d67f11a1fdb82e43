"""Alert ingestion: validate raw rule-evaluator payloads into AlertEvents.

Accepted shapes for a single event::

    {"alertName": "ServiceDown", "labels": {...}, "annotations": {...},
     "startsAt": "2026-01-01T00:00:00Z", "endsAt": null, "status": "firing"}

    {"labels": {"alertname": "ServiceDown", ...}, "startsAt": "...",
     "endsAt": "..."}                       # Prometheus alert push format

A batch is either a JSON list of events or ``{"alerts": [...]}``. Each event
is validated on its own: a malformed one is rejected with
MalformedEventError without affecting its neighbours.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError

from fleetwatch.models.alerts import ALERTNAME_LABEL, AlertEvent, AlertStatus
from fleetwatch.observability.metrics import alerts_malformed_total

_log = structlog.get_logger(component="alerting.ingest")

_LABEL_NAME = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

# Prometheus encodes "no end time" as the zero time.
_ZERO_TIME_YEAR = 1


class MalformedEventError(ValueError):
    """An alert event is missing required fields or has invalid values."""


class _AlertEventModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    alert_name: StrictStr | None = Field(default=None, alias="alertName")
    labels: dict[StrictStr, StrictStr] = Field(default_factory=dict)
    annotations: dict[StrictStr, StrictStr] = Field(default_factory=dict)
    starts_at: datetime | None = Field(default=None, alias="startsAt")
    ends_at: datetime | None = Field(default=None, alias="endsAt")
    status: AlertStatus | None = None


@dataclass
class IngestBatch:
    """Result of parsing a batch payload."""

    events: list[AlertEvent] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


def parse_alert_event(raw: Any, now: datetime | None = None) -> AlertEvent:
    """Validate one raw event.

    ``startsAt`` is required. ``status`` defaults from ``endsAt``: resolved
    when it lies in the past, firing otherwise.

    Raises:
        MalformedEventError: the event is not usable.
    """
    if not isinstance(raw, dict):
        raise MalformedEventError(f"event must be an object, got {type(raw).__name__}")
    try:
        model = _AlertEventModel.model_validate(raw)
    except ValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ()))
        raise MalformedEventError(f"{loc}: {first.get('msg', 'invalid value')}") from exc

    labels = {k: v for k, v in model.labels.items() if v != ""}
    alert_name = model.alert_name or labels.get(ALERTNAME_LABEL, "")
    if not alert_name:
        raise MalformedEventError("missing alert name (alertName or labels.alertname)")
    if ALERTNAME_LABEL in labels and labels[ALERTNAME_LABEL] != alert_name:
        raise MalformedEventError(
            f"alertName {alert_name!r} disagrees with labels.alertname {labels[ALERTNAME_LABEL]!r}"
        )
    labels.pop(ALERTNAME_LABEL, None)
    for name in labels:
        if not _LABEL_NAME.match(name):
            raise MalformedEventError(f"invalid label name {name!r}")
    if model.starts_at is None:
        raise MalformedEventError("missing startsAt")

    starts_at = _aware(model.starts_at)
    ends_at = _aware(model.ends_at) if model.ends_at is not None else None
    if ends_at is not None and ends_at.year == _ZERO_TIME_YEAR:
        ends_at = None

    status = model.status
    if status is None:
        now = now or datetime.now(tz=UTC)
        status = AlertStatus.RESOLVED if ends_at is not None and ends_at <= now else AlertStatus.FIRING

    return AlertEvent(
        alert_name=alert_name,
        labels=labels,
        annotations=dict(model.annotations),
        starts_at=starts_at,
        ends_at=ends_at,
        status=status,
    )


def parse_alert_batch(body: Any, now: datetime | None = None) -> IngestBatch:
    """Split a batch into valid events and per-event rejection reasons."""
    if isinstance(body, dict) and "alerts" in body:
        body = body["alerts"]
    elif isinstance(body, dict):
        body = [body]
    if not isinstance(body, list):
        batch = IngestBatch()
        _reject(batch, 0, MalformedEventError("payload must be a list of events or {'alerts': [...]}"))
        return batch

    batch = IngestBatch()
    for index, raw in enumerate(body):
        try:
            batch.events.append(parse_alert_event(raw, now=now))
        except MalformedEventError as exc:
            _reject(batch, index, exc)
    return batch


def _reject(batch: IngestBatch, index: int, exc: MalformedEventError) -> None:
    alerts_malformed_total.inc()
    batch.errors.append(f"[{index}] {exc}")
    _log.warning("malformed_alert_event_dropped", index=index, reason=str(exc))
