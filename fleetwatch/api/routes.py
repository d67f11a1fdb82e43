"""Route handlers for the fleetwatch REST API.

All routes are mounted under ``/api/v1`` by ``create_app``. Dependencies
(engine, reconciler, reload hook, dispatcher) live on ``request.app.state``.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from fleetwatch.alerting.config_loader import RoutingConfigError
from fleetwatch.alerting.ingest import parse_alert_batch
from fleetwatch.api.schemas import (
    AlertingStatus,
    AlertsResponse,
    CycleStatus,
    DiscoveryStatus,
    ErrorResponse,
    GroupMember,
    GroupsResponse,
    GroupView,
    HealthResponse,
    ReloadResponse,
    StatusResponse,
)
from fleetwatch.models.alerts import AlertStatus

_log = structlog.get_logger(component="api.routes")

router = APIRouter()


def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts is not None else None


def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail).model_dump(),
    )


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    return HealthResponse(version=request.app.version)


@router.get("/status", response_model=StatusResponse)
async def status(request: Request) -> StatusResponse:
    """Discovery cycle outcome and alert engine summary."""
    state = request.app.state
    reconciler = state.reconciler
    config = state.config

    if reconciler is None:
        discovery = DiscoveryStatus(enabled=False)
    else:
        last = reconciler.last_result
        discovery = DiscoveryStatus(
            enabled=True,
            targets_file=config.discovery.targets_file if config is not None else "",
            last_cycle=(
                CycleStatus(
                    started_at=last.started_at.isoformat(),
                    outcome=last.outcome,
                    target_count=last.target_count,
                    published=last.published,
                    error=last.error,
                )
                if last is not None
                else None
            ),
            last_success_at=_iso(reconciler.last_success_at),
        )

    engine = state.engine
    routing = engine.config
    dispatcher = state.dispatcher
    alerting = AlertingStatus(
        config_source=routing.source,
        groups=len(engine.groups()),
        receivers=sorted(routing.receivers),
        inhibit_rules=len(routing.inhibit_rules),
        dropped_notifications=dispatcher.dropped if dispatcher is not None else {},
    )
    return StatusResponse(version=request.app.version, discovery=discovery, alerting=alerting)


@router.get("/groups", response_model=GroupsResponse)
async def groups(request: Request) -> GroupsResponse:
    engine = request.app.state.engine
    views: list[GroupView] = []
    for group in sorted(engine.groups(), key=lambda g: g.group_key):
        members = sorted(group.members.values(), key=lambda r: (r.event.starts_at, r.fingerprint))
        views.append(
            GroupView(
                group_key=group.group_key,
                receiver=group.receiver,
                state=group.state.value,
                group_labels=group.group_labels,
                first_seen_at=group.first_seen_at.isoformat(),
                last_notified_at=_iso(group.last_notified_at),
                next_flush_at=_iso(engine.next_deadline(group.group_key)),
                alerts=[
                    GroupMember(
                        fingerprint=r.fingerprint,
                        alertname=r.event.alert_name,
                        status=r.event.status.value,
                        inhibited=r.inhibited,
                        starts_at=r.event.starts_at.isoformat(),
                        labels=r.event.label_set,
                    )
                    for r in members
                ],
            )
        )
    return GroupsResponse(groups=views)


@router.post("/alerts", response_model=AlertsResponse)
async def post_alerts(request: Request) -> AlertsResponse | JSONResponse:
    """Ingest a batch of alert events.

    Each event is validated on its own. The request fails with 400 only
    when the body is not JSON or when every event in it was rejected.
    """
    raw = await request.body()
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        return _error(400, "INVALID_JSON", f"request body is not valid JSON: {exc}")

    now = datetime.now(tz=UTC)
    batch = parse_alert_batch(body, now=now)
    if batch.errors and not batch.events:
        return _error(400, "INVALID_ALERTS", "; ".join(batch.errors[:10]))

    engine = request.app.state.engine
    for event in batch.events:
        engine.ingest(event)

    if batch.events:
        _log.debug(
            "alerts_ingested",
            accepted=len(batch.events),
            rejected=len(batch.errors),
            firing=sum(1 for e in batch.events if e.status == AlertStatus.FIRING),
        )
    return AlertsResponse(accepted=len(batch.events), rejected=len(batch.errors), errors=batch.errors)


@router.post("/reload", response_model=ReloadResponse)
async def reload(request: Request) -> ReloadResponse | JSONResponse:
    """Re-read the routing configuration. The old one stays active on failure."""
    reload_fn = request.app.state.reload_fn
    if reload_fn is None:
        return _error(503, "RELOAD_UNAVAILABLE", "no routing configuration file to reload")
    try:
        result = reload_fn()
        if asyncio.iscoroutine(result):
            result = await result
    except RoutingConfigError as exc:
        return _error(400, "INVALID_CONFIG", str(exc))
    routing = request.app.state.engine.config
    return ReloadResponse(source=routing.source, receivers=sorted(routing.receivers))
