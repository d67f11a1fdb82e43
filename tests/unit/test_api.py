"""Tests for the fleetwatch REST API, including hypothesis fuzzing of /alerts.

Validates that:
 1. Valid alerts reach the engine and show up in /groups
 2. Malformed bodies produce the ``{error, detail}`` envelope, never a 500
 3. /status reflects the last discovery cycle
 4. /reload keeps the running config when the new one is invalid
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from unittest.mock import MagicMock

from fastapi.testclient import TestClient
from hypothesis import given, settings
from hypothesis import strategies as st

from fleetwatch import __version__
from fleetwatch.alerting.config_loader import RoutingConfigError, default_routing_config
from fleetwatch.alerting.grouping import AlertEngine
from fleetwatch.api.app import create_app
from fleetwatch.discovery.reconciler import CycleResult
from fleetwatch.models.config import FleetWatchConfig
from fleetwatch.notifications import NotificationDispatcher

_T0 = datetime(2026, 3, 2, 12, 0, 0, tzinfo=UTC)

_ALERT = {
    "alertName": "HighCPU",
    "labels": {"instance": "10.0.1.5:9080", "severity": "warning"},
    "annotations": {"description": "CPU above 90%"},
    "startsAt": "2026-03-02T11:55:00Z",
}


def _engine() -> AlertEngine:
    return AlertEngine(default_routing_config(), dispatch=lambda n: None)


def _client(
    engine: AlertEngine | None = None,
    reconciler: object = None,
    reload_fn: object = None,
) -> TestClient:
    app = create_app(
        engine=engine or _engine(),
        reconciler=reconciler,
        dispatcher=NotificationDispatcher({"null": []}),
        reload_fn=reload_fn,
        config=FleetWatchConfig(),
    )
    return TestClient(app)


class TestHealthAndStatus:
    def test_health(self) -> None:
        response = _client().get("/api/v1/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": __version__}

    def test_status_without_discovery(self) -> None:
        body = _client().get("/api/v1/status").json()
        assert body["discovery"]["enabled"] is False
        assert body["alerting"]["receivers"] == ["null"]
        assert body["alerting"]["groups"] == 0

    def test_status_reports_last_cycle(self) -> None:
        reconciler = MagicMock()
        reconciler.last_result = CycleResult(
            started_at=_T0,
            outcome="query_error",
            error="throttled: ListTasks: ThrottlingException",
        )
        reconciler.last_success_at = _T0
        body = _client(reconciler=reconciler).get("/api/v1/status").json()

        discovery = body["discovery"]
        assert discovery["enabled"] is True
        assert discovery["targets_file"] == "/etc/prometheus/targets/workload.json"
        assert discovery["last_cycle"]["outcome"] == "query_error"
        assert discovery["last_cycle"]["error"].startswith("throttled")
        assert discovery["last_success_at"] == _T0.isoformat()


class TestPostAlerts:
    def test_accepts_alerts_and_groups_them(self) -> None:
        client = _client()
        response = client.post("/api/v1/alerts", json=[_ALERT, {**_ALERT, "labels": {"instance": "b"}}])

        assert response.status_code == 200
        assert response.json() == {"accepted": 2, "rejected": 0, "errors": []}

        groups = client.get("/api/v1/groups").json()["groups"]
        assert len(groups) == 1
        assert groups[0]["receiver"] == "null"
        assert groups[0]["state"] == "grouped"
        assert groups[0]["group_labels"] == {"alertname": "HighCPU"}
        assert len(groups[0]["alerts"]) == 2
        assert groups[0]["next_flush_at"] is not None

    def test_partial_batch(self) -> None:
        response = _client().post("/api/v1/alerts", json={"alerts": [_ALERT, {"alertName": "NoStart"}]})
        assert response.status_code == 200
        body = response.json()
        assert body["accepted"] == 1
        assert body["rejected"] == 1
        assert "startsAt" in body["errors"][0]

    def test_invalid_json(self) -> None:
        response = _client().post(
            "/api/v1/alerts",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_JSON"

    def test_all_rejected(self) -> None:
        response = _client().post("/api/v1/alerts", json=[{"labels": {}}])
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "INVALID_ALERTS"
        assert body["detail"]


class TestReload:
    def test_reload_unavailable_without_file(self) -> None:
        response = _client().post("/api/v1/reload")
        assert response.status_code == 503
        assert response.json()["error"] == "RELOAD_UNAVAILABLE"

    def test_reload_success(self) -> None:
        reload_fn = MagicMock()
        response = _client(reload_fn=reload_fn).post("/api/v1/reload")
        assert response.status_code == 200
        assert response.json()["receivers"] == ["null"]
        reload_fn.assert_called_once()

    def test_reload_invalid_config(self) -> None:
        reload_fn = MagicMock(side_effect=RoutingConfigError("route references undefined receiver(s): ['x']"))
        response = _client(reload_fn=reload_fn).post("/api/v1/reload")
        assert response.status_code == 400
        assert response.json() == {
            "error": "INVALID_CONFIG",
            "detail": "route references undefined receiver(s): ['x']",
        }

    def test_async_reload_fn(self) -> None:
        calls: list[int] = []

        async def reload_fn() -> None:
            calls.append(1)

        assert _client(reload_fn=reload_fn).post("/api/v1/reload").status_code == 200
        assert calls == [1]


class TestMiscRoutes:
    def test_unknown_path_uses_error_envelope(self) -> None:
        response = _client().get("/api/v1/nope")
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_wrong_method(self) -> None:
        response = _client().get("/api/v1/alerts")
        assert response.status_code == 405
        assert set(response.json()) == {"error", "detail"}

    def test_metrics_exposed(self) -> None:
        response = _client().get("/metrics")
        assert response.status_code == 200
        assert "fleetwatch_" in response.text


_json_values = st.recursive(
    st.none() | st.booleans() | st.integers() | st.floats(allow_nan=False, allow_infinity=False) | st.text(),
    lambda children: st.lists(children, max_size=4) | st.dictionaries(st.text(max_size=10), children, max_size=4),
    max_leaves=12,
)


class TestFuzzAlerts:
    @settings(max_examples=60, deadline=None)
    @given(body=_json_values)
    def test_arbitrary_json_never_500(self, body: object) -> None:
        response = _client().post("/api/v1/alerts", content=json.dumps(body).encode())
        assert response.status_code in (200, 400)
        assert response.headers["content-type"].startswith("application/json")
        payload = response.json()
        if response.status_code == 400:
            assert set(payload) == {"error", "detail"}

    @settings(max_examples=40, deadline=None)
    @given(raw=st.binary(max_size=64))
    def test_arbitrary_bytes_never_500(self, raw: bytes) -> None:
        response = _client().post("/api/v1/alerts", content=raw)
        assert response.status_code in (200, 400)
