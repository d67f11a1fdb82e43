"""Shared fixtures for fleetwatch integration tests.

Provides a routing file on disk, a webhook sink built on httpx.MockTransport
and a scripted orchestrator, so pipelines run end to end without AWS or a
real HTTP endpoint.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest

from fleetwatch.models.targets import TaskDescriptor

T0 = datetime(2026, 3, 2, 12, 0, 0, tzinfo=UTC)

ROUTING_YAML = """
global:
  resolve_timeout: 1h
route:
  receiver: team
  group_by: [alertname]
  group_wait: 30s
  group_interval: 5m
  repeat_interval: 4h
  routes:
    - receiver: pager
      match:
        severity: critical
receivers:
  - name: team
    webhook_configs:
      - url: https://team.example.com/hook
  - name: pager
    webhook_configs:
      - url: https://pager.example.com/hook
inhibit_rules:
  - source_match:
      alertname: ServiceDown
    target_match_re:
      alertname: 'Service.*'
    equal: [instance]
"""


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def alert_json(name: str, instance: str, severity: str = "warning", **extra: object) -> dict:
    raw: dict = {
        "alertName": name,
        "labels": {"instance": instance, "severity": severity},
        "annotations": {"description": f"{name} on {instance}"},
        "startsAt": T0.isoformat(),
    }
    raw.update(extra)
    return raw


def running_task(task_id: str, address: str) -> TaskDescriptor:
    return TaskDescriptor(
        task_id=task_id,
        cluster_id="prod",
        private_address=address,
        port=9080,
        container_name="app",
        lifecycle_status="RUNNING",
    )


class WebhookSink:
    """Records every JSON body POSTed through its transport."""

    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.bodies: list[dict] = []
        self.urls: list[str] = []
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.urls.append(str(request.url))
        self.bodies.append(json.loads(request.content))
        return httpx.Response(self.status_code)


class ScriptedOrchestrator:
    """OrchestratorClient returning one scripted step per cycle."""

    def __init__(self, *steps: list[TaskDescriptor] | Exception) -> None:
        self._steps = list(steps)
        self._current: list[TaskDescriptor] = []

    async def list_running_tasks(self, cluster: str, service: str) -> list[str]:
        step = self._steps.pop(0) if len(self._steps) > 1 else self._steps[0]
        if isinstance(step, Exception):
            raise step
        self._current = step
        return [t.task_id for t in step]

    async def describe_tasks(self, cluster: str, task_ids: list[str]) -> list[TaskDescriptor]:
        return [t for t in self._current if t.task_id in task_ids]


@pytest.fixture
def routing_file(tmp_path: Path) -> Path:
    path = tmp_path / "alertmanager.yml"
    path.write_text(ROUTING_YAML)
    return path


@pytest.fixture
def sink() -> WebhookSink:
    return WebhookSink()
