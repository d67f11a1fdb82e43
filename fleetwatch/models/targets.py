"""Discovery data structures: orchestrator tasks and scrape targets."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

RUNNING = "RUNNING"


@dataclass(frozen=True)
class TaskDescriptor:
    """A workload instance as reported by the orchestrator.

    Ephemeral: produced by the query client on every cycle and never stored.
    """

    task_id: str
    cluster_id: str
    private_address: str
    port: int
    container_name: str
    lifecycle_status: str

    @property
    def is_running(self) -> bool:
        return self.lifecycle_status == RUNNING

    @property
    def address(self) -> str:
        return f"{self.private_address}:{self.port}"


@dataclass(frozen=True)
class TargetDescriptor:
    """One entry of the published target file (Prometheus file_sd format)."""

    addresses: tuple[str, ...]
    labels: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"targets": list(self.addresses), "labels": dict(self.labels)}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TargetDescriptor:
        targets = raw.get("targets")
        labels = raw.get("labels", {})
        if not isinstance(targets, list) or not all(isinstance(t, str) for t in targets):
            raise ValueError(f"'targets' must be a list of strings, got: {targets!r}")
        if not isinstance(labels, dict):
            raise ValueError(f"'labels' must be an object, got: {labels!r}")
        return cls(
            addresses=tuple(targets),
            labels={str(k): str(v) for k, v in labels.items()},
        )
