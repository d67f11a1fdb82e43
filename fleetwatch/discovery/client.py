"""Orchestrator query client (read-only).

``OrchestratorClient`` is the seam the reconciler depends on;
``EcsOrchestratorClient`` implements it against the AWS ECS API with boto3.
boto3 is synchronous, so every call runs in the default thread executor to
keep the event loop responsive.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Protocol, runtime_checkable

import structlog

from fleetwatch.models.targets import TaskDescriptor

_log = structlog.get_logger(component="discovery.client")

# DescribeTasks accepts at most 100 task ARNs per call.
_DESCRIBE_BATCH = 100

# Total attempts per API call, first try included.
_MAX_ATTEMPTS = 2

_THROTTLE_CODES = frozenset(
    {
        "ThrottlingException",
        "Throttling",
        "RequestLimitExceeded",
        "TooManyRequestsException",
    }
)
_AUTH_CODES = frozenset(
    {
        "AccessDeniedException",
        "AccessDenied",
        "UnauthorizedOperation",
        "ExpiredTokenException",
        "UnrecognizedClientException",
        "InvalidClientTokenId",
    }
)


class QueryError(Exception):
    """An orchestrator query failed (timeout, throttling, auth, transport).

    ``reason`` is a short machine-readable classification used in logs and
    metrics.
    """

    def __init__(self, reason: str, detail: str = "") -> None:
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail


@runtime_checkable
class OrchestratorClient(Protocol):
    """Read-only view of running workload instances."""

    async def list_running_tasks(self, cluster: str, service: str) -> list[str]: ...

    async def describe_tasks(self, cluster: str, task_ids: list[str]) -> list[TaskDescriptor]: ...


class EcsOrchestratorClient:
    """OrchestratorClient backed by the ECS ``ListTasks``/``DescribeTasks`` APIs.

    Args:
        region:         AWS region of the cluster.
        target_port:    Port the workload exposes metrics on.
        container_name: Container whose network interface is scraped; the
                        first container of the task when empty.
        ecs_client:     Pre-built boto3 ECS client (tests inject a stubbed one).
        timeout_seconds: Upper bound for one API call including its retry;
                        split across connect and read timeouts of each attempt.
    """

    def __init__(
        self,
        region: str,
        target_port: int,
        container_name: str = "",
        ecs_client: Any = None,
        timeout_seconds: float = 60.0,
    ) -> None:
        self._region = region
        self._port = target_port
        self._container_name = container_name
        self._client = ecs_client
        self._timeout = timeout_seconds

    def _ecs(self) -> Any:
        if self._client is None:
            import boto3
            from botocore.config import Config

            per_attempt = max(1.0, self._timeout / (2 * _MAX_ATTEMPTS))
            self._client = boto3.client(
                "ecs",
                region_name=self._region,
                config=Config(
                    connect_timeout=per_attempt,
                    read_timeout=per_attempt,
                    retries={"total_max_attempts": _MAX_ATTEMPTS, "mode": "standard"},
                ),
            )
        return self._client

    async def list_running_tasks(self, cluster: str, service: str) -> list[str]:
        return await self._run(self._list_running_tasks_sync, cluster, service)

    async def describe_tasks(self, cluster: str, task_ids: list[str]) -> list[TaskDescriptor]:
        if not task_ids:
            return []
        return await self._run(self._describe_tasks_sync, cluster, task_ids)

    async def _run(self, fn: Any, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    # ------------------------------------------------------------------
    # Blocking implementations (executor threads)
    # ------------------------------------------------------------------

    def _list_running_tasks_sync(self, cluster: str, service: str) -> list[str]:
        params: dict[str, Any] = {"cluster": cluster, "desiredStatus": "RUNNING"}
        if service:
            params["serviceName"] = service
        arns: list[str] = []
        with _translate_errors("ListTasks"):
            paginator = self._ecs().get_paginator("list_tasks")
            for page in paginator.paginate(**params):
                arns.extend(page.get("taskArns", []))
        return arns

    def _describe_tasks_sync(self, cluster: str, task_ids: list[str]) -> list[TaskDescriptor]:
        descriptors: list[TaskDescriptor] = []
        for start in range(0, len(task_ids), _DESCRIBE_BATCH):
            batch = task_ids[start : start + _DESCRIBE_BATCH]
            with _translate_errors("DescribeTasks"):
                resp = self._ecs().describe_tasks(cluster=cluster, tasks=batch)
            for failure in resp.get("failures", []):
                # MISSING: the task stopped between ListTasks and DescribeTasks.
                _log.debug(
                    "describe_tasks_failure",
                    arn=failure.get("arn", ""),
                    reason=failure.get("reason", ""),
                )
            for task in resp.get("tasks", []):
                descriptor = self._to_descriptor(task)
                if descriptor is not None:
                    descriptors.append(descriptor)
        return descriptors

    def _to_descriptor(self, task: dict[str, Any]) -> TaskDescriptor | None:
        container = _pick_container(task.get("containers", []), self._container_name)
        if container is None:
            _log.debug("task_without_matching_container", task_arn=task.get("taskArn", ""))
            return None
        address = _private_address(task, container)
        if not address:
            _log.debug("task_without_private_address", task_arn=task.get("taskArn", ""))
            return None
        return TaskDescriptor(
            task_id=_arn_suffix(task.get("taskArn", "")),
            cluster_id=_arn_suffix(task.get("clusterArn", "")),
            private_address=address,
            port=self._port,
            container_name=str(container.get("name", "")),
            lifecycle_status=str(task.get("lastStatus", "")),
        )


def _arn_suffix(arn: str) -> str:
    """``arn:aws:ecs:...:task/cluster/abc123`` -> ``abc123``."""
    return arn.rsplit("/", 1)[-1]


def _pick_container(containers: list[dict[str, Any]], name: str) -> dict[str, Any] | None:
    if not containers:
        return None
    if not name:
        return containers[0]
    for container in containers:
        if container.get("name") == name:
            return container
    return None


def _private_address(task: dict[str, Any], container: dict[str, Any]) -> str:
    """Container ENI address first (awsvpc), then the task ENI attachment."""
    for eni in container.get("networkInterfaces", []):
        address = eni.get("privateIpv4Address")
        if address:
            return str(address)
    for attachment in task.get("attachments", []):
        if attachment.get("type") != "ElasticNetworkInterface":
            continue
        for detail in attachment.get("details", []):
            if detail.get("name") == "privateIPv4Address" and detail.get("value"):
                return str(detail["value"])
    return ""


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Map botocore failures onto QueryError."""
    from botocore.exceptions import (
        BotoCoreError,
        ClientError,
        ConnectTimeoutError,
        NoCredentialsError,
        ReadTimeoutError,
    )

    try:
        yield
    except ClientError as exc:
        code = str(exc.response.get("Error", {}).get("Code", ""))
        if code in _THROTTLE_CODES:
            reason = "throttled"
        elif code in _AUTH_CODES:
            reason = "access_denied"
        else:
            reason = "api_error"
        raise QueryError(reason, f"{operation}: {code or exc}") from exc
    except (ConnectTimeoutError, ReadTimeoutError) as exc:
        raise QueryError("timeout", f"{operation}: {exc}") from exc
    except NoCredentialsError as exc:
        raise QueryError("access_denied", f"{operation}: {exc}") from exc
    except BotoCoreError as exc:
        raise QueryError("transport", f"{operation}: {exc}") from exc
