"""Discovery Reconciler.

Periodically translates "what is running" into "what should be scraped":

    list_running_tasks -> describe_tasks -> filter RUNNING -> dedupe
                       -> TargetDescriptors -> TargetStore.publish

Failure policy: any QueryError aborts the cycle before the store is touched,
so the previously published target set stays authoritative. An empty but
successful listing publishes ``[]``. Cycles never overlap; a tick that finds
the previous cycle still running is skipped, not queued.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from fleetwatch.discovery.client import OrchestratorClient, QueryError
from fleetwatch.discovery.store import TargetPublishError, TargetStore
from fleetwatch.models.config import TargetLabelConfig
from fleetwatch.models.targets import TargetDescriptor, TaskDescriptor
from fleetwatch.observability.metrics import (
    discovery_cycles_total,
    discovery_last_success_timestamp,
    discovery_targets,
    discovery_ticks_skipped_total,
)

_log = structlog.get_logger(component="discovery.reconciler")

_STOP_GRACE_SECONDS = 10.0


@dataclass(frozen=True)
class CycleResult:
    """Outcome of one reconciliation cycle."""

    started_at: datetime
    outcome: str  # "success" | "query_error" | "publish_error"
    target_count: int = 0
    published: bool = False
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == "success"


def build_target_set(
    tasks: Iterable[TaskDescriptor],
    labels: TargetLabelConfig,
) -> list[TargetDescriptor]:
    """One TargetDescriptor per distinct RUNNING task, in deterministic order."""
    by_id: dict[str, TaskDescriptor] = {}
    for task in tasks:
        if not task.is_running:
            continue
        # First description of a task id wins.
        by_id.setdefault(task.task_id, task)

    targets: list[TargetDescriptor] = []
    for task in sorted(by_id.values(), key=lambda t: (t.cluster_id, t.task_id)):
        targets.append(
            TargetDescriptor(
                addresses=(task.address,),
                labels={
                    "job": labels.job,
                    "cluster": task.cluster_id,
                    "task_id": task.task_id,
                    "container_name": task.container_name,
                    "environment": labels.environment,
                    "deployment_type": labels.deployment_type,
                },
            )
        )
    return targets


def _log_late_query(query: asyncio.Task[list[TaskDescriptor]]) -> None:
    if query.cancelled():
        return
    exc = query.exception()
    _log.info("discovery_late_query_finished", error=str(exc) if exc else "")


class DiscoveryReconciler:
    """Runs reconciliation cycles on a fixed interval.

    Args:
        client:           Orchestrator query client.
        store:            Target store to publish into.
        cluster:          Cluster to query.
        service:          Service selector; empty lists every task of the cluster.
        labels:           Fixed target labels.
        interval_seconds: Tick interval. Also bounds each cycle's queries.
        clock:            Wall-clock source (tests pin it).
    """

    def __init__(
        self,
        client: OrchestratorClient,
        store: TargetStore,
        cluster: str,
        service: str = "",
        labels: TargetLabelConfig | None = None,
        interval_seconds: float = 60.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._cluster = cluster
        self._service = service
        self._labels = labels or TargetLabelConfig()
        self._interval = interval_seconds
        self._clock = clock or (lambda: datetime.now(tz=UTC))

        self._ticker_task: asyncio.Task[None] | None = None
        self._cycle_task: asyncio.Task[CycleResult] | None = None
        self._query_task: asyncio.Task[list[TaskDescriptor]] | None = None
        self.last_result: CycleResult | None = None
        self.last_success_at: datetime | None = None

    # ------------------------------------------------------------------
    # Single cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> CycleResult:
        """Execute one cycle. Never raises for query or publish failures."""
        started_at = self._clock()
        query = asyncio.ensure_future(self._query())
        self._query_task = query
        try:
            done, _ = await asyncio.wait({query}, timeout=self._interval)
        except asyncio.CancelledError:
            query.cancel()
            raise
        if not done:
            # A blocked executor call cannot be interrupted. The query stays
            # in flight, and ticks are skipped, until it returns.
            query.add_done_callback(_log_late_query)
            return self._fail(started_at, "query_error", "timeout: cycle exceeded discovery interval")
        try:
            tasks = query.result()
        except QueryError as exc:
            return self._fail(started_at, "query_error", str(exc))

        targets = build_target_set(tasks, self._labels)
        try:
            published = self._store.publish(targets)
        except TargetPublishError as exc:
            return self._fail(started_at, "publish_error", str(exc))

        result = CycleResult(
            started_at=started_at,
            outcome="success",
            target_count=len(targets),
            published=published,
        )
        self.last_result = result
        self.last_success_at = started_at
        discovery_cycles_total.labels(outcome="success").inc()
        discovery_targets.set(len(targets))
        discovery_last_success_timestamp.set(time.time())
        _log.info(
            "discovery_cycle_completed",
            cycle_started_at=started_at.isoformat(),
            targets=len(targets),
            published=published,
        )
        return result

    async def _query(self) -> list[TaskDescriptor]:
        task_ids = await self._client.list_running_tasks(self._cluster, self._service)
        if not task_ids:
            return []
        # Dedupe before describing; listings can repeat ids across pages.
        unique_ids = list(dict.fromkeys(task_ids))
        return await self._client.describe_tasks(self._cluster, unique_ids)

    def _fail(self, started_at: datetime, outcome: str, error: str) -> CycleResult:
        result = CycleResult(started_at=started_at, outcome=outcome, error=error)
        self.last_result = result
        discovery_cycles_total.labels(outcome=outcome).inc()
        _log.warning(
            "discovery_cycle_failed",
            cycle_started_at=started_at.isoformat(),
            outcome=outcome,
            reason=error,
            path=str(self._store.path),
        )
        return result

    # ------------------------------------------------------------------
    # Periodic loop
    # ------------------------------------------------------------------

    def tick(self) -> bool:
        """Start a cycle unless one is still running.

        Returns True when a cycle was started, False when the tick was skipped.
        """
        if self._cycle_task is not None and not self._cycle_task.done():
            discovery_ticks_skipped_total.inc()
            _log.warning("discovery_tick_skipped", reason="previous cycle still running")
            return False
        if self._query_task is not None and not self._query_task.done():
            discovery_ticks_skipped_total.inc()
            _log.warning("discovery_tick_skipped", reason="timed-out query still in flight")
            return False
        self._cycle_task = asyncio.create_task(self._guarded_cycle(), name="discovery-cycle")
        return True

    async def _guarded_cycle(self) -> CycleResult:
        try:
            return await self.run_cycle()
        except Exception as exc:
            # The loop must outlive any single cycle.
            _log.error("discovery_cycle_crashed", error=str(exc), exc_info=True)
            return self._fail(self._clock(), "query_error", f"unexpected: {exc}")

    async def _loop(self) -> None:
        while True:
            self.tick()
            await asyncio.sleep(self._interval)

    async def start(self) -> None:
        """Start ticking; the first cycle runs immediately."""
        if self._ticker_task is not None:
            return
        self._ticker_task = asyncio.create_task(self._loop(), name="discovery-ticker")
        _log.info(
            "discovery_started",
            cluster=self._cluster,
            service=self._service,
            interval_seconds=self._interval,
            path=str(self._store.path),
        )

    async def stop(self) -> None:
        """Stop ticking and let an in-flight cycle finish (bounded)."""
        if self._ticker_task is not None:
            self._ticker_task.cancel()
            await asyncio.gather(self._ticker_task, return_exceptions=True)
            self._ticker_task = None
        if self._cycle_task is not None and not self._cycle_task.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._cycle_task), timeout=_STOP_GRACE_SECONDS)
            except TimeoutError:
                self._cycle_task.cancel()
                await asyncio.gather(self._cycle_task, return_exceptions=True)
                _log.warning("discovery_cycle_abandoned_on_stop")
        if self._query_task is not None and not self._query_task.done():
            self._query_task.cancel()
            await asyncio.gather(self._query_task, return_exceptions=True)
        _log.info("discovery_stopped")
