"""Application bootstrap for fleetwatch.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config -> logging -> routing config -> notifications
              -> alert engine -> discovery -> REST

Shutdown stops components in reverse startup order. Each component's stop
error is caught and logged independently so one failing teardown does not
keep the rest from shutting down. SIGHUP re-reads the routing configuration.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from fleetwatch.alerting import AlertEngine, RoutingConfigError, default_routing_config, load_routing_config
from fleetwatch.config import load_config
from fleetwatch.models.config import FleetWatchConfig
from fleetwatch.notifications import NotificationDispatcher, build_notification_dispatcher, build_receiver_channels
from fleetwatch.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

    from fleetwatch.alerting import RoutingConfig
    from fleetwatch.discovery import DiscoveryReconciler

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class FleetWatchApp:
    """Application root. Owns every component and coordinates their lifecycle.

    ``stop()`` on an app that was never started (or already stopped) is safe.
    """

    def __init__(self, config: FleetWatchConfig | None = None) -> None:
        self.config: FleetWatchConfig | None = config

        self._routing: RoutingConfig | None = None
        self._dispatcher: NotificationDispatcher | None = None
        self._engine: AlertEngine | None = None
        self._reconciler: DiscoveryReconciler | None = None
        self._rest_server: object | None = None

        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def engine(self) -> AlertEngine | None:
        return self._engine

    @property
    def reconciler(self) -> DiscoveryReconciler | None:
        return self._reconciler

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self, serve_api: bool = True) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        The caller (main()) turns this into a non-zero exit.
        """
        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            try:
                self.config = load_config()
            except ValueError as exc:
                raise _ComponentError("config", exc) from exc

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("fleetwatch_starting", version=_fleetwatch_version())

        # --- 3. Routing configuration ------------------------------------
        self._load_routing()

        # --- 4. Notification dispatcher ----------------------------------
        await self._start_notifications()

        # --- 5. Alert engine ---------------------------------------------
        await self._start_engine()

        # --- 6. Discovery reconciler -------------------------------------
        await self._start_discovery()

        # --- 7. REST API -------------------------------------------------
        if serve_api:
            await self._start_rest()

        self._running = True
        self._log.info("fleetwatch_started", port=self.config.api.port)

    # ------------------------------------------------------------------
    # Component startup helpers
    # ------------------------------------------------------------------

    def _load_routing(self) -> None:
        assert self._log is not None
        assert self.config is not None
        path = self.config.alerting.routing_config_path
        if not path:
            self._routing = default_routing_config()
            self._log.info("routing_config_default", receiver=self._routing.route.receiver)
            return
        try:
            self._routing = load_routing_config(path)
        except RoutingConfigError as exc:
            raise _ComponentError("routing_config", exc) from exc

    async def _start_notifications(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self._routing is not None
        try:
            self._dispatcher = build_notification_dispatcher(self._routing, self.config.notifications)
        except Exception as exc:
            raise _ComponentError("notifications", exc) from exc
        self._log.info("notifications_started", receivers=self._dispatcher.receivers)

    async def _start_engine(self) -> None:
        assert self._routing is not None
        assert self._dispatcher is not None
        try:
            self._engine = AlertEngine(self._routing, dispatch=self._dispatcher.dispatch)
            await self._engine.start()
        except Exception as exc:
            raise _ComponentError("alert_engine", exc) from exc

    async def _start_discovery(self) -> None:
        """Start the reconciler; skipped when discovery is disabled."""
        assert self._log is not None
        assert self.config is not None
        discovery = self.config.discovery
        if not discovery.enabled:
            self._log.info("discovery_disabled")
            return
        try:
            from fleetwatch.discovery import DiscoveryReconciler, EcsOrchestratorClient, TargetStore

            client = EcsOrchestratorClient(
                region=discovery.region,
                target_port=discovery.target_port,
                container_name=discovery.container_name,
                timeout_seconds=discovery.interval_seconds,
            )
            self._reconciler = DiscoveryReconciler(
                client=client,
                store=TargetStore(discovery.targets_file),
                cluster=discovery.cluster,
                service=discovery.service_name,
                labels=self.config.target_labels,
                interval_seconds=discovery.interval_seconds,
            )
            await self._reconciler.start()
        except Exception as exc:
            raise _ComponentError("discovery", exc) from exc

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server."""
        assert self._log is not None
        assert self.config is not None
        assert self._engine is not None
        try:
            import uvicorn

            from fleetwatch.api import create_app

            fastapi_app = create_app(
                engine=self._engine,
                reconciler=self._reconciler,
                dispatcher=self._dispatcher,
                reload_fn=self.reload if self.config.alerting.routing_config_path else None,
                config=self.config,
            )
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest_api_started", port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Reload
    # ------------------------------------------------------------------

    def reload(self) -> None:
        """Re-read the routing configuration file and apply it.

        On RoutingConfigError the running configuration stays in effect and
        the error propagates to the caller.
        """
        assert self.config is not None
        assert self._engine is not None
        assert self._dispatcher is not None
        log = self._log or get_logger("app")
        path = self.config.alerting.routing_config_path
        if not path:
            log.info("routing_config_reload_skipped", reason="no routing config file")
            return
        try:
            routing = load_routing_config(path)
        except RoutingConfigError as exc:
            log.error("routing_config_reload_failed", path=path, error=str(exc))
            raise
        self._dispatcher.replace_receivers(build_receiver_channels(routing, self.config.notifications))
        self._engine.reload(routing)
        self._routing = routing

    def _reload_from_signal(self) -> None:
        try:
            self.reload()
        except RoutingConfigError:
            # Already logged; keep serving the previous configuration.
            return

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("fleetwatch_shutting_down")

        self._running = False

        if self._rest_server is not None:
            self._rest_server.should_exit = True  # type: ignore[attr-defined]
        for task in reversed(self._background_tasks):
            try:
                await asyncio.wait_for(task, timeout=_SHUTDOWN_GRACE_SECONDS)
            except TimeoutError:
                log.warning("background_task_stop_timed_out", task=task.get_name())
            except Exception as exc:
                log.error("background_task_failed", task=task.get_name(), error=str(exc))
        self._background_tasks.clear()
        self._rest_server = None

        await self._stop_component("discovery", self._reconciler)
        await self._stop_component("alert_engine", self._engine)
        await self._stop_component("notifications", self._dispatcher)

        log.info("fleetwatch_stopped")

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Call stop() on a component if it has that method, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component_stop_timed_out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component_stop_failed", component=name, error=str(exc))


def _fleetwatch_version() -> str:
    from fleetwatch import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main(config: FleetWatchConfig | None = None) -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = FleetWatchApp(config)
    loop = asyncio.get_running_loop()

    shutdown_triggered = False

    def _request_shutdown() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            return
        shutdown_triggered = True
        asyncio.create_task(app.stop(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)
    loop.add_signal_handler(signal.SIGHUP, app._reload_from_signal)

    try:
        await app.start()
        while app.running:
            await asyncio.sleep(1)
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal_startup_error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()
