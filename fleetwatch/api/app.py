"""FastAPI application factory for fleetwatch.

Usage::

    from fleetwatch.api.app import create_app

    app = create_app(
        engine=engine,
        reconciler=reconciler,
        dispatcher=dispatcher,
        reload_fn=app_root.reload,
        config=config,
    )

Used by both the production bootstrap (``fleetwatch.app``) and unit tests.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from starlette.exceptions import HTTPException as StarletteHTTPException

from fleetwatch.api.routes import router
from fleetwatch.api.schemas import ErrorResponse

_log = structlog.get_logger(component="api.app")

_API_PREFIX = "/api/v1"


def create_app(
    engine: Any,
    reconciler: Any = None,
    dispatcher: Any = None,
    reload_fn: Callable[[], Any] | None = None,
    config: Any = None,
) -> FastAPI:
    """Create and configure the fleetwatch FastAPI application.

    Args:
        engine:     AlertEngine receiving ingested alerts.
        reconciler: DiscoveryReconciler, or None when discovery is disabled.
        dispatcher: NotificationDispatcher (drop counters for /status).
        reload_fn:  Callable re-reading the routing config; may be async.
        config:     FleetWatchConfig. Used for status metadata.

    Returns:
        Configured FastAPI application, ready to be served by uvicorn.
    """
    from fleetwatch import __version__

    app = FastAPI(
        title="fleetwatch",
        summary="ECS scrape-target discovery and alert routing",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
    )

    app.state.engine = engine
    app.state.reconciler = reconciler
    app.state.dispatcher = dispatcher
    app.state.reload_fn = reload_fn
    app.state.config = config

    app.include_router(router, prefix=_API_PREFIX)
    app.mount("/metrics", make_asgi_app())

    # -----------------------------------------------------------------------
    # Exception handlers
    # -----------------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        _request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = exc.errors()
        first_msg = str(errors[0].get("msg", "")) if errors else "invalid request"
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="INVALID_REQUEST", detail=first_msg).model_dump(),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        _request: Request,
        exc: StarletteHTTPException,
    ) -> JSONResponse:
        code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
        if exc.status_code == 405:
            code = "METHOD_NOT_ALLOWED"
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=code, detail=str(exc.detail)).model_dump(),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Catch-all for unhandled exceptions; never expose stack traces."""
        _log.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="INTERNAL_ERROR",
                detail="An unexpected error occurred.",
            ).model_dump(),
        )

    return app
