"""FastAPI application entry point for the website egress monitor.

Define the FastAPI application instance, register middleware, and configure
the application lifespan. The lifespan resolves this instance's identity,
registers the probe metrics into a fresh registry and starts the probe loop
as a background task. All startup side effects happen there, in that order.
"""

import asyncio
import contextlib
import os
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from pydantic import ValidationError

from app.api.middleware import RequestCorrelationMiddleware
from app.config import get_settings
from app.webmon.core.errors import StartupError
from app.webmon.core.logging_config import (
    bind_monitor_context,
    configure_logging,
    get_logger,
)
from app.webmon.identity import resolve_identity
from app.webmon.metrics import ProbeMetrics
from app.webmon.probe import ProbeLoop, build_probe_client


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle events.

    Startup: configure logging, resolve the `from` label, register the
    metric series and start the probe task. Shutdown: stop the task and close
    the probe client.

    Args:
        app: FastAPI application instance.

    Yields:
        None: Control returns to the application after startup completes.

    Raises:
        StartupError: If the identity cannot be resolved or a series cannot be
            registered. uvicorn then aborts startup and exits non-zero.
    """
    # === STARTUP SEQUENCE ===

    settings = get_settings()
    configure_logging(settings)
    bind_monitor_context(settings)

    logger = get_logger("lifespan")
    logger.info("Webmon startup initiated", env=settings.ENVIRONMENT)
    app.state.is_ready = False

    registry = CollectorRegistry()
    try:
        origin = await asyncio.to_thread(resolve_identity, settings)
        metrics = ProbeMetrics(
            registry,
            origin=origin,
            namespace=settings.METRICS_NAMESPACE,
            subsystem=settings.METRICS_SUBSYSTEM,
            component=settings.COMPONENT_NAME,
        )
        metrics.register()
    except StartupError as e:
        logger.critical("Failed to initialize monitor", error=str(e))
        raise

    client = build_probe_client(settings)
    probe_loop = ProbeLoop.from_settings(settings, client, metrics)
    stop = asyncio.Event()
    task = asyncio.create_task(probe_loop.run(stop), name="probe-loop")

    app.state.registry = registry
    app.state.metrics = metrics
    app.state.probe_loop = probe_loop
    app.state.probe_task = task
    app.state.is_ready = True
    logger.info("Serving metrics", port=settings.SCRAPE_PORT, origin=origin)

    yield

    # === SHUTDOWN SEQUENCE ===

    logger.info("Webmon shutdown initiated")
    app.state.is_ready = False
    stop.set()
    # An in-flight probe has no timeout of its own; do not wait for it.
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
    await client.aclose()
    logger.info("Probe loop stopped", iterations=probe_loop.iterations)


app = FastAPI(
    title=os.getenv("PROJECT_NAME", "Webmon"),
    version=os.getenv("VERSION", "0.1.0"),
    description="Website load time and egress IP monitor",
    lifespan=lifespan,
)

app.add_middleware(RequestCorrelationMiddleware)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unhandled exceptions and return a generic 500 JSON response."""
    logger = get_logger("exception_handler")
    logger.error(
        "Unhandled exception occurred",
        error=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal Server Error",
            "request_id": request.headers.get("X-Request-ID"),
        },
    )


@app.get("/metrics", include_in_schema=False)
async def metrics_endpoint(request: Request) -> Response:
    """Expose every registered series in the Prometheus text format.

    Reads the registry built by the lifespan, never the prometheus_client
    default registry.
    """
    registry: CollectorRegistry = request.app.state.registry
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)


@app.get("/health/live", status_code=status.HTTP_200_OK)
async def liveness_probe() -> dict[str, str]:
    """Return liveness status for container orchestration.

    Does not look at the target: a failing target is reported through the
    error counter, not by restarting the monitor.

    Returns:
        dict[str, str]: Status indicator confirming the process is alive.
    """
    return {"status": "alive"}


@app.get("/health/ready", status_code=status.HTTP_200_OK)
async def readiness_probe(request: Request) -> dict[str, str]:
    """Return readiness status for scrape traffic.

    Ready once the metric series are registered and the probe task is alive.

    Args:
        request: Incoming HTTP request object.

    Returns:
        dict[str, str]: Status indicator confirming readiness.

    Raises:
        HTTPException: 503 Service Unavailable when the monitor is not running.
    """
    task = getattr(request.app.state, "probe_task", None)
    if not getattr(request.app.state, "is_ready", False) or task is None or task.done():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Monitor is starting up or the probe loop is not running"
        )

    return {"status": "ready"}


def run() -> None:
    """Process entry point: validate settings, then serve on the scrape port.

    Exits with status 1 on invalid configuration. Startup errors raised by the
    lifespan make uvicorn exit non-zero on its own.
    """
    try:
        settings = get_settings()
    except ValidationError as exc:
        get_logger("startup").critical("Invalid configuration", error=str(exc))
        sys.exit(1)

    configure_logging(settings)
    uvicorn.run(
        app,
        host=settings.SCRAPE_HOST,
        port=settings.SCRAPE_PORT,
        lifespan="on",
        log_config=None,
    )


if __name__ == "__main__":
    run()
