import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from memostore.api import (
    routes_health,
    routes_metrics,
    routes_notes,
    routes_resources,
    routes_stats,
    routes_tags,
)
from memostore.core.config import get_settings
from memostore.core.logging import REQUEST_LOGGER, log_request, setup_logging
from memostore.core.metrics import MetricsCollector
from memostore.db.migrations import MigrationRunner
from memostore.db.sqlite import Database


def _get_endpoint_label(request: Request) -> str:
    route = request.scope.get("route")
    if route and hasattr(route, "path"):
        return f"{request.method} {route.path}"
    return f"{request.method} {request.url.path}"


def _get_owner_id(request: Request) -> Optional[int]:
    raw = request.path_params.get("ownerId") if request.path_params else None
    try:
        return int(raw) if raw is not None else None
    except ValueError:
        return None


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    # FatalMigrationError propagates: a half-migrated schema never serves
    schema_version = MigrationRunner(settings.db_path, settings).run()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        app.state.db.close()

    app = FastAPI(lifespan=lifespan)
    app.state.db = Database(settings.db_path, settings.db_max_connections)
    app.state.schema_version = schema_version
    app.state.settings = settings
    app.state.metrics = MetricsCollector()

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": "Invalid request"})

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception:
            logging.getLogger(REQUEST_LOGGER).exception(
                {"request_id": request_id, "path": request.url.path}
            )
            response = JSONResponse(
                status_code=500, content={"detail": "Internal Server Error"}
            )
        latency_ms = (time.perf_counter() - start) * 1000
        endpoint_label = _get_endpoint_label(request)
        owner_id = _get_owner_id(request)
        app.state.metrics.record_request(endpoint_label, owner_id, status_code, latency_ms)
        log_request(
            {
                "request_id": request_id,
                "owner_id": owner_id,
                "method": request.method,
                "path": request.url.path,
                "status": status_code,
                "latency_ms": latency_ms,
            }
        )
        response.headers["X-Request-Id"] = request_id
        return response

    app.include_router(routes_notes.router)
    app.include_router(routes_tags.router)
    app.include_router(routes_resources.router)
    app.include_router(routes_stats.router)
    app.include_router(routes_health.router)
    app.include_router(routes_metrics.router)

    return app


if os.getenv("APP_DISABLE_AUTOCREATE") == "1":
    app = FastAPI()
else:
    app = create_app()
