"""FastAPI application wiring for the task automation dashboard.

Beginner terms used in this file:
- FastAPI app: the main web application object.
- Route/path operation: a function exposed over HTTP (for example, GET /health).
- response_model: Pydantic model used to validate/shape API responses.
- app.state: a place to store shared runtime objects (storage, lifecycle, worker).
- Lifespan: code that runs once at startup (before the first request) and once
  at shutdown; here it migrates/seeds storage and starts/stops the worker.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse

from .app.catalog import list_tasks, seed_catalog
from .app.errors import DashboardError, StorageError
from .app.lifecycle import Clock, RunLifecycle, utc_now
from .app.logging_setup import configure_logging
from .app.models import CreateRunRequest, RunDetail, RunSummary, TaskWithRuns
from .app.settings import Settings, get_settings
from .app.storage import DashboardStorage, build_storage
from .app.ui import render_dashboard
from .app.worker import TransitionWorker

logger = logging.getLogger(__name__)


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    clock: Clock,
    storage_override: DashboardStorage | None,
) -> None:
    if not hasattr(app.state, "storage"):
        storage = storage_override or build_storage(settings)
        storage.migrate()
        if settings.seed_catalog_on_startup:
            seed_catalog(storage)
        app.state.storage = storage

    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "lifecycle"):
        app.state.lifecycle = RunLifecycle(
            app.state.storage,
            clock=clock,
            dev_user_email=settings.dev_user_email,
        )

    if not hasattr(app.state, "worker"):
        app.state.worker = TransitionWorker(
            storage=app.state.storage,
            lifecycle=app.state.lifecycle,
            poll_interval_s=settings.worker_poll_interval_s,
            batch_size=settings.worker_batch_size,
            lease_s=settings.worker_lease_s,
            max_attempts=settings.transition_max_attempts,
            retry_backoff_s=settings.transition_retry_backoff_s,
        )


def create_app(
    *,
    storage: DashboardStorage | None = None,
    settings_override: Settings | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """Application factory.

    Storage is built lazily from settings at startup unless one is injected;
    tests inject InMemoryDashboardStorage and a controllable clock.
    """
    settings = settings_override or get_settings()
    configure_logging(settings.log_level)
    effective_clock = clock or utc_now

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure_runtime_state(
            app,
            settings=settings,
            clock=effective_clock,
            storage_override=storage,
        )
        if settings.worker_enabled:
            app.state.worker.start()
        logger.info(
            "app event=startup app_env=%s storage=%s worker_enabled=%s",
            settings.app_env,
            type(app.state.storage).__name__,
            settings.worker_enabled,
        )
        try:
            yield
        finally:
            app.state.worker.stop()
            app.state.storage.close()
            logger.info("app event=shutdown")

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if storage is not None:
        _ensure_runtime_state(
            app,
            settings=settings,
            clock=effective_clock,
            storage_override=storage,
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.web_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        started_at = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "http_request method=%s path=%s status=%s duration_ms=%.2f",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started_at) * 1000.0,
        )
        return response

    @app.exception_handler(DashboardError)
    async def handle_dashboard_error(request: Request, exc: DashboardError) -> JSONResponse:
        if isinstance(exc, StorageError):
            logger.error("storage event=request_failed path=%s error=%s", request.url.path, exc)
            return JSONResponse(status_code=exc.status_code, content={"error": "internal server error"})
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "invalid request body"})

    def _get_lifecycle(request: Request) -> RunLifecycle:
        if not hasattr(request.app.state, "lifecycle"):
            _ensure_runtime_state(
                request.app,
                settings=settings,
                clock=effective_clock,
                storage_override=storage,
            )
        return request.app.state.lifecycle

    @app.get("/", response_class=HTMLResponse)
    def home() -> str:
        return render_dashboard(app_name=settings.app_name)

    @app.get("/favicon.ico", include_in_schema=False)
    def favicon() -> Response:
        return Response(status_code=204)

    @app.get("/health")
    def health() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/tasks", response_model=list[TaskWithRuns])
    def get_tasks(request: Request) -> list[TaskWithRuns]:
        lifecycle = _get_lifecycle(request)
        return list_tasks(lifecycle.storage, recent_runs_limit=settings.recent_runs_limit)

    @app.post("/runs", response_model=RunSummary, status_code=201)
    def create_run(request: Request, payload: CreateRunRequest | None = None) -> RunSummary:
        lifecycle = _get_lifecycle(request)
        run = lifecycle.create_run(payload.task_key if payload else None)
        return RunSummary.from_run(run)

    @app.get("/runs/{run_id}", response_model=RunDetail)
    def get_run(run_id: str, request: Request) -> RunDetail:
        return _get_lifecycle(request).get_run(run_id)

    return app


# Module-level app for `uvicorn task_dashboard_api.main:app`.
app = create_app()
