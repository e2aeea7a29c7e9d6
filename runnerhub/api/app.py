from __future__ import annotations

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError

from runnerhub.api.errors import (
    APIError,
    api_error_handler,
    domain_error_handler,
    unhandled_error_handler,
    validation_error_handler,
    value_error_handler,
)
from runnerhub.errors import RunnerHubError
from runnerhub.runtime.cleanup import CleanupScheduler
from runnerhub.runtime.lifecycle import RunnerLifecycleManager

from .routers.health import router as health_router
from .routers.runners import router as runners_router


def _cors_origins_from_env() -> list[str]:
    raw = os.getenv("RUNNERHUB_CORS_ORIGINS", "").strip()
    if not raw:
        # Safe local defaults: allow typical dev ports.
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]
    return [o.strip() for o in raw.split(",") if o.strip()]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    return default


def create_app(manager: RunnerLifecycleManager | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ANN202
        mgr = getattr(app.state, "lifecycle_manager", None) or RunnerLifecycleManager()
        app.state.lifecycle_manager = mgr

        # Single background cleanup task (single-instance assumption).
        if mgr.config.cleanup.enabled and _env_bool("RUNNERHUB_ENABLE_SCHEDULER", True):
            scheduler = CleanupScheduler(mgr)
            scheduler.start()
            app.state.cleanup_scheduler = scheduler
        try:
            yield
        finally:
            scheduler = getattr(app.state, "cleanup_scheduler", None)
            if scheduler is not None:
                scheduler.stop()
                app.state.cleanup_scheduler = None

    app = FastAPI(title="runnerhub API", version="0.1.0", lifespan=lifespan)
    if manager is not None:
        app.state.lifecycle_manager = manager

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RunnerHubError, domain_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    origins = _cors_origins_from_env()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router, prefix="/api/v1", tags=["system"])
    app.include_router(runners_router, prefix="/api/v1", tags=["runners"])

    return app


app = create_app()
