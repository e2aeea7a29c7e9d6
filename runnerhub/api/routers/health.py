from __future__ import annotations

import importlib.metadata
import time
from typing import Any

from fastapi import APIRouter, Depends, Request

from runnerhub.api.dependencies import get_lifecycle_manager
from runnerhub.runtime.lifecycle import RunnerLifecycleManager
from runnerhub.storage.sqlite_store import SCHEMA_VERSION


router = APIRouter()


def _pkg_version(name: str) -> str | None:
    try:
        return str(importlib.metadata.version(name))
    except importlib.metadata.PackageNotFoundError:
        return None


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/version")
def version() -> dict[str, Any]:
    return {
        "service": "runnerhub",
        "api": "v1",
        "schema_version": int(SCHEMA_VERSION),
        "deps": {
            "fastapi": _pkg_version("fastapi"),
            "uvicorn": _pkg_version("uvicorn"),
            "croniter": _pkg_version("croniter"),
        },
        "ts": time.time(),
    }


@router.get("/system/scheduler")
def system_scheduler(
    request: Request,
    manager: RunnerLifecycleManager = Depends(get_lifecycle_manager),
) -> dict[str, Any]:
    scheduler = getattr(request.app.state, "cleanup_scheduler", None)
    snapshot: dict[str, Any] = {"enabled": scheduler is not None, "running": False}
    if scheduler is not None:
        snapshot.update(scheduler.status_snapshot())

    store = manager.open_store()
    try:
        return {
            "ts": time.time(),
            "scheduler": snapshot,
            "store": {"runners": store.count_runners(), "db_path": str(store.db_path)},
            "retention_months": manager.config.cleanup.retention_months,
            "retention_days": manager.config.cleanup.retention_days,
        }
    finally:
        store.close()
