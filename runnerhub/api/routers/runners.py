from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from runnerhub.api.dependencies import get_caller, get_lifecycle_manager
from runnerhub.api.errors import APIError
from runnerhub.runtime.lifecycle import CallerContext, RunnerLifecycleManager
from runnerhub.storage.sqlite_store import RunnerRecord


router = APIRouter()


class RegisterRunnerRequest(BaseModel):
    url: str = Field(min_length=1, description="CI server URL the runner connects to.")
    registration_token: str = Field(min_length=1, description="One-time enrollment secret for the CI server.")
    name: str = Field(min_length=1, description="Display name shown to the owner.")
    tags: list[str] | str | None = Field(default=None, description="List or comma-separated string.")


def _record_to_dict(rec: RunnerRecord) -> dict[str, Any]:
    return {
        "runner_id": rec.runner_id,
        "owner_id": rec.owner_id,
        "name": rec.name,
        "url": rec.url,
        "token": rec.token,
        "created_at": float(rec.created_at),
    }


def _require_admin(caller: CallerContext) -> None:
    if not caller.is_admin:
        raise APIError(status_code=403, code="forbidden", message="Admin role required.")


@router.get("/runners")
def list_runners(
    scope: Literal["self", "admin"] = Query(default="self"),
    caller: CallerContext = Depends(get_caller),
    manager: RunnerLifecycleManager = Depends(get_lifecycle_manager),
) -> dict[str, Any]:
    views = manager.list_runners(caller, scope=scope)
    return {"items": [v.to_dict() for v in views], "scope": scope}


@router.get("/runners/live")
def list_live_runners(
    caller: CallerContext = Depends(get_caller),
    manager: RunnerLifecycleManager = Depends(get_lifecycle_manager),
) -> dict[str, Any]:
    items = manager.list_live(caller)
    return {
        "items": [
            {
                "name": i.name,
                "token": i.token,
                "status": i.status,
                "url": i.url,
                "owner_id": i.owner_id,
                "managed": i.managed,
            }
            for i in items
        ]
    }


@router.post("/runners")
def register_runner(
    body: RegisterRunnerRequest,
    caller: CallerContext = Depends(get_caller),
    manager: RunnerLifecycleManager = Depends(get_lifecycle_manager),
) -> dict[str, Any]:
    rec = manager.register_runner(
        caller,
        url=body.url,
        registration_token=body.registration_token,
        name=body.name,
        tags=body.tags,
    )
    return {"runner": _record_to_dict(rec)}


@router.delete("/runners/{runner_id}")
def delete_runner(
    runner_id: str,
    caller: CallerContext = Depends(get_caller),
    manager: RunnerLifecycleManager = Depends(get_lifecycle_manager),
) -> dict[str, Any]:
    rec = manager.delete_runner(caller, runner_id)
    return {"deleted": True, "runner_id": rec.runner_id}


@router.post("/runners/gc")
def run_gc_sweep(
    request: Request,
    caller: CallerContext = Depends(get_caller),
    manager: RunnerLifecycleManager = Depends(get_lifecycle_manager),
) -> dict[str, Any]:
    _require_admin(caller)
    scheduler = getattr(request.app.state, "cleanup_scheduler", None)
    if scheduler is None:
        return {"report": manager.gc_sweep().to_dict()}
    # Share the scheduler's overlap guard so a manual sweep never runs alongside a scheduled one.
    report = scheduler.run_once()
    if report is None:
        raise APIError(status_code=409, code="conflict", message="A cleanup sweep is already running.")
    return {"report": report.to_dict()}


@router.get("/events")
def list_events(
    limit: int = Query(default=100, ge=1, le=1000),
    runner_id: str | None = Query(default=None),
    caller: CallerContext = Depends(get_caller),
    manager: RunnerLifecycleManager = Depends(get_lifecycle_manager),
) -> dict[str, Any]:
    _require_admin(caller)
    store = manager.open_store()
    try:
        return {"items": store.list_events(limit=int(limit), runner_id=runner_id)}
    finally:
        store.close()
