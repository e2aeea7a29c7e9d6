from __future__ import annotations

import threading

from fastapi import Header, Request

from runnerhub.api.errors import APIError
from runnerhub.runtime.lifecycle import CallerContext, RunnerLifecycleManager


_MANAGER_INIT_LOCK = threading.Lock()


def get_lifecycle_manager(request: Request) -> RunnerLifecycleManager:
    """FastAPI dependency: returns the app-wide RunnerLifecycleManager (lazy init).

    The lifespan normally creates it; tests may also inject one via `app.state.lifecycle_manager`.
    """
    cached = getattr(request.app.state, "lifecycle_manager", None)
    if isinstance(cached, RunnerLifecycleManager):
        return cached

    with _MANAGER_INIT_LOCK:
        cached2 = getattr(request.app.state, "lifecycle_manager", None)
        if isinstance(cached2, RunnerLifecycleManager):
            return cached2
        manager = RunnerLifecycleManager()
        request.app.state.lifecycle_manager = manager
        return manager


def get_caller(
    caller_id: str | None = Header(default=None, alias="X-Caller-Id"),
    caller_role: str | None = Header(default=None, alias="X-Caller-Role"),
) -> CallerContext:
    """FastAPI dependency: caller identity forwarded by the upstream auth proxy.

    No credential check happens here; the proxy is trusted to set these headers.
    """
    cid = (caller_id or "").strip()
    role = (caller_role or "").strip().lower()
    if not cid or not role:
        raise APIError(status_code=401, code="unauthenticated", message="Missing caller identity headers.")
    try:
        return CallerContext(caller_id=cid, role=role)  # type: ignore[arg-type]
    except ValueError as e:
        raise APIError(status_code=401, code="unauthenticated", message=str(e)) from e
