from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Sequence
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from runnerhub.config.load_config import AppConfig, load_app_config
from runnerhub.errors import ConflictError, ExecutionError, ForbiddenError, RegistrationError
from runnerhub.runners.invoker import ProcessInvoker
from runnerhub.runners.parser import LiveRunnerStatus, index_by_token, parse_runner_list, split_description_marker
from runnerhub.runtime.registration import RegistrationRequest, run_registration
from runnerhub.storage.sqlite_store import OWNER_ROLES, RunnerRecord, SQLiteStore


logger = logging.getLogger(__name__)


OFFLINE = "offline"

Role = Literal["admin", "user"]
ListScope = Literal["self", "admin"]

_SECONDS_PER_DAY = 86400.0


@dataclass(frozen=True)
class CallerContext:
    """Identity supplied by the upstream auth layer; trusted verbatim."""

    caller_id: str
    role: Role

    def __post_init__(self) -> None:
        if not str(self.caller_id or "").strip():
            raise ValueError("caller_id must not be empty.")
        if self.role not in OWNER_ROLES:
            raise ValueError(f"Invalid caller role: {self.role!r}")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass(frozen=True)
class RunnerView:
    runner_id: str
    owner_id: str
    name: str
    url: str
    token: str
    created_at: float
    status: str
    owner_role: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "runner_id": self.runner_id,
            "owner_id": self.owner_id,
            "name": self.name,
            "url": self.url,
            "token": self.token,
            "created_at": float(self.created_at),
            "status": self.status,
            "owner_role": self.owner_role,
        }


@dataclass(frozen=True)
class LiveRunnerView:
    name: str
    token: str
    status: str
    url: str | None
    owner_id: str | None
    managed: bool


@dataclass
class SweepReport:
    started_at: float
    cutoff: float
    candidates: int = 0
    deleted: int = 0
    skipped_admin: int = 0
    failed: int = 0
    failed_runner_ids: list[str] = field(default_factory=list)
    finished_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "cutoff": self.cutoff,
            "candidates": self.candidates,
            "deleted": self.deleted,
            "skipped_admin": self.skipped_admin,
            "failed": self.failed,
            "failed_runner_ids": list(self.failed_runner_ids),
        }


def retention_cutoff(now: float, *, months: int, timezone: str = "UTC") -> float:
    """Epoch seconds of the same wall-clock time `months` calendar months before `now`.

    Evaluated in `timezone`; a day missing from the target month clamps to its last
    day (31 March minus one month is the end of February).
    """
    local = datetime.fromtimestamp(now, tz=ZoneInfo(timezone))
    return (local - relativedelta(months=months)).timestamp()


def _merge_status(record: RunnerRecord, live_by_token: dict[str, LiveRunnerStatus]) -> str:
    live = live_by_token.get(record.token)
    return live.status if live is not None else OFFLINE


class RunnerLifecycleManager:
    """Correlates persisted runner ownership with the runner binary's live state.

    Thread-safe by construction: every public call opens its own SQLite connection and
    each binary invocation runs on the calling thread.
    """

    def __init__(
        self,
        *,
        invoker: ProcessInvoker | None = None,
        db_path: str | None = None,
        config: AppConfig | None = None,
    ) -> None:
        self._config = config or load_app_config()
        self._invoker = invoker or ProcessInvoker.from_config(self._config.runner)
        self._db_path = db_path or self._config.storage.sqlite_path

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def db_path(self) -> str:
        return self._db_path

    def open_store(self) -> SQLiteStore:
        return SQLiteStore(self._db_path, busy_timeout_ms=self._config.storage.busy_timeout_ms)

    def fetch_live(self) -> list[LiveRunnerStatus]:
        return parse_runner_list(self._invoker.list_output())

    def _live_index_or_empty(self) -> dict[str, LiveRunnerStatus]:
        try:
            return index_by_token(self.fetch_live())
        except ExecutionError as e:
            # Listing degrades to "everything offline" instead of failing the request.
            logger.warning("live runner list unavailable, reporting all runners offline: %s", e)
            return {}

    # --- List
    def list_runners(self, caller: CallerContext, *, scope: ListScope = "self") -> list[RunnerView]:
        if scope not in ("self", "admin"):
            raise ValueError(f"Invalid scope: {scope!r}")
        if scope == "admin" and not caller.is_admin:
            raise ForbiddenError("Admin scope requires the admin role.")

        store = self.open_store()
        try:
            if scope == "admin":
                rows = store.list_runners_with_owner_role()
            else:
                rows = [(r, None) for r in store.list_runners_for_owner(owner_id=caller.caller_id)]
        finally:
            store.close()

        live_by_token = self._live_index_or_empty()
        return [
            RunnerView(
                runner_id=r.runner_id,
                owner_id=r.owner_id,
                name=r.name,
                url=r.url,
                token=r.token,
                created_at=r.created_at,
                status=_merge_status(r, live_by_token),
                owner_role=owner_role,
            )
            for r, owner_role in rows
        ]

    def list_live(self, caller: CallerContext) -> list[LiveRunnerView]:
        """Raw live entries, annotated with whether this service tracks them (admin only).

        Unlike `list_runners`, a binary failure here is surfaced: there is nothing to degrade to.
        """
        if not caller.is_admin:
            raise ForbiddenError("Listing live runners requires the admin role.")
        live = self.fetch_live()
        store = self.open_store()
        try:
            managed_tokens = {r.token for r in store.list_runners()}
        finally:
            store.close()
        out: list[LiveRunnerView] = []
        for s in live:
            owner_id, _display = split_description_marker(s.name)
            out.append(
                LiveRunnerView(
                    name=s.name,
                    token=s.token,
                    status=s.status,
                    url=s.url,
                    owner_id=owner_id,
                    managed=s.token in managed_tokens,
                )
            )
        return out

    # --- Register
    def register_runner(
        self,
        caller: CallerContext,
        *,
        url: str,
        registration_token: str,
        name: str,
        tags: Sequence[str] | str | None = None,
    ) -> RunnerRecord:
        request = RegistrationRequest(
            owner_id=caller.caller_id,
            url=url,
            registration_token=registration_token,
            display_name=name,
            tags=tags,
            owner_role=caller.role,
        )
        request.validate()

        store = self.open_store()
        try:
            try:
                attempt = run_registration(request, invoker=self._invoker, store=store)
            except (RegistrationError, ConflictError) as e:
                logger.error("runner registration failed for owner %s: %s", caller.caller_id, e)
                self._record_event(
                    store,
                    "runner_registration_failed",
                    {
                        "owner_id": caller.caller_id,
                        "name": name,
                        "error": str(e),
                        "type": type(e).__name__,
                        "compensated": bool(getattr(e, "compensated", False)),
                    },
                    None,
                )
                raise
            record = attempt.record
            assert record is not None
            logger.info("registered runner %s (%r) for owner %s", record.runner_id, record.name, record.owner_id)
            self._record_event(
                store,
                "runner_registered",
                {"owner_id": record.owner_id, "name": record.name, "url": record.url},
                record.runner_id,
            )
            return record
        finally:
            store.close()

    # --- Delete
    def delete_runner(self, caller: CallerContext, runner_id: str) -> RunnerRecord:
        """Unregister a runner from the binary, then drop its record.

        The record survives any binary failure: persisted state is only removed after the
        binary confirms.
        """
        store = self.open_store()
        try:
            record = store.get_runner(runner_id=runner_id)
            if not (caller.is_admin or record.owner_id == caller.caller_id):
                raise ForbiddenError("You are not authorized to delete this runner.")

            try:
                self._invoker.unregister_by_token(record.token)
            except ExecutionError as e:
                logger.error("unregister failed for runner %s; record kept: %s", record.runner_id, e)
                self._record_event(
                    store,
                    "runner_unregister_failed",
                    {"by": caller.caller_id, "error": str(e), "stderr": e.stderr, "timed_out": e.timed_out},
                    record.runner_id,
                )
                raise

            store.delete_runner(runner_id=record.runner_id)
            logger.info("deleted runner %s (by %s)", record.runner_id, caller.caller_id)
            self._record_event(
                store,
                "runner_unregistered",
                {"by": caller.caller_id, "role": caller.role, "owner_id": record.owner_id},
                record.runner_id,
            )
            return record
        finally:
            store.close()

    @staticmethod
    def _record_event(store: SQLiteStore, event_type: str, payload: dict[str, Any], runner_id: str | None) -> None:
        # Audit events are diagnostic; losing one must not fail the operation it describes.
        try:
            store.append_event(event_type, payload, runner_id=runner_id)
        except Exception:  # noqa: BLE001
            logger.exception("could not record %s event (runner_id=%s)", event_type, runner_id)

    # --- GC
    def gc_sweep(
        self,
        *,
        now: float | None = None,
        retention_days: int | None = None,
        retention_months: int | None = None,
    ) -> SweepReport:
        """Unregister and delete runners older than the retention period.

        The period is `cleanup.retention_months` calendar months unless a day count is
        given (argument or `cleanup.retention_days`). Admin-owned runners are never
        touched. A candidate whose unregister fails keeps its record for a later sweep;
        it is not retried within this pass.
        """
        cfg = self._config.cleanup
        ts = time.time() if now is None else float(now)
        if retention_days is None and retention_months is None:
            retention_days = cfg.retention_days
        if retention_days is not None:
            cutoff = ts - int(retention_days) * _SECONDS_PER_DAY
            period = f"{int(retention_days)}d"
        else:
            months = cfg.retention_months if retention_months is None else int(retention_months)
            cutoff = retention_cutoff(ts, months=months, timezone=cfg.timezone)
            period = f"{months}mo"
        report = SweepReport(started_at=ts, cutoff=cutoff)

        logger.info("gc sweep started (cutoff=%.0f, retention=%s)", report.cutoff, period)
        store = self.open_store()
        try:
            candidates = store.list_runners_created_before(cutoff=report.cutoff)
            report.candidates = len(candidates)
            for record, owner_role in candidates:
                if owner_role == "admin":
                    logger.info("gc: skipping admin-owned runner %s", record.runner_id)
                    report.skipped_admin += 1
                    self._record_event(store, "gc_skipped_admin", {"owner_id": record.owner_id}, record.runner_id)
                    continue
                try:
                    self._invoker.unregister_by_token(record.token)
                    store.delete_runner(runner_id=record.runner_id)
                except Exception as e:  # noqa: BLE001 - one candidate must not abort the sweep
                    logger.error("gc: failed to remove runner %s; will retry next sweep: %s", record.runner_id, e)
                    report.failed += 1
                    report.failed_runner_ids.append(record.runner_id)
                    self._record_event(store, "gc_failed", {"error": str(e)}, record.runner_id)
                    continue
                logger.info("gc: deleted runner %s (owner %s)", record.runner_id, record.owner_id)
                report.deleted += 1
                self._record_event(
                    store,
                    "gc_deleted",
                    {"owner_id": record.owner_id, "created_at": record.created_at},
                    record.runner_id,
                )
            report.finished_at = time.time()
            self._record_event(store, "gc_sweep_completed", report.to_dict(), None)
        finally:
            store.close()
        logger.info(
            "gc sweep finished: candidates=%d deleted=%d skipped_admin=%d failed=%d",
            report.candidates,
            report.deleted,
            report.skipped_admin,
            report.failed,
        )
        return report
