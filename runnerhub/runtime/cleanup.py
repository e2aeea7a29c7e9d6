from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from croniter import croniter  # type: ignore[import-untyped]

from runnerhub.config.load_config import CleanupConfig
from runnerhub.runtime.lifecycle import RunnerLifecycleManager, SweepReport


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchedulerConfig:
    cron: str = "0 0 * * *"
    timezone: str = "UTC"

    @classmethod
    def from_cleanup(cls, cfg: CleanupConfig) -> "SchedulerConfig":
        return cls(cron=cfg.cron, timezone=cfg.timezone)


def next_fire_time(cron: str, *, after: float, timezone: str = "UTC") -> float:
    """Epoch seconds of the first cron tick strictly after `after`, evaluated in `timezone`."""
    base = datetime.fromtimestamp(after, tz=ZoneInfo(timezone))
    return float(croniter(cron, base).get_next(datetime).timestamp())


class CleanupScheduler:
    """Single background thread that runs the GC sweep on a cron cadence.

    Overlapping triggers are skipped: if a sweep (scheduled or `run_once`) is still in
    progress when the next one fires, the new one returns immediately.
    """

    def __init__(self, manager: RunnerLifecycleManager, *, config: SchedulerConfig | None = None) -> None:
        self._manager = manager
        self._config = config or SchedulerConfig.from_cleanup(manager.config.cleanup)
        if not croniter.is_valid(self._config.cron):
            raise ValueError(f"Invalid cron expression: {self._config.cron!r}")
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._sweep_lock = threading.Lock()

        self._next_run_at: float | None = None
        self._last_report: SweepReport | None = None
        self._last_error: str | None = None
        self._runs = 0
        self._skipped_overlaps = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def sweep_in_progress(self) -> bool:
        return self._sweep_lock.locked()

    def status_snapshot(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "cron": self._config.cron,
            "timezone": self._config.timezone,
            "next_run_at": self._next_run_at,
            "sweep_in_progress": self.sweep_in_progress,
            "runs": self._runs,
            "skipped_overlaps": self._skipped_overlaps,
            "last_report": self._last_report.to_dict() if self._last_report is not None else None,
            "last_error": self._last_error,
        }

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name="runnerhub-cleanup", daemon=True)
        self._thread.start()
        logger.info("cleanup scheduler started (cron=%r, tz=%s)", self._config.cron, self._config.timezone)

    def stop(self, *, timeout_s: float = 5.0) -> None:
        self._stop.set()
        t = self._thread
        if t is None:
            return
        t.join(timeout=timeout_s)
        self._thread = None
        self._next_run_at = None
        logger.info("cleanup scheduler stopped")

    def run_once(self, *, now: float | None = None) -> SweepReport | None:
        """Run one sweep now. Returns None if another sweep is already running."""
        if not self._sweep_lock.acquire(blocking=False):
            self._skipped_overlaps += 1
            logger.warning("cleanup sweep skipped: previous sweep still running")
            return None
        try:
            report = self._manager.gc_sweep(now=now)
            self._last_report = report
            self._last_error = None
            self._runs += 1
            return report
        finally:
            self._sweep_lock.release()

    def _run_loop(self) -> None:
        while not self._stop.is_set():
            self._next_run_at = next_fire_time(self._config.cron, after=time.time(), timezone=self._config.timezone)
            # Event.wait returns early on stop(); otherwise sleep until the tick.
            while not self._stop.is_set():
                remaining = self._next_run_at - time.time()
                if remaining <= 0:
                    break
                self._stop.wait(timeout=min(remaining, 60.0))
            if self._stop.is_set():
                return
            try:
                self.run_once()
            except Exception as e:  # noqa: BLE001 - never crash the scheduler loop
                self._last_error = str(e)
                logger.exception("cleanup sweep failed")
