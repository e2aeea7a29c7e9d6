from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any


class ConfigError(RuntimeError):
    pass


def _as_int(value: Any, *, key: str) -> int:
    try:
        return int(value)
    except Exception as e:
        raise ConfigError(f"Invalid int for {key}: {value!r}") from e


def _as_float(value: Any, *, key: str) -> float:
    try:
        return float(value)
    except Exception as e:
        raise ConfigError(f"Invalid float for {key}: {value!r}") from e


def _as_str(value: Any, *, key: str) -> str:
    if value is None:
        raise ConfigError(f"Missing required config key: {key}")
    return str(value)


def _as_bool(value: Any, *, key: str) -> bool:
    if isinstance(value, bool):
        return value
    v = str(value).strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    raise ConfigError(f"Invalid bool for {key}: {value!r}")


def _require_cron(value: Any, *, key: str) -> str:
    """Validate a 5-field cron expression (the scheduler relies on croniter)."""
    from croniter import croniter  # type: ignore[import-untyped]

    s = _as_str(value, key=key).strip()
    if not croniter.is_valid(s):
        raise ConfigError(f"Invalid cron expression for {key}: {s!r}")
    return s


def _require_timezone(value: Any, *, key: str) -> str:
    from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

    s = _as_str(value, key=key).strip()
    try:
        ZoneInfo(s)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"Unknown timezone for {key}: {s!r}") from e
    return s


@dataclass(frozen=True)
class RunnerConfig:
    command: str = "gitlab-runner"
    executor: str = "shell"
    command_timeout_s: float = 60.0


@dataclass(frozen=True)
class CleanupConfig:
    enabled: bool = True
    # Calendar months, evaluated in `timezone`. `retention_days`, when set, replaces it.
    retention_months: int = 1
    retention_days: int | None = None
    cron: str = "0 0 * * *"
    timezone: str = "UTC"


@dataclass(frozen=True)
class StorageConfig:
    sqlite_path: str = "data/runnerhub.db"
    busy_timeout_ms: int = 5000


@dataclass(frozen=True)
class AppConfig:
    runner: RunnerConfig
    cleanup: CleanupConfig
    storage: StorageConfig


def default_config_path() -> Path:
    return Path(os.getenv("RUNNERHUB_CONFIG_PATH", "config/default.toml")).expanduser().resolve()


def load_app_config(path: Path | None = None) -> AppConfig:
    """Load config from TOML, falling back to built-in defaults when the file is absent.

    Env overrides (applied after the file):
    - RUNNERHUB_RUNNER_COMMAND -> runner.command
    - RUNNERHUB_SQLITE_PATH -> storage.sqlite_path
    """
    cfg_path = path or default_config_path()
    raw: dict[str, Any] = {}
    if cfg_path.exists():
        try:
            raw = tomllib.loads(cfg_path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {cfg_path}: {e}") from e
    elif path is not None:
        # An explicit path that does not exist is a caller mistake, not a fallback.
        raise ConfigError(f"Config file not found: {cfg_path}")

    runner = raw.get("runner", {})
    cleanup = raw.get("cleanup", {})
    storage = raw.get("storage", {})

    d_runner = RunnerConfig()
    d_cleanup = CleanupConfig()
    d_storage = StorageConfig()

    command = os.getenv("RUNNERHUB_RUNNER_COMMAND") or runner.get("command", d_runner.command)
    sqlite_path = os.getenv("RUNNERHUB_SQLITE_PATH") or storage.get("sqlite_path", d_storage.sqlite_path)

    command_s = _as_str(command, key="runner.command").strip()
    if not command_s:
        raise ConfigError("Invalid runner.command: empty string")

    timeout_s = _as_float(runner.get("command_timeout_s", d_runner.command_timeout_s), key="runner.command_timeout_s")
    if timeout_s <= 0:
        raise ConfigError(f"Invalid runner.command_timeout_s: must be > 0, got {timeout_s!r}")

    retention_months = _as_int(
        cleanup.get("retention_months", d_cleanup.retention_months), key="cleanup.retention_months"
    )
    if retention_months < 1:
        raise ConfigError(f"Invalid cleanup.retention_months: must be >= 1, got {retention_months!r}")

    retention_days: int | None = None
    if cleanup.get("retention_days") is not None:
        retention_days = _as_int(cleanup["retention_days"], key="cleanup.retention_days")
        if retention_days < 1:
            raise ConfigError(f"Invalid cleanup.retention_days: must be >= 1, got {retention_days!r}")

    return AppConfig(
        runner=RunnerConfig(
            command=command_s,
            executor=_as_str(runner.get("executor", d_runner.executor), key="runner.executor").strip(),
            command_timeout_s=timeout_s,
        ),
        cleanup=CleanupConfig(
            enabled=_as_bool(cleanup.get("enabled", d_cleanup.enabled), key="cleanup.enabled"),
            retention_months=retention_months,
            retention_days=retention_days,
            cron=_require_cron(cleanup.get("cron", d_cleanup.cron), key="cleanup.cron"),
            timezone=_require_timezone(cleanup.get("timezone", d_cleanup.timezone), key="cleanup.timezone"),
        ),
        storage=StorageConfig(
            sqlite_path=_as_str(sqlite_path, key="storage.sqlite_path"),
            busy_timeout_ms=_as_int(
                storage.get("busy_timeout_ms", d_storage.busy_timeout_ms), key="storage.busy_timeout_ms"
            ),
        ),
    )
