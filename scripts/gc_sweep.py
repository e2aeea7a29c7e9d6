#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from runnerhub.logging_setup import configure_console_logging  # noqa: E402
from runnerhub.runtime.lifecycle import RunnerLifecycleManager  # noqa: E402


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run one cleanup sweep (unregister + delete stale runners).")
    p.add_argument("--db-path", default="", help="SQLite path (default: config storage.sqlite_path).")
    p.add_argument("--retention-months", type=int, default=None, help="Override cleanup.retention_months.")
    p.add_argument("--retention-days", type=int, default=None, help="Use a fixed number of days instead of months.")
    p.add_argument("--log-level", default="info")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    configure_console_logging(args.log_level)
    manager = RunnerLifecycleManager(db_path=args.db_path or None)
    report = manager.gc_sweep(retention_days=args.retention_days, retention_months=args.retention_months)
    print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    return 1 if report.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
