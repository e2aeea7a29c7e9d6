#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from runnerhub.config.load_config import load_app_config  # noqa: E402
from runnerhub.storage.sqlite_store import SQLiteStore  # noqa: E402


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Create or promote an owner to the admin role. Admin-owned runners are exempt from cleanup."
    )
    p.add_argument("--owner-id", required=True, help="Owner id as forwarded by the auth proxy (X-Caller-Id).")
    p.add_argument("--username", default="", help="Optional display username.")
    p.add_argument("--db-path", default="", help="SQLite path (default: config storage.sqlite_path).")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    db_path = args.db_path or load_app_config().storage.sqlite_path
    store = SQLiteStore(db_path)
    try:
        existing = store.get_owner(owner_id=str(args.owner_id))
        owner = store.upsert_owner(owner_id=str(args.owner_id), role="admin", username=args.username or None)
        if existing is None:
            print(f"Admin owner '{owner.owner_id}' created.")
        elif existing.role != "admin":
            print(f"Owner '{owner.owner_id}' already existed. Promoted to admin.")
        else:
            print(f"Owner '{owner.owner_id}' is already an admin.")
        return 0
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
