from __future__ import annotations

import json
import os
import sqlite3
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from runnerhub.errors import ConflictError, NotFoundError


SCHEMA_VERSION = 1

OWNER_ROLES = ("admin", "user")


def _utc_ts() -> float:
    return time.time()


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def _json_dumps(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def default_db_path() -> str:
    return os.getenv("RUNNERHUB_SQLITE_PATH", "data/runnerhub.db")


@dataclass(frozen=True)
class RunnerRecord:
    runner_id: str
    owner_id: str
    token: str
    name: str
    url: str
    created_at: float


@dataclass(frozen=True)
class OwnerRecord:
    owner_id: str
    role: str
    username: str | None
    created_at: float
    updated_at: float


def _runner_from_row(r: sqlite3.Row) -> RunnerRecord:
    return RunnerRecord(
        runner_id=str(r["runner_id"]),
        owner_id=str(r["owner_id"]),
        token=str(r["token"]),
        name=str(r["name"]),
        url=str(r["url"]),
        created_at=float(r["created_at"]),
    )


class SQLiteStore:
    """SQLite-backed ownership store for runners.

    Design goals:
    - Single service instance; one connection per store object, one store per unit of work.
    - `runners.token` is UNIQUE: the database, not the caller, decides the winner of a race.
    - Owners are external accounts mirrored only by id and role (no credentials here).
    """

    def __init__(self, db_path: str | Path | None = None, *, busy_timeout_ms: int = 5000) -> None:
        self.db_path = Path(db_path or default_db_path()).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), timeout=max(0, busy_timeout_ms) / 1000.0)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)};")
        self._conn.execute("PRAGMA journal_mode = WAL;")
        self._conn.execute("PRAGMA synchronous = NORMAL;")

        self._init_schema()

    def close(self) -> None:
        self._conn.close()

    def _init_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS meta (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS runners (
              runner_id TEXT PRIMARY KEY,
              owner_id TEXT NOT NULL,
              token TEXT NOT NULL UNIQUE,
              name TEXT NOT NULL,
              url TEXT NOT NULL,
              created_at REAL NOT NULL
            );
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_runners_owner ON runners(owner_id);")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_runners_created_at ON runners(created_at);")
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS owners (
              owner_id TEXT PRIMARY KEY,
              role TEXT NOT NULL CHECK (role IN ('admin', 'user')),
              username TEXT,
              created_at REAL NOT NULL,
              updated_at REAL NOT NULL
            );
            """
        )
        # Lifecycle audit trail (diagnostic only; never consulted for runner state).
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS events (
              event_id TEXT PRIMARY KEY,
              runner_id TEXT,
              created_at REAL NOT NULL,
              event_type TEXT NOT NULL,
              payload_json TEXT NOT NULL
            );
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_events_runner ON events(runner_id, created_at);")
        cur.execute(
            "INSERT INTO meta(key, value) VALUES('schema_version', ?) ON CONFLICT(key) DO NOTHING;",
            (str(SCHEMA_VERSION),),
        )
        self._conn.commit()

    def schema_version(self) -> int:
        row = self._conn.execute("SELECT value FROM meta WHERE key = 'schema_version' LIMIT 1;").fetchone()
        return int(row["value"]) if row is not None else 0

    # --- Runners
    def insert_runner(
        self,
        *,
        owner_id: str,
        token: str,
        name: str,
        url: str,
        owner_role: str | None = None,
    ) -> RunnerRecord:
        """Insert a runner record; with `owner_role`, upsert the owner in the same commit."""
        if owner_role is not None and owner_role not in OWNER_ROLES:
            raise ValueError(f"Invalid owner role: {owner_role!r}")
        runner_id = _new_id("runner")
        created_at = _utc_ts()
        try:
            if owner_role is not None:
                self._write_owner(owner_id=owner_id, role=owner_role, username=None, ts=created_at)
            self._conn.execute(
                """
                INSERT INTO runners(runner_id, owner_id, token, name, url, created_at)
                VALUES(?, ?, ?, ?, ?, ?);
                """,
                (runner_id, owner_id, token, name, url, created_at),
            )
            self._conn.commit()
        except sqlite3.IntegrityError as e:
            self._conn.rollback()
            raise ConflictError("Runner token already registered.", details={"token_conflict": True}) from e
        except Exception:
            self._conn.rollback()
            raise
        return RunnerRecord(
            runner_id=runner_id,
            owner_id=owner_id,
            token=token,
            name=name,
            url=url,
            created_at=created_at,
        )

    def find_runner(self, *, runner_id: str) -> RunnerRecord | None:
        row = self._conn.execute(
            "SELECT runner_id, owner_id, token, name, url, created_at FROM runners WHERE runner_id = ? LIMIT 1;",
            (runner_id,),
        ).fetchone()
        return _runner_from_row(row) if row is not None else None

    def get_runner(self, *, runner_id: str) -> RunnerRecord:
        rec = self.find_runner(runner_id=runner_id)
        if rec is None:
            raise NotFoundError(f"Runner not found: {runner_id}")
        return rec

    def get_runner_by_token(self, *, token: str) -> RunnerRecord:
        row = self._conn.execute(
            "SELECT runner_id, owner_id, token, name, url, created_at FROM runners WHERE token = ? LIMIT 1;",
            (token,),
        ).fetchone()
        if row is None:
            raise NotFoundError("Runner not found for token.")
        return _runner_from_row(row)

    def list_runners_for_owner(self, *, owner_id: str) -> list[RunnerRecord]:
        rows = self._conn.execute(
            """
            SELECT runner_id, owner_id, token, name, url, created_at
            FROM runners
            WHERE owner_id = ?
            ORDER BY created_at ASC, runner_id ASC;
            """,
            (owner_id,),
        ).fetchall()
        return [_runner_from_row(r) for r in rows]

    def list_runners(self) -> list[RunnerRecord]:
        rows = self._conn.execute(
            """
            SELECT runner_id, owner_id, token, name, url, created_at
            FROM runners
            ORDER BY created_at ASC, runner_id ASC;
            """
        ).fetchall()
        return [_runner_from_row(r) for r in rows]

    def list_runners_with_owner_role(self) -> list[tuple[RunnerRecord, str | None]]:
        rows = self._conn.execute(
            """
            SELECT r.runner_id, r.owner_id, r.token, r.name, r.url, r.created_at, o.role AS owner_role
            FROM runners r
            LEFT JOIN owners o ON o.owner_id = r.owner_id
            ORDER BY r.created_at ASC, r.runner_id ASC;
            """
        ).fetchall()
        return [(_runner_from_row(r), r["owner_role"]) for r in rows]

    def list_runners_created_before(self, *, cutoff: float) -> list[tuple[RunnerRecord, str | None]]:
        """Return (record, owner_role) for runners created strictly before `cutoff`.

        Owners unknown to the store come back with role None.
        """
        rows = self._conn.execute(
            """
            SELECT r.runner_id, r.owner_id, r.token, r.name, r.url, r.created_at, o.role AS owner_role
            FROM runners r
            LEFT JOIN owners o ON o.owner_id = r.owner_id
            WHERE r.created_at < ?
            ORDER BY r.created_at ASC, r.runner_id ASC;
            """,
            (float(cutoff),),
        ).fetchall()
        return [(_runner_from_row(r), r["owner_role"]) for r in rows]

    def count_runners(self) -> int:
        row = self._conn.execute("SELECT COUNT(1) AS n FROM runners;").fetchone()
        return int(row["n"]) if row is not None else 0

    def delete_runner(self, *, runner_id: str) -> bool:
        cur = self._conn.execute("DELETE FROM runners WHERE runner_id = ?;", (runner_id,))
        self._conn.commit()
        return cur.rowcount == 1

    # --- Owners
    def upsert_owner(self, *, owner_id: str, role: str, username: str | None = None) -> OwnerRecord:
        if role not in OWNER_ROLES:
            raise ValueError(f"Invalid owner role: {role!r}")
        self._write_owner(owner_id=owner_id, role=role, username=username, ts=_utc_ts())
        self._conn.commit()
        owner = self.get_owner(owner_id=owner_id)
        assert owner is not None
        return owner

    def _write_owner(self, *, owner_id: str, role: str, username: str | None, ts: float) -> None:
        self._conn.execute(
            """
            INSERT INTO owners(owner_id, role, username, created_at, updated_at)
            VALUES(?, ?, ?, ?, ?)
            ON CONFLICT(owner_id) DO UPDATE SET
              role = excluded.role,
              username = COALESCE(excluded.username, owners.username),
              updated_at = excluded.updated_at;
            """,
            (owner_id, role, username, ts, ts),
        )

    def get_owner(self, *, owner_id: str) -> OwnerRecord | None:
        row = self._conn.execute(
            "SELECT owner_id, role, username, created_at, updated_at FROM owners WHERE owner_id = ? LIMIT 1;",
            (owner_id,),
        ).fetchone()
        if row is None:
            return None
        return OwnerRecord(
            owner_id=str(row["owner_id"]),
            role=str(row["role"]),
            username=row["username"],
            created_at=float(row["created_at"]),
            updated_at=float(row["updated_at"]),
        )

    # --- Events (audit trail)
    def append_event(self, event_type: str, payload: dict[str, Any], *, runner_id: str | None = None) -> str:
        event_id = _new_id("evt")
        self._conn.execute(
            """
            INSERT INTO events(event_id, runner_id, created_at, event_type, payload_json)
            VALUES(?, ?, ?, ?, ?);
            """,
            (event_id, runner_id, _utc_ts(), event_type, _json_dumps(payload)),
        )
        self._conn.commit()
        return event_id

    def list_events(self, *, limit: int = 100, runner_id: str | None = None) -> list[dict[str, Any]]:
        if runner_id is None:
            rows = self._conn.execute(
                """
                SELECT event_id, runner_id, created_at, event_type, payload_json
                FROM events
                ORDER BY created_at DESC, event_id DESC
                LIMIT ?;
                """,
                (int(limit),),
            ).fetchall()
        else:
            rows = self._conn.execute(
                """
                SELECT event_id, runner_id, created_at, event_type, payload_json
                FROM events
                WHERE runner_id = ?
                ORDER BY created_at DESC, event_id DESC
                LIMIT ?;
                """,
                (runner_id, int(limit)),
            ).fetchall()
        return [
            {
                "event_id": r["event_id"],
                "runner_id": r["runner_id"],
                "created_at": float(r["created_at"]),
                "event_type": r["event_type"],
                "payload": json.loads(r["payload_json"]),
            }
            for r in rows
        ]
