# src/reservoir/runtime/sqlite_db.py
from __future__ import annotations

import json
import os
import random
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Sequence

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    """Canonical JSON encoding.

    Non-JSON types must fail here rather than be coerced into the snapshot.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


class SqliteDB:
    """SQLite manager for the reservoir engine.

    One durable DB file holds the ledger snapshot and the event log.
    Connections are never shared between threads.

    SQLite allows only one writer at a time; BEGIN IMMEDIATE can transiently
    fail with "database is locked" when another process holds the file, so
    write_tx() retries with bounded backoff.
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """Return a safe PRAGMA synchronous value.

        Defaults:
          - prod        -> FULL
          - dev/testnet -> NORMAL

        Override with RESERVOIR_SQLITE_SYNCHRONOUS in {OFF,NORMAL,FULL,EXTRA}.
        """
        mode = (os.environ.get("RESERVOIR_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("RESERVOIR_SQLITE_SYNCHRONOUS") or default).strip().upper()
        if raw not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()

        connect_timeout_s = float(_env_int("RESERVOIR_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0
        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        allow_non_wal = (os.environ.get("RESERVOIR_SQLITE_ALLOW_NON_WAL") or "").strip() in {"1", "true", "TRUE"}
        row = con.execute("PRAGMA journal_mode=WAL;").fetchone()
        mode = str(row[0]).strip().lower() if row is not None else ""
        if mode and mode != "wal" and not allow_non_wal:
            con.close()
            raise RuntimeError(f"sqlite journal_mode is '{mode}', expected 'wal'")

        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute("PRAGMA temp_store=MEMORY;")

        busy_ms = max(0, _env_int("RESERVOIR_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")
        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS ledger_state (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  op_seq INTEGER NOT NULL,
                  logic_ref TEXT NOT NULL,
                  state_json TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                  seq INTEGER PRIMARY KEY,
                  op_seq INTEGER NOT NULL,
                  event TEXT NOT NULL,
                  event_json TEXT NOT NULL,
                  created_ts_ms INTEGER NOT NULL
                );
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS idx_events_op_seq ON events(op_seq);")
            con.execute("CREATE INDEX IF NOT EXISTS idx_events_event ON events(event);")

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except ValueError:
                    v = 0
                if v != self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"sqlite schema_version mismatch: have={v} want={self.SCHEMA_VERSION}. "
                        "Refuse to start to avoid corrupting data."
                    )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return ("database is locked" in msg) or ("database is busy" in msg) or ("locked" in msg and "database" in msg)

    def _backoff(self, attempt: int, base_sleep: float, max_sleep: float) -> None:
        sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
        time.sleep(sleep_s * (0.5 + random.random()))

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction with bounded retry on writer-lock contention.

        Policy:
          - retry BEGIN IMMEDIATE (and COMMIT) until a deadline
          - exponential backoff with jitter
          - then raise if the lock cannot be acquired within the deadline
        """
        deadline_ms = max(250, _env_int("RESERVOIR_SQLITE_WRITE_DEADLINE_MS", 30_000))
        deadline_ts = _now_ms() + deadline_ms

        base_sleep = max(0.001, float(_env_int("RESERVOIR_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0)
        max_sleep = max(base_sleep, float(_env_int("RESERVOIR_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0)

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    self._backoff(attempt, base_sleep, max_sleep)
                    attempt += 1

            try:
                yield con

                c_attempt = 0
                while True:
                    try:
                        con.execute("COMMIT;")
                        break
                    except sqlite3.OperationalError as e:
                        if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                            raise
                        self._backoff(c_attempt, base_sleep, max_sleep)
                        c_attempt += 1
            except Exception:
                con.execute("ROLLBACK;")
                raise


class SqliteLedgerStore:
    """Ledger snapshot + event log persisted in SQLite.

    This provides:
      - read(): load the latest ledger snapshot
      - commit(st, events): overwrite the snapshot and append the operation's
        events inside one write transaction
      - read_events(after, limit): page through the event log

    The authoritative snapshot is a single row.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM ledger_state WHERE id=1;").fetchone() is not None

    def read(self) -> Json:
        with self._db.connection() as con:
            row = con.execute("SELECT state_json FROM ledger_state WHERE id=1;").fetchone()
            if row is None:
                raise FileNotFoundError("sqlite ledger_state is missing")
            st = json.loads(str(row["state_json"]))
            if not isinstance(st, dict):
                raise ValueError("ledger_state is not a JSON object")
            return st

    def commit(self, st: Json, events: Sequence[Json] = ()) -> None:
        if not isinstance(st, dict):
            raise ValueError("ledger commit expects dict")
        op_seq = int(st.get("op_seq", 0) or 0)
        logic = st.get("logic") if isinstance(st.get("logic"), dict) else {}
        logic_ref = str(logic.get("ref") or "")
        now = _now_ms()
        payload = _canon_json(st)
        rows = [
            (int(ev["seq"]), int(ev.get("op_seq", op_seq)), str(ev.get("event") or ""), _canon_json(ev), now)
            for ev in events
        ]
        with self._db.write_tx() as con:
            con.execute(
                """
                INSERT INTO ledger_state(id, op_seq, logic_ref, state_json, updated_ts_ms)
                VALUES(1, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  op_seq=excluded.op_seq,
                  logic_ref=excluded.logic_ref,
                  state_json=excluded.state_json,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                (op_seq, logic_ref, payload, now),
            )
            if rows:
                con.executemany(
                    "INSERT INTO events(seq, op_seq, event, event_json, created_ts_ms) VALUES(?, ?, ?, ?, ?);",
                    rows,
                )

    def max_event_seq(self) -> int:
        with self._db.connection() as con:
            row = con.execute("SELECT MAX(seq) AS s FROM events;").fetchone()
            return int(row["s"]) if (row is not None and row["s"] is not None) else 0

    def read_events(self, *, after: int = 0, limit: int = 100) -> List[Json]:
        with self._db.connection() as con:
            cur = con.execute(
                "SELECT event_json FROM events WHERE seq > ? ORDER BY seq ASC LIMIT ?;",
                (int(after), int(limit)),
            )
            return [json.loads(str(r["event_json"])) for r in cur.fetchall()]


__all__ = ["SqliteDB", "SqliteLedgerStore"]
