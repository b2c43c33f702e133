from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from reservoir.runtime.sqlite_db import SqliteDB, SqliteLedgerStore


def _pragma(con: sqlite3.Connection, name: str) -> int | str:
    row = con.execute(f"PRAGMA {name};").fetchone()
    if row is None:
        raise AssertionError(f"missing pragma: {name}")
    # sqlite3.Row behaves like a tuple for PRAGMA single-value results
    return row[0]


def test_sqlite_operational_pragmas_are_applied(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    # Force deterministic defaults for this test.
    monkeypatch.setenv("RESERVOIR_MODE", "prod")
    monkeypatch.delenv("RESERVOIR_SQLITE_SYNCHRONOUS", raising=False)
    monkeypatch.setenv("RESERVOIR_SQLITE_BUSY_TIMEOUT_MS", "1234")

    db = SqliteDB(path=str(tmp_path / "reservoir.db"))
    db.init_schema()

    with db.connection() as con:
        jm = str(_pragma(con, "journal_mode")).lower()
        assert jm == "wal"

        # FULL is the prod default.
        sync = int(_pragma(con, "synchronous"))
        assert sync == 2

        assert int(_pragma(con, "foreign_keys")) == 1

        # MEMORY corresponds to 2
        assert int(_pragma(con, "temp_store")) == 2

        assert int(_pragma(con, "busy_timeout")) == 1234


def test_dev_mode_defaults_to_normal_sync(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RESERVOIR_MODE", "dev")
    monkeypatch.delenv("RESERVOIR_SQLITE_SYNCHRONOUS", raising=False)

    db = SqliteDB(path=str(tmp_path / "reservoir.db"))
    with db.connection() as con:
        assert int(_pragma(con, "synchronous")) == 1


def test_schema_version_mismatch_refuses_to_start(tmp_path: Path) -> None:
    db = SqliteDB(path=str(tmp_path / "reservoir.db"))
    db.init_schema()
    with db.write_tx() as con:
        con.execute("UPDATE meta SET value='99' WHERE key='schema_version';")

    with pytest.raises(RuntimeError):
        db.init_schema()


def test_store_commit_is_atomic_per_operation(tmp_path: Path) -> None:
    store = SqliteLedgerStore(db=SqliteDB(path=str(tmp_path / "reservoir.db")))
    assert not store.exists()
    assert store.max_event_seq() == 0

    store.commit({"op_seq": 1, "logic": {"ref": "reservoir.v1"}}, [{"seq": 1, "op_seq": 1, "event": "TRANSFER"}])
    assert store.read()["op_seq"] == 1
    assert store.max_event_seq() == 1

    # A duplicate event seq aborts the whole write, snapshot included.
    with pytest.raises(sqlite3.IntegrityError):
        store.commit({"op_seq": 2, "logic": {}}, [{"seq": 1, "op_seq": 2, "event": "TRANSFER"}])
    assert store.read()["op_seq"] == 1
    assert [e["event"] for e in store.read_events(after=0)] == ["TRANSFER"]
