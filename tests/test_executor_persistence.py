from __future__ import annotations

import pytest

from reservoir.ledger.constants import UNIT
from reservoir.runtime.errors import ApplyError
from reservoir.runtime.executor import ExecutorError, ReservoirExecutor

from token_fixtures import ALICE, BOB, ENGINE, TREASURY, addr, new_executor, initialize, tx


def test_state_and_events_survive_restart(tmp_path) -> None:
    db = str(tmp_path / "data" / "reservoir.db")
    ex = new_executor(db_path=db, chain_id="reservoir-test")
    initialize(ex)
    ex.submit(tx("TRANSFER", TREASURY, {"to": ALICE, "amount": 10 * UNIT}))
    ex.submit(tx("TRANSFER", ALICE, {"to": BOB, "amount": UNIT}))
    state = ex.read_state()
    events = ex.events(limit=1000)

    again = new_executor(db_path=db, chain_id="reservoir-test")
    assert again.read_state() == state
    assert again.events(limit=1000) == events
    assert again.events(after=2, limit=1) == events[2:3]

    again.submit(tx("TRANSFER", BOB, {"to": ALICE, "amount": 1}))
    assert again.view().op_seq == state["op_seq"] + 1


def test_failed_operation_is_not_persisted(tmp_path) -> None:
    db = str(tmp_path / "reservoir.db")
    ex = new_executor(db_path=db)
    initialize(ex)
    state = ex.read_state()

    with pytest.raises(ApplyError):
        ex.submit(tx("TRANSFER", ALICE, {"to": BOB, "amount": UNIT}))

    again = new_executor(db_path=db)
    assert again.read_state() == state
    assert len(again.events(limit=1000)) == state["event_seq"]


def test_restart_refuses_mismatched_chain_or_engine(tmp_path) -> None:
    db = str(tmp_path / "reservoir.db")
    ex = new_executor(db_path=db, chain_id="reservoir-a")
    initialize(ex)

    with pytest.raises(ExecutorError):
        new_executor(db_path=db, chain_id="reservoir-b")

    with pytest.raises(ExecutorError):
        ReservoirExecutor(engine_address=addr(0xE1E1), chain_id="reservoir-a", db_path=db)


def test_in_memory_executor_pages_events() -> None:
    ex = new_executor()
    initialize(ex)
    first = ex.events(after=0, limit=2)
    assert [e["seq"] for e in first] == [1, 2]
    rest = ex.events(after=2, limit=100)
    assert rest[0]["seq"] == 3
    assert ex.view().engine_address == ENGINE


def test_events_are_copies() -> None:
    ex = new_executor()
    initialize(ex)
    ex.events(limit=1)[0]["event"] = "TAMPERED"
    assert ex.events(limit=1)[0]["event"] == "TRANSFER"
