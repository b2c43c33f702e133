from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Optional

import pytest

from reservoir.ledger.constants import UNIT
from reservoir.ledger.migrations import BASE_LAYOUT
from reservoir.runtime.errors import ApplyError
from reservoir.runtime.executor import ExecutorError
from reservoir.runtime.gates import require_owner
from reservoir.runtime.logic import V1, LogicRegistry, LogicVersion
from reservoir.runtime.tx_admission_types import TxEnvelope

from token_fixtures import ADMIN, ALICE, BOB, TREASURY, event_names, give, new_executor, initialize, tx

Json = Dict[str, Any]


def apply_memo(state: Json, env: TxEnvelope) -> Optional[Json]:
    if str(env.tx_type or "").strip().upper() != "SET_MEMO":
        return None
    owner = require_owner(state, env)
    state["memos"][owner] = str(env.payload.get("memo") or "")
    return {"applied": "SET_MEMO", "owner": owner}


V2 = LogicVersion(
    ref="reservoir.v2",
    version=2,
    layout=BASE_LAYOUT + ("memos",),
    appliers=V1.appliers + (apply_memo,),
    tx_types=V1.tx_types | {"SET_MEMO"},
    defaults={"memos": {}},
)


def _registry(*extra: LogicVersion) -> LogicRegistry:
    return LogicRegistry([V1, V2, *extra])


def _executor(*extra: LogicVersion, **kw: Any):
    ex = new_executor(registry=_registry(*extra), **kw)
    initialize(ex)
    give(ex, ALICE, 10)
    ex.submit(tx("APPROVE", ALICE, {"spender": BOB, "amount": 3 * UNIT}))
    return ex


def _business_state(st: Json) -> Json:
    return {k: st[k] for k in ("balances", "allowances", "tax", "exempt", "reward_pool", "roles", "owner")}


def test_new_operation_is_unknown_before_upgrade() -> None:
    ex = _executor()
    with pytest.raises(ApplyError) as e:
        ex.submit(tx("SET_MEMO", TREASURY, {"memo": "hi"}))
    assert e.value.code == "tx_unimplemented"


def test_upgrade_appends_field_and_preserves_state() -> None:
    ex = _executor()
    before = ex.read_state()

    out = ex.submit(tx("AUTHORIZE_UPGRADE", ADMIN, {"logic_ref": "reservoir.v2"}))

    assert out["result"]["added_fields"] == ["memos"]
    assert event_names(out) == ["UPGRADED"]
    upgraded = out["events"][0]
    assert upgraded["previous_ref"] == "reservoir.v1"
    assert upgraded["new_ref"] == "reservoir.v2"
    assert upgraded["version"] == 2
    assert upgraded["sender"] == ADMIN

    after = ex.read_state()
    assert _business_state(after) == _business_state(before)
    assert after["memos"] == {}
    assert after["layout"]["fields"] == list(BASE_LAYOUT) + ["memos"]
    assert after["layout"]["reserved_slots"] == before["layout"]["reserved_slots"] - 1
    assert after["logic"]["ref"] == "reservoir.v2"
    assert after["logic"]["history"][-1]["ref"] == "reservoir.v1"

    res = ex.submit(tx("SET_MEMO", TREASURY, {"memo": "hello"}))
    assert res["result"]["applied"] == "SET_MEMO"
    assert ex.read_state()["memos"] == {TREASURY: "hello"}

    # Existing operations keep working under the new logic.
    ex.submit(tx("TRANSFER_FROM", BOB, {"from": ALICE, "to": BOB, "amount": UNIT}))
    assert ex.view().allowance(ALICE, BOB) == 2 * UNIT


def test_upgrade_requires_root_admin() -> None:
    ex = _executor()
    with pytest.raises(ApplyError) as e:
        ex.submit(tx("AUTHORIZE_UPGRADE", TREASURY, {"logic_ref": "reservoir.v2"}))
    assert e.value.code == "unauthorized"
    assert ex.view().logic_ref == "reservoir.v1"


def test_upgrade_to_unknown_or_older_logic_is_rejected() -> None:
    ex = _executor()
    with pytest.raises(ApplyError) as e:
        ex.submit(tx("AUTHORIZE_UPGRADE", ADMIN, {"logic_ref": "reservoir.v9"}))
    assert e.value.code == "invalid_input"
    assert e.value.reason == "unknown_logic"

    with pytest.raises(ApplyError) as e:
        ex.submit(tx("AUTHORIZE_UPGRADE", ADMIN, {"logic_ref": "reservoir.v1"}))
    assert e.value.code == "invariant_violation"
    assert e.value.reason == "version_not_newer"


@pytest.mark.parametrize(
    "layout,problem",
    [
        (BASE_LAYOUT[:-1], "existing_fields_changed"),
        ((BASE_LAYOUT[1], BASE_LAYOUT[0]) + BASE_LAYOUT[2:], "existing_fields_changed"),
        (BASE_LAYOUT + tuple(f"slot_{i}" for i in range(51)), "reserved_slots_exhausted"),
        (BASE_LAYOUT + ("tax",), "duplicate_field"),
    ],
)
def test_incompatible_layouts_are_rejected(layout, problem) -> None:
    bad = LogicVersion(
        ref="reservoir.bad",
        version=3,
        layout=tuple(layout),
        appliers=V1.appliers,
        tx_types=V1.tx_types,
    )
    ex = _executor(bad)
    before = ex.read_state()

    with pytest.raises(ApplyError) as e:
        ex.submit(tx("AUTHORIZE_UPGRADE", ADMIN, {"logic_ref": "reservoir.bad"}))
    assert e.value.code == "invariant_violation"
    assert e.value.reason == "incompatible_layout"
    assert e.value.details["problem"] == problem
    assert ex.read_state() == before


def test_appended_field_clashing_with_existing_key_is_rejected() -> None:
    clash = LogicVersion(
        ref="reservoir.clash",
        version=3,
        layout=BASE_LAYOUT + ("logic",),
        appliers=V1.appliers,
        tx_types=V1.tx_types,
    )
    ex = _executor(clash)
    with pytest.raises(ApplyError) as e:
        ex.submit(tx("AUTHORIZE_UPGRADE", ADMIN, {"logic_ref": "reservoir.clash"}))
    assert e.value.details["problem"] == "field_exists"


def test_reload_needs_the_active_logic_registered(tmp_path) -> None:
    db = str(tmp_path / "reservoir.db")
    ex = _executor(db_path=db)
    ex.submit(tx("AUTHORIZE_UPGRADE", ADMIN, {"logic_ref": "reservoir.v2"}))

    again = new_executor(registry=_registry(), db_path=db)
    assert again.view().logic_ref == "reservoir.v2"

    with pytest.raises(ExecutorError):
        new_executor(db_path=db)


def test_registry_rejects_duplicate_and_empty_refs() -> None:
    reg = LogicRegistry([V1])
    assert reg.default is V1
    reg.register(V1)
    with pytest.raises(ValueError):
        reg.register(replace(V2, ref="reservoir.v1"))
    with pytest.raises(ValueError):
        reg.register(replace(V2, ref=""))
    with pytest.raises(LookupError):
        LogicRegistry().default
