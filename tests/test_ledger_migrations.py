from __future__ import annotations

import copy
import pytest

from reservoir.ledger.constants import RESERVED_STATE_SLOTS, ZERO_ADDRESS
from reservoir.ledger.migrations import (
    BASE_LAYOUT,
    CURRENT_STATE_VERSION,
    check_layout_compatible,
    layout_fields,
    migrate_state_dict,
    reserved_slots,
)
from reservoir.runtime.errors import InvariantViolation


def _assert_minimal_shape(st: dict) -> None:
    assert isinstance(st, dict)
    assert st.get("state_version") == CURRENT_STATE_VERSION

    for key in ("meta", "balances", "allowances", "tax", "exempt", "reward_pool", "roles"):
        assert isinstance(st.get(key), dict), key

    assert isinstance(st.get("total_supply"), int)
    assert isinstance(st.get("op_seq"), int)
    assert isinstance(st.get("event_seq"), int)
    assert isinstance(st.get("owner"), str)

    assert isinstance(st["tax"].get("rate_bps"), int)
    assert isinstance(st["tax"].get("reservoir"), str)
    assert isinstance(st["reward_pool"].get("designations"), dict)

    assert isinstance(st["layout"]["fields"], list)
    assert isinstance(st["layout"]["reserved_slots"], int)
    assert isinstance(st["logic"], dict)

    for acct, bal in st["balances"].items():
        assert isinstance(acct, str)
        assert isinstance(bal, int)


def test_migrate_non_dict_input_yields_current_skeleton() -> None:
    st = migrate_state_dict(None)
    _assert_minimal_shape(st)


def test_migrate_empty_dict_is_upgraded() -> None:
    st = migrate_state_dict({})
    _assert_minimal_shape(st)
    assert st["tax"]["reservoir"] == ZERO_ADDRESS
    assert st["layout"]["fields"] == list(BASE_LAYOUT)
    assert st["layout"]["reserved_slots"] == RESERVED_STATE_SLOTS
    assert st["logic"] == {"ref": "", "version": 0, "history": []}


def test_migrate_v0_wrong_types_are_normalized() -> None:
    v0 = {
        "total_supply": "5",
        "op_seq": "3",
        "balances": {"0x" + "1" * 40: "5"},
        "tax": {"rate_bps": "150"},
        "roles": "nope",
        "reward_pool": None,
    }
    st = migrate_state_dict(v0)
    _assert_minimal_shape(st)
    assert st["total_supply"] == 5
    assert st["op_seq"] == 3
    assert st["balances"]["0x" + "1" * 40] == 5
    assert st["tax"]["rate_bps"] == 150


def test_migrate_keeps_existing_layout_header() -> None:
    v0 = {"layout": {"fields": list(BASE_LAYOUT) + ["memos"], "reserved_slots": 49}}
    st = migrate_state_dict(v0)
    assert layout_fields(st)[-1] == "memos"
    assert reserved_slots(st) == 49


def test_migrate_is_idempotent_at_current_version() -> None:
    raw = migrate_state_dict({})
    raw2 = migrate_state_dict(copy.deepcopy(raw))
    assert raw2 == raw


def test_future_state_version_is_rejected() -> None:
    raw = migrate_state_dict({})
    raw["state_version"] = CURRENT_STATE_VERSION + 1
    with pytest.raises(ValueError):
        migrate_state_dict(raw)


def test_layout_append_is_compatible() -> None:
    added = check_layout_compatible(BASE_LAYOUT, list(BASE_LAYOUT) + ["a", "b"], 2)
    assert added == ["a", "b"]
    assert check_layout_compatible(BASE_LAYOUT, BASE_LAYOUT, 0) == []


@pytest.mark.parametrize(
    "proposed,problem",
    [
        (list(BASE_LAYOUT[:-1]), "existing_fields_changed"),
        ([BASE_LAYOUT[1], BASE_LAYOUT[0]] + list(BASE_LAYOUT[2:]), "existing_fields_changed"),
        (["renamed"] + list(BASE_LAYOUT[1:]), "existing_fields_changed"),
        (list(BASE_LAYOUT) + ["x", "x"], "duplicate_field"),
        (list(BASE_LAYOUT) + ["x", "y", "z"], "reserved_slots_exhausted"),
    ],
)
def test_layout_incompatible_changes_are_rejected(proposed, problem) -> None:
    with pytest.raises(InvariantViolation) as e:
        check_layout_compatible(BASE_LAYOUT, proposed, 2)
    assert e.value.code == "invariant_violation"
    assert e.value.reason == "incompatible_layout"
    assert e.value.details["problem"] == problem
