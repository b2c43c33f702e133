# src/reservoir/ledger/migrations.py
from __future__ import annotations

from typing import Any, Callable, Dict, List, Sequence, Tuple

from reservoir.ledger.constants import RESERVED_STATE_SLOTS, ZERO_ADDRESS
from reservoir.runtime.errors import InvariantViolation

Json = Dict[str, Any]

# Increment this when you add a new migration step.
CURRENT_STATE_VERSION = 1

# Ordered persisted-state layout of the first logic version. Later logic
# versions may only append to this list, consuming reserved slots.
BASE_LAYOUT: Tuple[str, ...] = (
    "meta",
    "total_supply",
    "balances",
    "allowances",
    "tax",
    "exempt",
    "reward_pool",
    "roles",
    "owner",
    "op_seq",
    "event_seq",
)


def _as_int(v: Any, default: int = 0) -> int:
    try:
        if isinstance(v, bool):
            return default
        return int(v)
    except Exception:
        return default


def _as_str(v: Any) -> str:
    try:
        return str(v) if v is not None else ""
    except Exception:
        return ""


def _ensure_dict(root: Json, key: str) -> Json:
    v = root.get(key)
    if not isinstance(v, dict):
        v = {}
        root[key] = v
    return v


def _ensure_int(root: Json, key: str, default: int = 0) -> int:
    if key not in root:
        root[key] = int(default)
        return int(default)
    x = _as_int(root.get(key), default)
    root[key] = int(x)
    return int(x)


def _ensure_str(root: Json, key: str, default: str = "") -> str:
    if key not in root:
        root[key] = str(default)
        return str(default)
    s = _as_str(root.get(key))
    root[key] = s
    return s


def _migrate_v0_to_v1(st: Json) -> Json:
    """
    v0 -> v1: introduce explicit state_version, the layout header and
    normalize the base roots.

    v0 characteristics:
      - no 'state_version' / 'layout' / 'logic'
      - may have missing roots or wrong shapes
    """
    meta = _ensure_dict(st, "meta")
    _ensure_str(meta, "name", "")
    _ensure_str(meta, "symbol", "")
    _ensure_int(meta, "decimals", 18)
    _ensure_str(meta, "engine_address", "")
    meta["initialized"] = bool(meta.get("initialized", False))

    _ensure_int(st, "total_supply", 0)

    balances = _ensure_dict(st, "balances")
    for acct, bal in list(balances.items()):
        balances[acct] = _as_int(bal, 0)

    _ensure_dict(st, "allowances")

    tax = _ensure_dict(st, "tax")
    _ensure_int(tax, "rate_bps", 0)
    _ensure_str(tax, "reservoir", ZERO_ADDRESS)

    _ensure_dict(st, "exempt")

    pool = _ensure_dict(st, "reward_pool")
    _ensure_str(pool, "account", "")
    _ensure_dict(pool, "designations")
    for key in ("funded_total", "distributed_total", "withdrawn_total"):
        _ensure_int(pool, key, 0)

    _ensure_dict(st, "roles")
    _ensure_str(st, "owner", "")
    _ensure_int(st, "op_seq", 0)
    _ensure_int(st, "event_seq", 0)

    layout = st.get("layout")
    if not isinstance(layout, dict) or not isinstance(layout.get("fields"), list):
        st["layout"] = {"fields": list(BASE_LAYOUT), "reserved_slots": int(RESERVED_STATE_SLOTS)}
    else:
        _ensure_int(layout, "reserved_slots", RESERVED_STATE_SLOTS)

    logic = st.get("logic")
    if not isinstance(logic, dict):
        st["logic"] = {"ref": "", "version": 0, "history": []}

    st["state_version"] = 1
    return st


_MIGRATIONS: Dict[int, Callable[[Json], Json]] = {
    0: _migrate_v0_to_v1,
}


def migrate_state_dict(raw: Any) -> Json:
    """
    Upgrade a raw persisted JSON dict to CURRENT_STATE_VERSION.

    - Best-effort: never raises for simple shape issues; it normalizes.
    - If raw isn't a dict, returns an empty vCURRENT state skeleton.
    """
    st: Json = raw if isinstance(raw, dict) else {}

    v = _as_int(st.get("state_version"), 0)
    if v > CURRENT_STATE_VERSION:
        # Future state created by a newer binary; refuse to downgrade silently.
        raise ValueError(
            f"Ledger state version {v} is newer than this binary supports (max {CURRENT_STATE_VERSION})."
        )

    while v < CURRENT_STATE_VERSION:
        step = _MIGRATIONS.get(v)
        if step is None:
            raise ValueError(f"No migration path from state_version={v} to {CURRENT_STATE_VERSION}.")
        st = step(st)
        v = _as_int(st.get("state_version"), v + 1)

    st["state_version"] = CURRENT_STATE_VERSION
    return st


def layout_fields(st: Json) -> List[str]:
    layout = st.get("layout")
    if not isinstance(layout, dict):
        return list(BASE_LAYOUT)
    fields = layout.get("fields")
    if not isinstance(fields, list):
        return list(BASE_LAYOUT)
    return [str(f) for f in fields]


def reserved_slots(st: Json) -> int:
    layout = st.get("layout")
    if not isinstance(layout, dict):
        return int(RESERVED_STATE_SLOTS)
    return _as_int(layout.get("reserved_slots"), RESERVED_STATE_SLOTS)


def check_layout_compatible(current: Sequence[str], proposed: Sequence[str], free_slots: int) -> List[str]:
    """Return the fields ``proposed`` appends to ``current``.

    Raises InvariantViolation if ``proposed`` drops, renames or reorders any
    existing field, repeats a field, or appends more fields than there are
    reserved slots left.
    """
    cur = list(current)
    new = list(proposed)

    if len(set(new)) != len(new):
        raise InvariantViolation("incompatible_layout", {"problem": "duplicate_field"})

    if new[: len(cur)] != cur:
        mismatch = next(
            (i for i, name in enumerate(cur) if i >= len(new) or new[i] != name),
            len(cur),
        )
        raise InvariantViolation(
            "incompatible_layout",
            {
                "problem": "existing_fields_changed",
                "index": mismatch,
                "expected": cur[mismatch] if mismatch < len(cur) else None,
                "found": new[mismatch] if mismatch < len(new) else None,
            },
        )

    added = new[len(cur):]
    if len(added) > int(free_slots):
        raise InvariantViolation(
            "incompatible_layout",
            {"problem": "reserved_slots_exhausted", "added": len(added), "reserved_slots": int(free_slots)},
        )
    return added


__all__ = [
    "BASE_LAYOUT",
    "CURRENT_STATE_VERSION",
    "check_layout_compatible",
    "layout_fields",
    "migrate_state_dict",
    "reserved_slots",
]
