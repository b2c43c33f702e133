# src/reservoir/runtime/apply/upgrade.py
from __future__ import annotations

"""
Logic upgrades.

AUTHORIZE_UPGRADE {logic_ref} (ROOT_ADMIN) switches the active logic version.

The target must be registered, must carry a higher version number, and its
layout must keep every existing field at its position. New fields may only
be appended and each one consumes a reserved slot; they are populated from
the target's defaults in the same operation.
"""

from typing import Any, Dict, List, Optional

from reservoir.ledger.constants import ROOT_ADMIN
from reservoir.ledger.migrations import check_layout_compatible, layout_fields, reserved_slots
from reservoir.runtime import events
from reservoir.runtime.errors import InvalidInput, InvariantViolation
from reservoir.runtime.gates import require_role
from reservoir.runtime.logic import UPGRADE_TX_TYPES, LogicRegistry
from reservoir.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def _logic_root(state: Json) -> Json:
    logic = state.get("logic")
    if not isinstance(logic, dict):
        logic = {"ref": "", "version": 0, "history": []}
        state["logic"] = logic
    if not isinstance(logic.get("history"), list):
        logic["history"] = []
    return logic


def _apply_authorize_upgrade(state: Json, env: TxEnvelope, registry: LogicRegistry) -> Json:
    if not bool(_as_dict(state.get("meta")).get("initialized", False)):
        raise InvariantViolation("not_initialized", {"tx_type": env.tx_type})
    admin = require_role(state, ROOT_ADMIN, env)

    ref = str(_as_dict(env.payload).get("logic_ref") or "").strip()
    if not ref:
        raise InvalidInput("missing_logic_ref", {})
    target = registry.get(ref)
    if target is None:
        raise InvalidInput("unknown_logic", {"ref": ref, "known": registry.refs()})

    logic = _logic_root(state)
    current_ref = str(logic.get("ref") or "")
    current_version = int(logic.get("version", 0) or 0)
    if int(target.version) <= current_version:
        raise InvariantViolation(
            "version_not_newer",
            {"ref": ref, "version": int(target.version), "current_version": current_version},
        )

    free = reserved_slots(state)
    added: List[str] = check_layout_compatible(layout_fields(state), target.layout, free)
    for name in added:
        if name in state:
            raise InvariantViolation("incompatible_layout", {"problem": "field_exists", "field": name})
        state[name] = target.initial_value(name)

    state["layout"] = {"fields": list(target.layout), "reserved_slots": free - len(added)}
    logic["history"].append(
        {"ref": current_ref, "version": current_version, "replaced_at": int(state.get("op_seq", 0) or 0)}
    )
    logic["ref"] = target.ref
    logic["version"] = int(target.version)

    events.emit(
        state,
        events.UPGRADED,
        previous_ref=current_ref,
        new_ref=target.ref,
        version=int(target.version),
        added_fields=list(added),
        sender=admin,
    )
    return {
        "applied": "AUTHORIZE_UPGRADE",
        "previous_ref": current_ref,
        "ref": target.ref,
        "version": int(target.version),
        "added_fields": list(added),
    }


def apply_upgrade(state: Json, env: TxEnvelope, registry: LogicRegistry) -> Optional[Json]:
    t = str(env.tx_type or "").strip().upper()
    if t not in UPGRADE_TX_TYPES:
        return None
    return _apply_authorize_upgrade(state, env, registry)


__all__ = ["apply_upgrade"]
