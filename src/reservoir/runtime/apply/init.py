# src/reservoir/runtime/apply/init.py
from __future__ import annotations

"""
One-time initialization.

INITIALIZE {name, symbol, treasury, reservoir, tax_bps, admin?, owner?}

- mints TOTAL_SUPPLY to the treasury (the only mint this engine ever does)
- sets tax config and designates the engine's own address as reward pool
- exempts treasury, reservoir and pool
- ROOT_ADMIN = [admin or signer], owner = owner or signer

There is no role check: whoever initializes first wins, and every later
attempt fails with invariant_violation/already_initialized.
"""

from typing import Any, Dict, Optional, Set

from reservoir.ledger.accounts import mint_initial_supply, normalize_address, require_address, set_exempt
from reservoir.ledger.constants import DECIMALS, MAX_TAX_BPS, ROOT_ADMIN, TOTAL_SUPPLY, ZERO_ADDRESS
from reservoir.ledger.roles_schema import add_role_member, ensure_roles_schema
from reservoir.runtime import events
from reservoir.runtime.apply.reward_pool import assign_pool, ensure_pool_root
from reservoir.runtime.errors import InvalidInput, InvariantViolation
from reservoir.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def _as_name(v: Any, field: str, max_len: int) -> str:
    s = v.strip() if isinstance(v, str) else ""
    if not s:
        raise InvalidInput(f"missing_{field}", {"field": field})
    if len(s) > max_len:
        raise InvalidInput(f"{field}_too_long", {"field": field, "max_len": max_len})
    return s


def _apply_initialize(state: Json, env: TxEnvelope) -> Json:
    meta = _as_dict(state.get("meta"))
    if bool(meta.get("initialized", False)):
        raise InvariantViolation("already_initialized", {"initializer": meta.get("initializer")})

    engine = str(meta.get("engine_address") or "")
    if not engine or engine == ZERO_ADDRESS:
        raise InvariantViolation("engine_address_unset", {})

    payload = _as_dict(env.payload)
    signer = require_address(env.signer, field="signer")
    name = _as_name(payload.get("name"), "name", 64)
    symbol = _as_name(payload.get("symbol"), "symbol", 16)
    treasury = require_address(payload.get("treasury"), field="treasury")
    reservoir = require_address(payload.get("reservoir"), field="reservoir")

    raw_bps = payload.get("tax_bps", 0)
    if isinstance(raw_bps, bool) or not isinstance(raw_bps, (int, str)):
        raise InvalidInput("malformed_bps", {"tax_bps": raw_bps})
    try:
        tax_bps = int(raw_bps)
    except (TypeError, ValueError):
        raise InvalidInput("malformed_bps", {"tax_bps": raw_bps})
    if tax_bps < 0:
        raise InvalidInput("negative_bps", {"tax_bps": tax_bps})
    if tax_bps > MAX_TAX_BPS:
        raise InvariantViolation("tax_rate_above_cap", {"bps": tax_bps, "max_bps": MAX_TAX_BPS})

    if treasury == engine:
        raise InvalidInput("treasury_is_pool", {"treasury": treasury})
    if reservoir == engine:
        raise InvalidInput("reservoir_is_pool", {"reservoir": reservoir})

    admin_raw = payload.get("admin")
    admin = require_address(admin_raw, field="admin") if admin_raw else signer
    owner_raw = payload.get("owner")
    owner = require_address(owner_raw, field="owner") if owner_raw else signer

    meta.update(
        {
            "name": name,
            "symbol": symbol,
            "decimals": DECIMALS,
            "engine_address": engine,
            "initialized": True,
            "initializer": signer,
        }
    )
    state["meta"] = meta

    mint_initial_supply(state, treasury, TOTAL_SUPPLY)
    events.emit(state, events.TRANSFER, **{"from": ZERO_ADDRESS, "to": treasury, "amount": TOTAL_SUPPLY})

    state["tax"] = {"rate_bps": tax_bps, "reservoir": reservoir}
    ensure_pool_root(state)
    assign_pool(state, engine)
    set_exempt(state, treasury, True)
    set_exempt(state, reservoir, True)

    ensure_roles_schema(state)
    add_role_member(state, ROOT_ADMIN, normalize_address(admin))
    state["owner"] = owner

    events.emit(state, events.ROLE_GRANTED, role=ROOT_ADMIN, account=admin, sender=signer)
    events.emit(state, events.OWNERSHIP_TRANSFERRED, previous_owner=ZERO_ADDRESS, new_owner=owner)
    events.emit(
        state,
        events.INITIALIZED,
        name=name,
        symbol=symbol,
        treasury=treasury,
        reservoir=reservoir,
        tax_bps=tax_bps,
        pool=engine,
    )
    return {
        "applied": "INITIALIZE",
        "treasury": treasury,
        "reservoir": reservoir,
        "tax_bps": tax_bps,
        "pool": engine,
        "admin": admin,
        "owner": owner,
    }


INIT_TX_TYPES: Set[str] = {"INITIALIZE"}


def apply_init(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = str(env.tx_type or "").strip().upper()
    if t not in INIT_TX_TYPES:
        return None
    return _apply_initialize(state, env)


__all__ = ["INIT_TX_TYPES", "apply_init"]
