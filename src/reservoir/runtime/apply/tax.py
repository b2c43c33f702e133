# src/reservoir/runtime/apply/tax.py
from __future__ import annotations

"""
Tax routing and tax policy apply semantics.

Handled here:
- SET_TAX_RATE (owner)
- SET_RESERVOIR_ADDRESS (owner)
- SET_TAX_EXEMPT (owner)

``route_transfer`` is the TaxRouter used by every holder-initiated transfer.
"""

from typing import Any, Dict, Optional, Set, Tuple

from reservoir.ledger.accounts import balance_of, is_exempt, move, require_address, set_exempt
from reservoir.ledger.constants import BPS_DENOMINATOR, MAX_TAX_BPS, ZERO_ADDRESS
from reservoir.runtime import events
from reservoir.runtime.errors import InsufficientFunds, InvalidInput, InvariantViolation
from reservoir.runtime.gates import require_owner
from reservoir.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def _as_int(v: Any, default: int = 0) -> int:
    try:
        if isinstance(v, bool):
            return default
        return int(v)
    except Exception:
        return int(default)


def _as_bool(v: Any) -> Optional[bool]:
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return None


def _ensure_tax(state: Json) -> Json:
    t = state.get("tax")
    if not isinstance(t, dict):
        t = {}
        state["tax"] = t
    t.setdefault("rate_bps", 0)
    t.setdefault("reservoir", ZERO_ADDRESS)
    return t


def _pool_account(state: Json) -> str:
    return str(_as_dict(state.get("reward_pool")).get("account") or "")


def compute_tax(amount: int, rate_bps: int) -> int:
    """floor(amount * rate / 10000); truncation favors the recipient."""
    if amount <= 0 or rate_bps <= 0:
        return 0
    return (int(amount) * int(rate_bps)) // BPS_DENOMINATOR


def tax_applies(state: Json, src: str, dst: str) -> bool:
    rate = _as_int(_ensure_tax(state).get("rate_bps"), 0)
    if rate <= 0:
        return False
    if src == ZERO_ADDRESS or dst == ZERO_ADDRESS:
        return False
    return not (is_exempt(state, src) or is_exempt(state, dst))


def route_transfer(state: Json, src: str, dst: str, amount: int) -> Tuple[int, int]:
    """Move ``amount`` from ``src`` to ``dst``, routing tax to the reservoir.

    Returns (net_received, tax). The result depends only on the inputs and
    the current state, so re-running a rejected operation never charges
    twice.
    """
    amt = int(amount)
    tax = 0
    if tax_applies(state, src, dst):
        tax = compute_tax(amt, _as_int(_ensure_tax(state).get("rate_bps"), 0))

    if tax <= 0:
        move(state, src, dst, amt)
        events.emit(state, events.TRANSFER, **{"from": src, "to": dst, "amount": amt})
        return amt, 0

    reservoir = str(_ensure_tax(state).get("reservoir") or ZERO_ADDRESS)
    net = amt - tax
    # Check the full amount up front so the two legs below cannot fail halfway.
    have = balance_of(state, src)
    if have < amt:
        raise InsufficientFunds("insufficient_balance", {"account": src, "balance": have, "amount": amt})
    move(state, src, reservoir, tax)
    move(state, src, dst, net)

    events.emit(state, events.TRANSFER, **{"from": src, "to": reservoir, "amount": tax})
    events.emit(state, events.TRANSFER, **{"from": src, "to": dst, "amount": net})
    events.emit(state, events.TAX_COLLECTED, **{"from": src, "to": dst, "gross": amt, "tax": tax})
    return net, tax


def _apply_set_tax_rate(state: Json, env: TxEnvelope) -> Json:
    require_owner(state, env)
    payload = _as_dict(env.payload)

    raw = payload.get("bps")
    if isinstance(raw, bool) or not isinstance(raw, (int, str)):
        raise InvalidInput("malformed_bps", {"bps": raw})
    try:
        bps = int(raw)
    except (TypeError, ValueError):
        raise InvalidInput("malformed_bps", {"bps": raw})
    if bps < 0:
        raise InvalidInput("negative_bps", {"bps": bps})
    if bps > MAX_TAX_BPS:
        raise InvariantViolation("tax_rate_above_cap", {"bps": bps, "max_bps": MAX_TAX_BPS})

    tax = _ensure_tax(state)
    old = _as_int(tax.get("rate_bps"), 0)
    tax["rate_bps"] = bps
    events.emit(state, events.TAX_RATE_UPDATED, old_bps=old, new_bps=bps)
    return {"applied": "SET_TAX_RATE", "old_bps": old, "new_bps": bps}


def _apply_set_reservoir_address(state: Json, env: TxEnvelope) -> Json:
    require_owner(state, env)
    payload = _as_dict(env.payload)
    new = require_address(payload.get("account"), field="account")
    if new == _pool_account(state):
        raise InvalidInput("reservoir_is_pool", {"account": new})

    tax = _ensure_tax(state)
    old = str(tax.get("reservoir") or ZERO_ADDRESS)
    tax["reservoir"] = new
    set_exempt(state, new, True)
    events.emit(state, events.RESERVOIR_UPDATED, old=old, new=new)
    return {"applied": "SET_RESERVOIR_ADDRESS", "old": old, "new": new}


def _apply_set_tax_exempt(state: Json, env: TxEnvelope) -> Json:
    require_owner(state, env)
    payload = _as_dict(env.payload)
    account = require_address(payload.get("account"), field="account")
    exempt = _as_bool(payload.get("exempt"))
    if exempt is None:
        raise InvalidInput("malformed_exempt", {"exempt": payload.get("exempt")})

    set_exempt(state, account, exempt)
    # Emitted even when unchanged, so the log records every owner decision.
    events.emit(state, events.EXEMPTION_UPDATED, account=account, exempt=exempt)
    return {"applied": "SET_TAX_EXEMPT", "account": account, "exempt": exempt}


TAX_TX_TYPES: Set[str] = {
    "SET_TAX_RATE",
    "SET_RESERVOIR_ADDRESS",
    "SET_TAX_EXEMPT",
}


def apply_tax(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = str(env.tx_type or "").strip().upper()
    if t not in TAX_TX_TYPES:
        return None

    if t == "SET_TAX_RATE":
        return _apply_set_tax_rate(state, env)
    if t == "SET_RESERVOIR_ADDRESS":
        return _apply_set_reservoir_address(state, env)
    if t == "SET_TAX_EXEMPT":
        return _apply_set_tax_exempt(state, env)

    return None


__all__ = ["TAX_TX_TYPES", "apply_tax", "compute_tax", "route_transfer", "tax_applies"]
