# src/reservoir/runtime/apply/ledger.py
from __future__ import annotations

"""
Holder-initiated ledger operations.

- TRANSFER {to, amount}: signer is the sender, routed through the tax router
- APPROVE {spender, amount}: set the spender's allowance over signer's balance
- TRANSFER_FROM {from, to, amount}: spend allowance, then a taxed transfer

The current reward-pool account can be neither debited nor credited here;
the pool moves only through the reward-pool operations.
"""

from typing import Any, Dict, Optional, Set

from reservoir.ledger.accounts import (
    allowance_of,
    normalize_address,
    require_address,
    require_amount,
    set_allowance,
)
from reservoir.ledger.constants import ZERO_ADDRESS
from reservoir.runtime import events
from reservoir.runtime.apply.tax import route_transfer
from reservoir.runtime.errors import InsufficientFunds, InvalidInput, InvariantViolation
from reservoir.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def _require_initialized(state: Json, env: TxEnvelope) -> None:
    if not bool(_as_dict(state.get("meta")).get("initialized", False)):
        raise InvariantViolation("not_initialized", {"tx_type": env.tx_type})


def _signer(env: TxEnvelope) -> str:
    s = normalize_address(env.signer, field="signer")
    if s == ZERO_ADDRESS:
        raise InvalidInput("zero_address", {"field": "signer"})
    return s


def _deny_pool(state: Json, *accounts: str) -> None:
    pool = str(_as_dict(state.get("reward_pool")).get("account") or "")
    for acct in accounts:
        if pool and acct == pool:
            raise InvalidInput("pool_account_restricted", {"account": acct})


def _apply_transfer(state: Json, env: TxEnvelope) -> Json:
    _require_initialized(state, env)
    payload = _as_dict(env.payload)
    src = _signer(env)
    dst = require_address(payload.get("to"), field="to", reason="invalid_account")
    amount = require_amount(payload.get("amount"), allow_zero=True)
    _deny_pool(state, src, dst)

    net, tax = route_transfer(state, src, dst, amount)
    return {"applied": "TRANSFER", "from": src, "to": dst, "amount": amount, "received": net, "tax": tax}


def _apply_approve(state: Json, env: TxEnvelope) -> Json:
    _require_initialized(state, env)
    payload = _as_dict(env.payload)
    owner = _signer(env)
    spender = require_address(payload.get("spender"), field="spender")
    amount = require_amount(payload.get("amount"), allow_zero=True)

    set_allowance(state, owner, spender, amount)
    events.emit(state, events.APPROVAL, owner=owner, spender=spender, amount=amount)
    return {"applied": "APPROVE", "owner": owner, "spender": spender, "amount": amount}


def _apply_transfer_from(state: Json, env: TxEnvelope) -> Json:
    _require_initialized(state, env)
    payload = _as_dict(env.payload)
    spender = _signer(env)
    src = require_address(payload.get("from"), field="from", reason="invalid_account")
    dst = require_address(payload.get("to"), field="to", reason="invalid_account")
    amount = require_amount(payload.get("amount"), allow_zero=True)
    _deny_pool(state, src, dst)

    allowed = allowance_of(state, src, spender)
    if allowed < amount:
        raise InsufficientFunds(
            "insufficient_allowance",
            {"owner": src, "spender": spender, "allowance": allowed, "amount": amount},
        )

    net, tax = route_transfer(state, src, dst, amount)
    set_allowance(state, src, spender, allowed - amount)
    return {
        "applied": "TRANSFER_FROM",
        "spender": spender,
        "from": src,
        "to": dst,
        "amount": amount,
        "received": net,
        "tax": tax,
    }


LEDGER_TX_TYPES: Set[str] = {
    "TRANSFER",
    "APPROVE",
    "TRANSFER_FROM",
}


def apply_ledger(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = str(env.tx_type or "").strip().upper()
    if t not in LEDGER_TX_TYPES:
        return None

    if t == "TRANSFER":
        return _apply_transfer(state, env)
    if t == "APPROVE":
        return _apply_approve(state, env)
    if t == "TRANSFER_FROM":
        return _apply_transfer_from(state, env)

    return None


__all__ = ["LEDGER_TX_TYPES", "apply_ledger"]
