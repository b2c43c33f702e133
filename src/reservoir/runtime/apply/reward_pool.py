# src/reservoir/runtime/apply/reward_pool.py
from __future__ import annotations

"""
Reward pool apply semantics.

The reward pool is an ordinary ledger account with spending rules layered on
top. It is pre-funded by the owner and drained only by reward managers
(distribution) or the owner (withdrawal); it is never a minting source.

Canon txs handled here:
- FUND_REWARD_POOL (owner)
- DISTRIBUTE_REWARD / DISTRIBUTE_REWARD_WITH_CONTEXT (REWARD_MANAGER)
- WITHDRAW_FROM_POOL (owner)
- SET_REWARD_POOL (owner)

Designation status per pool account:
  unfunded -> funded -> (distributing <-> funded) -> migrated
"distributing" only exists inside a distribution; the persisted status is
"unfunded" or "funded" depending on the balance, and "migrated" once the
designation has moved elsewhere.
"""

from typing import Any, Dict, Optional, Set

from reservoir.ledger.accounts import (
    balance_of,
    move,
    normalize_context,
    require_address,
    require_amount,
    set_exempt,
)
from reservoir.ledger.constants import REWARD_MANAGER, ZERO_ADDRESS
from reservoir.runtime import events
from reservoir.runtime.errors import InsufficientFunds, InvalidInput
from reservoir.runtime.gates import require_owner, require_role
from reservoir.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]

STATUS_UNFUNDED = "unfunded"
STATUS_FUNDED = "funded"
STATUS_MIGRATED = "migrated"


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def _as_int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def ensure_pool_root(state: Json) -> Json:
    pool = state.get("reward_pool")
    if not isinstance(pool, dict):
        pool = {}
        state["reward_pool"] = pool
    pool.setdefault("account", "")
    if not isinstance(pool.get("designations"), dict):
        pool["designations"] = {}
    for key in ("funded_total", "distributed_total", "withdrawn_total"):
        pool.setdefault(key, 0)
    return pool


def pool_account(state: Json) -> str:
    return str(ensure_pool_root(state).get("account") or "")


def _designation(state: Json, account: str) -> Json:
    designations = ensure_pool_root(state)["designations"]
    rec = designations.get(account)
    if not isinstance(rec, dict):
        rec = {"status": STATUS_UNFUNDED, "assigned_at": int(state.get("op_seq", 0) or 0)}
        designations[account] = rec
    return rec


def _refresh_status(state: Json) -> str:
    acct = pool_account(state)
    rec = _designation(state, acct)
    rec["status"] = STATUS_FUNDED if balance_of(state, acct) > 0 else STATUS_UNFUNDED
    return str(rec["status"])


def assign_pool(state: Json, account: str) -> None:
    """Designate ``account`` as the pool and exempt it from tax."""
    pool = ensure_pool_root(state)
    pool["account"] = account
    rec = _designation(state, account)
    rec["assigned_at"] = int(state.get("op_seq", 0) or 0)
    rec.pop("migrated_at", None)
    set_exempt(state, account, True)
    _refresh_status(state)


def _reservoir(state: Json) -> str:
    return str(_as_dict(state.get("tax")).get("reservoir") or ZERO_ADDRESS)


def _apply_fund_reward_pool(state: Json, env: TxEnvelope) -> Json:
    owner = require_owner(state, env)
    payload = _as_dict(env.payload)
    amount = require_amount(payload.get("amount"))

    pool_acct = pool_account(state)
    if pool_acct == owner:
        raise InvalidInput("pool_is_owner", {"pool": pool_acct})
    # Pool is tax-exempt, so this is a plain ledger move.
    move(state, owner, pool_acct, amount)

    pool = ensure_pool_root(state)
    pool["funded_total"] = _as_int(pool.get("funded_total"), 0) + amount
    status = _refresh_status(state)

    events.emit(state, events.TRANSFER, **{"from": owner, "to": pool_acct, "amount": amount})
    events.emit(state, events.REWARD_POOL_FUNDED, funder=owner, amount=amount)
    return {"applied": "FUND_REWARD_POOL", "pool": pool_acct, "amount": amount, "status": status}


def _distribute(state: Json, env: TxEnvelope, *, context_required: bool) -> Json:
    manager = require_role(state, REWARD_MANAGER, env)
    payload = _as_dict(env.payload)

    recipient_raw = payload.get("recipient")
    recipient = require_address(recipient_raw, field="recipient", reason="zero_recipient")
    amount = require_amount(payload.get("amount"))
    if context_required and "context" not in payload:
        raise InvalidInput("missing_context", {"tx_type": env.tx_type})
    context = normalize_context(payload.get("context"))

    pool_acct = pool_account(state)
    if recipient == pool_acct:
        raise InvalidInput("recipient_is_pool", {"recipient": recipient})

    available = balance_of(state, pool_acct)
    if available < amount:
        raise InsufficientFunds("insufficient_pool", {"pool": pool_acct, "balance": available, "amount": amount})

    move(state, pool_acct, recipient, amount)

    pool = ensure_pool_root(state)
    pool["distributed_total"] = _as_int(pool.get("distributed_total"), 0) + amount
    status = _refresh_status(state)

    events.emit(state, events.TRANSFER, **{"from": pool_acct, "to": recipient, "amount": amount})
    events.emit(
        state,
        events.REWARD_DISTRIBUTED,
        manager=manager,
        recipient=recipient,
        amount=amount,
        context=context,
    )
    return {
        "applied": str(env.tx_type).strip().upper(),
        "recipient": recipient,
        "amount": amount,
        "context": context,
        "pool_balance": balance_of(state, pool_acct),
        "status": status,
    }


def _apply_withdraw_from_pool(state: Json, env: TxEnvelope) -> Json:
    require_owner(state, env)
    payload = _as_dict(env.payload)
    to = require_address(payload.get("to"), field="to", reason="zero_recipient")
    amount = require_amount(payload.get("amount"))

    pool_acct = pool_account(state)
    if to == pool_acct:
        raise InvalidInput("recipient_is_pool", {"to": to})

    available = balance_of(state, pool_acct)
    if available < amount:
        raise InsufficientFunds("insufficient_pool", {"pool": pool_acct, "balance": available, "amount": amount})

    move(state, pool_acct, to, amount)

    pool = ensure_pool_root(state)
    pool["withdrawn_total"] = _as_int(pool.get("withdrawn_total"), 0) + amount
    status = _refresh_status(state)

    events.emit(state, events.TRANSFER, **{"from": pool_acct, "to": to, "amount": amount})
    events.emit(state, events.REWARD_POOL_WITHDRAWN, to=to, amount=amount)
    return {"applied": "WITHDRAW_FROM_POOL", "to": to, "amount": amount, "status": status}


def _apply_set_reward_pool(state: Json, env: TxEnvelope) -> Json:
    owner = require_owner(state, env)
    payload = _as_dict(env.payload)
    new_pool = require_address(payload.get("account"), field="account")

    old_pool = pool_account(state)
    if new_pool == old_pool:
        return {"applied": "SET_REWARD_POOL", "pool": old_pool, "deduped": True}

    reservoir = _reservoir(state)
    if new_pool == reservoir:
        raise InvalidInput("pool_is_reservoir", {"account": new_pool})

    amount = balance_of(state, old_pool)

    assign_pool(state, new_pool)
    move(state, old_pool, new_pool, amount)
    _refresh_status(state)

    old_rec = _designation(state, old_pool)
    old_rec["status"] = STATUS_MIGRATED
    old_rec["migrated_at"] = int(state.get("op_seq", 0) or 0)
    old_rec["migrated_to"] = new_pool

    if old_pool not in (owner, reservoir):
        set_exempt(state, old_pool, False)

    if amount > 0:
        events.emit(state, events.TRANSFER, **{"from": old_pool, "to": new_pool, "amount": amount})
    events.emit(state, events.REWARD_POOL_MIGRATED, old_pool=old_pool, new_pool=new_pool, amount=amount)
    return {"applied": "SET_REWARD_POOL", "old_pool": old_pool, "new_pool": new_pool, "amount": amount}


REWARD_POOL_TX_TYPES: Set[str] = {
    "FUND_REWARD_POOL",
    "DISTRIBUTE_REWARD",
    "DISTRIBUTE_REWARD_WITH_CONTEXT",
    "WITHDRAW_FROM_POOL",
    "SET_REWARD_POOL",
}


def apply_reward_pool(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = str(env.tx_type or "").strip().upper()
    if t not in REWARD_POOL_TX_TYPES:
        return None

    if t == "FUND_REWARD_POOL":
        return _apply_fund_reward_pool(state, env)
    if t == "DISTRIBUTE_REWARD":
        return _distribute(state, env, context_required=False)
    if t == "DISTRIBUTE_REWARD_WITH_CONTEXT":
        return _distribute(state, env, context_required=True)
    if t == "WITHDRAW_FROM_POOL":
        return _apply_withdraw_from_pool(state, env)
    if t == "SET_REWARD_POOL":
        return _apply_set_reward_pool(state, env)

    return None


__all__ = ["REWARD_POOL_TX_TYPES", "apply_reward_pool", "assign_pool", "ensure_pool_root", "pool_account"]
