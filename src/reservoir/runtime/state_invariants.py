# src/reservoir/runtime/state_invariants.py
from __future__ import annotations

"""State invariants / normalization helpers.

Reservoir state is a nested JSON-like dict mutated deterministically by the
apply_* modules. This module is the single place that:

  - validates the state is dict-like and carries the core containers
  - checks the global invariants on a working copy before it is committed

The executor runs ``check_invariants`` after every applier returns and
before the working copy replaces committed state, so a violation discards
the whole operation.
"""

from collections.abc import MutableMapping
from typing import Any, Dict, FrozenSet, Optional

from reservoir.ledger.accounts import balance_of, sum_balances
from reservoir.ledger.constants import MAX_TAX_BPS, ROOT_ADMIN, TOTAL_SUPPLY
from reservoir.ledger.roles_schema import role_members
from reservoir.runtime.errors import InvariantViolation

Json = Dict[str, Any]

# Operations allowed to change the current pool's balance.
POOL_TX_TYPES: FrozenSet[str] = frozenset(
    {
        "INITIALIZE",
        "FUND_REWARD_POOL",
        "DISTRIBUTE_REWARD",
        "DISTRIBUTE_REWARD_WITH_CONTEXT",
        "WITHDRAW_FROM_POOL",
        "SET_REWARD_POOL",
    }
)


def ensure_state(st: Any) -> Json:
    """Ensure `st` is a dict and contains core keys.

    Returns the (possibly mutated) dict.

    Raises:
        TypeError: if st is not a MutableMapping
    """
    if not isinstance(st, MutableMapping):
        raise TypeError(f"state must be MutableMapping, got {type(st)}")

    for key in ("balances", "meta", "tax", "exempt", "reward_pool", "roles"):
        v = st.get(key)
        if v is None:
            st[key] = {}
        elif not isinstance(v, dict):
            # Fail closed: do not attempt to coerce arbitrary types.
            raise TypeError(f"state[{key!r}] must be dict, got {type(v)}")

    return st  # type: ignore[return-value]


def _is_initialized(st: Json) -> bool:
    meta = st.get("meta")
    return isinstance(meta, dict) and bool(meta.get("initialized", False))


def _pool_account(st: Json) -> str:
    pool = st.get("reward_pool")
    if not isinstance(pool, dict):
        return ""
    return str(pool.get("account") or "")


def check_invariants(
    before: Json,
    after: Json,
    *,
    tx_type: str,
    pool_tx_types: Optional[FrozenSet[str]] = None,
) -> None:
    """Raise InvariantViolation if ``after`` breaks a global invariant."""
    balances = after.get("balances") if isinstance(after.get("balances"), dict) else {}
    for acct, bal in balances.items():
        if not isinstance(bal, int) or isinstance(bal, bool) or bal < 0:
            raise InvariantViolation("negative_balance", {"account": acct, "balance": bal})

    if _is_initialized(after):
        total = int(after.get("total_supply", 0) or 0)
        held = sum_balances(after)
        if total != TOTAL_SUPPLY or held != TOTAL_SUPPLY:
            raise InvariantViolation(
                "supply_changed",
                {"tx_type": tx_type, "total_supply": total, "sum_balances": held, "expected": TOTAL_SUPPLY},
            )

        if not role_members(after, ROOT_ADMIN):
            raise InvariantViolation("root_admin_empty", {"tx_type": tx_type})

    tax = after.get("tax") if isinstance(after.get("tax"), dict) else {}
    rate = int(tax.get("rate_bps", 0) or 0)
    if rate < 0 or rate > MAX_TAX_BPS:
        raise InvariantViolation("tax_rate_above_cap", {"rate_bps": rate, "max_bps": MAX_TAX_BPS})

    allowed = pool_tx_types if pool_tx_types is not None else POOL_TX_TYPES
    pool_before = _pool_account(before)
    if pool_before and pool_before == _pool_account(after) and tx_type not in allowed:
        if balance_of(before, pool_before) != balance_of(after, pool_before):
            raise InvariantViolation(
                "unauthorized_pool_change",
                {
                    "tx_type": tx_type,
                    "pool": pool_before,
                    "before": balance_of(before, pool_before),
                    "after": balance_of(after, pool_before),
                },
            )


__all__ = ["POOL_TX_TYPES", "check_invariants", "ensure_state"]
