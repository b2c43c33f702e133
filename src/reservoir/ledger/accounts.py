# src/reservoir/ledger/accounts.py
from __future__ import annotations

"""Account ledger primitives.

Balances live in ``state["balances"]`` as ``{address: int}``. Accounts are
created implicitly on first credit and never removed. Every mutation goes
through ``move()``, which debits and credits in one step, so the sum of all
balances never changes outside the one-time initialization mint.
"""

import re
from typing import Any, Dict

from reservoir.ledger.constants import ZERO_ADDRESS, ZERO_CONTEXT
from reservoir.runtime.errors import InsufficientFunds, InvalidInput, InvariantViolation

Json = Dict[str, Any]

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")
_CONTEXT_RE = re.compile(r"^0x[0-9a-f]{64}$")


def _as_int(v: Any, default: int = 0) -> int:
    try:
        if isinstance(v, bool):
            return default
        return int(v)
    except Exception:
        return default


def normalize_address(v: Any, *, field: str = "account") -> str:
    """Return the canonical lowercase form of an address or raise InvalidInput."""
    s = str(v).strip().lower() if isinstance(v, str) else ""
    if not _ADDRESS_RE.match(s):
        raise InvalidInput("malformed_account", {"field": field, "value": v})
    return s


def require_address(v: Any, *, field: str = "account", reason: str = "zero_address") -> str:
    """Like normalize_address but also rejects the null identifier."""
    s = normalize_address(v, field=field)
    if s == ZERO_ADDRESS:
        raise InvalidInput(reason, {"field": field})
    return s


def normalize_context(v: Any) -> str:
    if v is None or (isinstance(v, str) and not v.strip()):
        return ZERO_CONTEXT
    s = str(v).strip().lower() if isinstance(v, str) else ""
    if not _CONTEXT_RE.match(s):
        raise InvalidInput("malformed_context", {"value": v})
    return s


def require_amount(v: Any, *, field: str = "amount", allow_zero: bool = False) -> int:
    if isinstance(v, bool) or not isinstance(v, (int, str)):
        raise InvalidInput("malformed_amount", {"field": field, "value": v})
    try:
        amount = int(v)
    except (TypeError, ValueError):
        raise InvalidInput("malformed_amount", {"field": field, "value": v})
    if amount < 0:
        raise InvalidInput("negative_amount", {"field": field, "value": amount})
    if amount == 0 and not allow_zero:
        raise InvalidInput("zero_amount", {"field": field})
    return amount


def ensure_balances(state: Json) -> Json:
    b = state.get("balances")
    if not isinstance(b, dict):
        b = {}
        state["balances"] = b
    return b


def ensure_allowances(state: Json) -> Json:
    a = state.get("allowances")
    if not isinstance(a, dict):
        a = {}
        state["allowances"] = a
    return a


def ensure_exempt(state: Json) -> Json:
    e = state.get("exempt")
    if not isinstance(e, dict):
        e = {}
        state["exempt"] = e
    return e


def balance_of(state: Json, account: str) -> int:
    return _as_int(ensure_balances(state).get(account), 0)


def sum_balances(state: Json) -> int:
    return sum(_as_int(v, 0) for v in ensure_balances(state).values())


def is_exempt(state: Json, account: str) -> bool:
    return bool(ensure_exempt(state).get(account, False))


def set_exempt(state: Json, account: str, exempt: bool) -> None:
    ex = ensure_exempt(state)
    if exempt:
        ex[account] = True
    else:
        ex.pop(account, None)


def allowance_of(state: Json, owner: str, spender: str) -> int:
    by_owner = ensure_allowances(state).get(owner)
    if not isinstance(by_owner, dict):
        return 0
    return _as_int(by_owner.get(spender), 0)


def set_allowance(state: Json, owner: str, spender: str, amount: int) -> None:
    allowances = ensure_allowances(state)
    by_owner = allowances.get(owner)
    if not isinstance(by_owner, dict):
        by_owner = {}
        allowances[owner] = by_owner
    if int(amount) == 0:
        by_owner.pop(spender, None)
        if not by_owner:
            allowances.pop(owner, None)
        return
    by_owner[spender] = int(amount)


def move(state: Json, src: str, dst: str, amount: int) -> None:
    """Debit ``src`` and credit ``dst`` by ``amount``.

    Checks run before either side is touched. A self-move is a balance no-op
    but still requires ``src`` to hold the amount.
    """
    if src == ZERO_ADDRESS or dst == ZERO_ADDRESS:
        raise InvalidInput("invalid_account", {"from": src, "to": dst})
    amt = int(amount)
    if amt < 0:
        raise InvalidInput("negative_amount", {"amount": amt})

    balances = ensure_balances(state)
    have = _as_int(balances.get(src), 0)
    if have < amt:
        raise InsufficientFunds("insufficient_balance", {"account": src, "balance": have, "amount": amt})

    if amt == 0 or src == dst:
        return
    balances[src] = have - amt
    balances[dst] = _as_int(balances.get(dst), 0) + amt


def mint_initial_supply(state: Json, treasury: str, amount: int) -> None:
    """The one and only supply-increasing operation; refuses to run twice."""
    if _as_int(state.get("total_supply"), 0) != 0 or sum_balances(state) != 0:
        raise InvariantViolation("supply_already_minted", {"total_supply": state.get("total_supply")})
    balances = ensure_balances(state)
    balances[treasury] = int(amount)
    state["total_supply"] = int(amount)


__all__ = [
    "allowance_of",
    "balance_of",
    "ensure_allowances",
    "ensure_balances",
    "ensure_exempt",
    "is_exempt",
    "mint_initial_supply",
    "move",
    "normalize_address",
    "normalize_context",
    "require_address",
    "require_amount",
    "set_allowance",
    "set_exempt",
    "sum_balances",
]
