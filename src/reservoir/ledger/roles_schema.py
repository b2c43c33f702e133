# src/reservoir/ledger/roles_schema.py
from __future__ import annotations

from typing import Any, Dict, List

from reservoir.ledger.constants import ROLE_IDS

Json = Dict[str, Any]


def _as_list(x: Any) -> List[Any]:
    return x if isinstance(x, list) else []


def _as_str(x: Any) -> str:
    return str(x) if x is not None else ""


def _uniq_str_list(xs: Any) -> List[str]:
    out: List[str] = []
    seen: set[str] = set()
    for it in _as_list(xs):
        s = _as_str(it).strip()
        if s and s not in seen:
            seen.add(s)
            out.append(s)
    return out


def ensure_roles_schema(ledger: Json) -> Json:
    """
    Ensure ledger['roles'] exists and contains one member list per role id.
    Non-destructive: does not delete unknown keys.
    """
    roles = ledger.get("roles")
    if not isinstance(roles, dict):
        roles = {}
        ledger["roles"] = roles

    for role in ROLE_IDS:
        roles[role] = _uniq_str_list(roles.get(role))

    return roles


def role_members(ledger: Json, role: str) -> List[str]:
    roles = ensure_roles_schema(ledger)
    return list(_uniq_str_list(roles.get(role)))


def has_role(ledger: Json, role: str, account: str) -> bool:
    return account in role_members(ledger, role)


def add_role_member(ledger: Json, role: str, account: str) -> bool:
    """Add account to role. Returns True if membership changed."""
    roles = ensure_roles_schema(ledger)
    members = _uniq_str_list(roles.get(role))
    if account in members:
        return False
    members.append(account)
    roles[role] = members
    return True


def remove_role_member(ledger: Json, role: str, account: str) -> bool:
    """Remove account from role. Returns True if membership changed."""
    roles = ensure_roles_schema(ledger)
    members = _uniq_str_list(roles.get(role))
    if account not in members:
        return False
    roles[role] = [m for m in members if m != account]
    return True


__all__ = [
    "add_role_member",
    "ensure_roles_schema",
    "has_role",
    "remove_role_member",
    "role_members",
]
