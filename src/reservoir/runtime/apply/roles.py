from __future__ import annotations

"""
Roles and ownership apply semantics.

- GRANT_ROLE / REVOKE_ROLE: ROOT_ADMIN only
- RENOUNCE_ROLE: the holder drops its own membership
- TRANSFER_OWNERSHIP: current owner only

The ROOT_ADMIN set can never become empty once initialized; the last member
can neither be revoked nor renounce.
"""

from typing import Any, Dict, Optional, Set

from reservoir.ledger.accounts import normalize_address, require_address
from reservoir.ledger.constants import ROOT_ADMIN
from reservoir.ledger.roles_schema import add_role_member, has_role, remove_role_member, role_members
from reservoir.runtime import events
from reservoir.runtime.errors import InvariantViolation, Unauthorized
from reservoir.runtime.gates import require_known_role, require_owner, require_role
from reservoir.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _as_dict(x: Any) -> Json:
    return x if isinstance(x, dict) else {}


def _deny_last_root_admin(state: Json, role: str, account: str) -> None:
    if role != ROOT_ADMIN:
        return
    members = role_members(state, ROOT_ADMIN)
    if members == [account]:
        raise InvariantViolation("last_root_admin", {"account": account})


def _apply_grant_role(state: Json, env: TxEnvelope) -> Json:
    admin = require_role(state, ROOT_ADMIN, env)
    payload = _as_dict(env.payload)
    role = require_known_role(payload.get("role"))
    account = require_address(payload.get("account"), field="account")

    changed = add_role_member(state, role, account)
    if changed:
        events.emit(state, events.ROLE_GRANTED, role=role, account=account, sender=admin)
    return {"applied": "GRANT_ROLE", "role": role, "account": account, "deduped": not changed}


def _apply_revoke_role(state: Json, env: TxEnvelope) -> Json:
    admin = require_role(state, ROOT_ADMIN, env)
    payload = _as_dict(env.payload)
    role = require_known_role(payload.get("role"))
    account = normalize_address(payload.get("account"), field="account")

    if has_role(state, role, account):
        _deny_last_root_admin(state, role, account)

    changed = remove_role_member(state, role, account)
    if changed:
        events.emit(state, events.ROLE_REVOKED, role=role, account=account, sender=admin)
    return {"applied": "REVOKE_ROLE", "role": role, "account": account, "deduped": not changed}


def _apply_renounce_role(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)
    role = require_known_role(payload.get("role"))
    account = normalize_address(env.signer, field="signer")

    if not has_role(state, role, account):
        raise Unauthorized("role_required", {"tx_type": env.tx_type, "role": role, "signer": account})
    _deny_last_root_admin(state, role, account)

    remove_role_member(state, role, account)
    events.emit(state, events.ROLE_REVOKED, role=role, account=account, sender=account)
    return {"applied": "RENOUNCE_ROLE", "role": role, "account": account}


def _apply_transfer_ownership(state: Json, env: TxEnvelope) -> Json:
    previous = require_owner(state, env)
    payload = _as_dict(env.payload)
    new_owner = require_address(payload.get("new_owner"), field="new_owner")

    state["owner"] = new_owner
    events.emit(state, events.OWNERSHIP_TRANSFERRED, previous_owner=previous, new_owner=new_owner)
    return {"applied": "TRANSFER_OWNERSHIP", "previous_owner": previous, "new_owner": new_owner}


ROLES_TX_TYPES: Set[str] = {
    "GRANT_ROLE",
    "REVOKE_ROLE",
    "RENOUNCE_ROLE",
    "TRANSFER_OWNERSHIP",
}


def apply_roles(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = str(env.tx_type or "").strip().upper()
    if t not in ROLES_TX_TYPES:
        return None

    if t == "GRANT_ROLE":
        return _apply_grant_role(state, env)
    if t == "REVOKE_ROLE":
        return _apply_revoke_role(state, env)
    if t == "RENOUNCE_ROLE":
        return _apply_renounce_role(state, env)
    if t == "TRANSFER_OWNERSHIP":
        return _apply_transfer_ownership(state, env)

    return None


__all__ = ["ROLES_TX_TYPES", "apply_roles"]
