# src/reservoir/runtime/gates.py
from __future__ import annotations

"""Authorization gates.

Every privileged applier calls one of these first. They only read state, so
a failed check can never leave a partial mutation behind.
"""

from typing import Any, Dict

from reservoir.ledger.constants import ROLE_IDS
from reservoir.ledger.roles_schema import has_role
from reservoir.runtime.errors import InvalidInput, Unauthorized
from reservoir.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _signer(env: TxEnvelope) -> str:
    return str(getattr(env, "signer", "") or "").strip().lower()


def require_owner(state: Json, env: TxEnvelope) -> str:
    signer = _signer(env)
    owner = str(state.get("owner") or "").strip().lower()
    if not owner or signer != owner:
        raise Unauthorized("owner_required", {"tx_type": env.tx_type, "signer": signer})
    return signer


def require_role(state: Json, role: str, env: TxEnvelope) -> str:
    signer = _signer(env)
    if not signer or not has_role(state, role, signer):
        raise Unauthorized("role_required", {"tx_type": env.tx_type, "role": role, "signer": signer})
    return signer


def require_known_role(role: Any) -> str:
    r = str(role or "").strip().upper()
    if r not in ROLE_IDS:
        raise InvalidInput("unknown_role", {"role": role, "known": list(ROLE_IDS)})
    return r


__all__ = ["require_known_role", "require_owner", "require_role"]
