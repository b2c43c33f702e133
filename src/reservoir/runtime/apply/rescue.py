# src/reservoir/runtime/apply/rescue.py
from __future__ import annotations

"""
Foreign-asset rescue.

RESCUE_FOREIGN_ASSET {asset, to, amount} returns foreign tokens that were
sent to the engine's address by mistake. The applier only validates; the
transfer itself is an external call the executor performs *after* the
operation has been committed, so a callback into the engine during that call
observes fully updated state.
"""

from typing import Any, Dict, Optional, Set

from reservoir.ledger.accounts import normalize_address, require_address, require_amount
from reservoir.runtime.errors import InvalidInput
from reservoir.runtime.gates import require_owner
from reservoir.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]

EXTERNAL_CALL_KEY = "external_call"


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def _apply_rescue_foreign_asset(state: Json, env: TxEnvelope) -> Json:
    require_owner(state, env)
    payload = _as_dict(env.payload)

    asset = normalize_address(payload.get("asset"), field="asset")
    engine = str(_as_dict(state.get("meta")).get("engine_address") or "")
    if asset == engine:
        raise InvalidInput("self_asset", {"asset": asset})
    to = require_address(payload.get("to"), field="to", reason="zero_recipient")
    amount = require_amount(payload.get("amount"))

    return {
        "applied": "RESCUE_FOREIGN_ASSET",
        "asset": asset,
        "to": to,
        "amount": amount,
        EXTERNAL_CALL_KEY: {"kind": "foreign_transfer", "asset": asset, "to": to, "amount": amount},
    }


RESCUE_TX_TYPES: Set[str] = {"RESCUE_FOREIGN_ASSET"}


def apply_rescue(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = str(env.tx_type or "").strip().upper()
    if t not in RESCUE_TX_TYPES:
        return None
    return _apply_rescue_foreign_asset(state, env)


__all__ = ["EXTERNAL_CALL_KEY", "RESCUE_TX_TYPES", "apply_rescue"]
