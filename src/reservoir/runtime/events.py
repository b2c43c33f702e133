# src/reservoir/runtime/events.py
from __future__ import annotations

"""Ordered, append-only event log.

Appliers call ``emit()`` against the *working* state. Emitted records are
staged under a transient key and only become part of the log when the
executor commits the operation; a failed operation drops them together with
the rest of the working copy.
"""

from typing import Any, Dict, List

Json = Dict[str, Any]

PENDING_KEY = "_pending_events"

# Core policy events
TAX_COLLECTED = "TAX_COLLECTED"
TAX_RATE_UPDATED = "TAX_RATE_UPDATED"
RESERVOIR_UPDATED = "RESERVOIR_UPDATED"
EXEMPTION_UPDATED = "EXEMPTION_UPDATED"
REWARD_DISTRIBUTED = "REWARD_DISTRIBUTED"
REWARD_POOL_FUNDED = "REWARD_POOL_FUNDED"
REWARD_POOL_WITHDRAWN = "REWARD_POOL_WITHDRAWN"
REWARD_POOL_MIGRATED = "REWARD_POOL_MIGRATED"

# Ledger-standard events
TRANSFER = "TRANSFER"
APPROVAL = "APPROVAL"
ROLE_GRANTED = "ROLE_GRANTED"
ROLE_REVOKED = "ROLE_REVOKED"
OWNERSHIP_TRANSFERRED = "OWNERSHIP_TRANSFERRED"
UPGRADED = "UPGRADED"
INITIALIZED = "INITIALIZED"


def emit(state: Json, event: str, **fields: Any) -> Json:
    seq = int(state.get("event_seq", 0) or 0) + 1
    state["event_seq"] = seq
    rec: Json = {"seq": seq, "op_seq": int(state.get("op_seq", 0) or 0), "event": str(event)}
    rec.update(fields)
    pending = state.get(PENDING_KEY)
    if not isinstance(pending, list):
        pending = []
        state[PENDING_KEY] = pending
    pending.append(rec)
    return rec


def drain_pending(state: Json) -> List[Json]:
    pending = state.pop(PENDING_KEY, None)
    return list(pending) if isinstance(pending, list) else []


__all__ = ["PENDING_KEY", "drain_pending", "emit"]
