from __future__ import annotations

from typing import Any, Dict

from fastapi import Request

from reservoir.api.errors import ApiError
from reservoir.ledger.state import LedgerView

Json = Dict[str, Any]


def _executor(request: Request):
    ex = getattr(request.app.state, "executor", None)
    if ex is None:
        raise ApiError.internal("not_ready", "executor not attached to app.state", {})
    return ex


def _view(request: Request) -> LedgerView:
    return _executor(request).view()


def _int_param(v: Any, default: int, *, lo: int, hi: int) -> int:
    """Parse an int-ish query param and clamp it to [lo, hi]."""
    if v is None or (isinstance(v, str) and not v.strip()):
        return int(default)
    try:
        n = int(str(v).strip())
    except ValueError:
        raise ApiError.bad_request("invalid_input", "query parameter must be an integer", {"value": v})
    return max(int(lo), min(int(hi), n))


# Token quantities exceed 2**53, so they travel as decimal strings like the
# account and allowance views. Counters (seq, op_seq, bps) stay ints.
AMOUNT_KEYS = frozenset(
    {"amount", "received", "tax", "gross", "balance", "pool_balance", "allowance", "available"}
)


def _wire_amounts(obj: Any) -> Any:
    if isinstance(obj, dict):
        out: Json = {}
        for k, v in obj.items():
            if k in AMOUNT_KEYS and isinstance(v, int) and not isinstance(v, bool):
                out[k] = str(v)
            else:
                out[k] = _wire_amounts(v)
        return out
    if isinstance(obj, list):
        return [_wire_amounts(v) for v in obj]
    return obj
