from __future__ import annotations

from fastapi import APIRouter, Request

from reservoir.api.routes_public_parts.common import Json, _executor, _wire_amounts
from reservoir.api.schemas import TxSubmitRequest

router = APIRouter()


@router.post("/tx/submit")
def tx_submit(request: Request, body: TxSubmitRequest) -> Json:
    """Apply one operation synchronously.

    Returns {ok, op_seq, result, events}. Failures propagate as ApplyError
    and are rendered by the app-level handler.
    """
    ex = _executor(request)
    out = ex.submit(body.to_envelope_json())
    return {
        "ok": True,
        "op_seq": out["op_seq"],
        "result": _wire_amounts(out["result"]),
        "events": _wire_amounts(out["events"]),
    }
