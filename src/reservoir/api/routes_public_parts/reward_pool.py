from __future__ import annotations

from fastapi import APIRouter, Request

from reservoir.api.routes_public_parts.common import Json, _view

router = APIRouter()


@router.get("/reward-pool")
def reward_pool(request: Request) -> Json:
    v = _view(request)
    rp = v.reward_pool
    return {
        "ok": True,
        "account": v.pool_account,
        "balance": str(v.pool_balance),
        "status": v.pool_status(),
        "funded_total": str(rp.get("funded_total", 0)),
        "distributed_total": str(rp.get("distributed_total", 0)),
        "withdrawn_total": str(rp.get("withdrawn_total", 0)),
        "designations": rp.get("designations", {}),
    }
