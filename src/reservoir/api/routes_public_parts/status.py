from __future__ import annotations

from fastapi import APIRouter, Request

from reservoir.api.routes_public_parts.common import Json, _executor

router = APIRouter()


@router.get("/status")
def status(request: Request) -> Json:
    ex = _executor(request)
    v = ex.view()
    return {
        "ok": True,
        "chain_id": ex.chain_id,
        "engine_address": v.engine_address,
        "initialized": v.initialized,
        "name": v.meta.get("name", ""),
        "symbol": v.meta.get("symbol", ""),
        "decimals": v.meta.get("decimals", 0),
        "total_supply": str(v.total_supply),
        "owner": v.owner,
        "roles": {"ROOT_ADMIN": v.role_members("ROOT_ADMIN"), "REWARD_MANAGER": v.role_members("REWARD_MANAGER")},
        "logic": {"ref": v.logic_ref, "version": v.logic_version},
        "op_seq": v.op_seq,
        "canon_sha256": ex.tx_index.source_sha256,
    }
