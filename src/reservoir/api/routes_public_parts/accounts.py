from __future__ import annotations

from fastapi import APIRouter, Request

from reservoir.api.routes_public_parts.common import Json, _view
from reservoir.ledger.accounts import normalize_address

router = APIRouter()


@router.get("/accounts/{account}")
def account(request: Request, account: str) -> Json:
    acct = normalize_address(account)
    v = _view(request)
    return {
        "ok": True,
        "account": acct,
        "balance": str(v.balance_of(acct)),
        "exempt": v.is_exempt(acct),
        "roles": v.roles_of(acct),
        "is_owner": bool(v.owner) and v.owner == acct,
        "is_pool": bool(v.pool_account) and v.pool_account == acct,
    }


@router.get("/allowances/{owner}/{spender}")
def allowance(request: Request, owner: str, spender: str) -> Json:
    o = normalize_address(owner, field="owner")
    s = normalize_address(spender, field="spender")
    return {"ok": True, "owner": o, "spender": s, "allowance": str(_view(request).allowance(o, s))}
