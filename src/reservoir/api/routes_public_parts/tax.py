from __future__ import annotations

from fastapi import APIRouter, Request

from reservoir.api.routes_public_parts.common import Json, _view
from reservoir.ledger.constants import BPS_DENOMINATOR, MAX_TAX_BPS

router = APIRouter()


@router.get("/tax")
def tax(request: Request) -> Json:
    v = _view(request)
    return {
        "ok": True,
        "rate_bps": v.tax_rate_bps,
        "max_bps": MAX_TAX_BPS,
        "denominator": BPS_DENOMINATOR,
        "reservoir": v.reservoir,
        "exempt": sorted(a for a, on in v.exempt.items() if on),
    }
