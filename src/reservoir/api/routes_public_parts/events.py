from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request

from reservoir.api.routes_public_parts.common import Json, _executor, _int_param, _wire_amounts
from reservoir.runtime.executor import MAX_EVENTS_PAGE

router = APIRouter()


@router.get("/events")
def events(request: Request, after: Optional[str] = None, limit: Optional[str] = None) -> Json:
    a = _int_param(after, 0, lo=0, hi=2**63 - 1)
    n = _int_param(limit, 100, lo=1, hi=MAX_EVENTS_PAGE)
    items = _executor(request).events(after=a, limit=n)
    next_after = int(items[-1]["seq"]) if items else a
    return {"ok": True, "events": _wire_amounts(items), "next_after": next_after}
