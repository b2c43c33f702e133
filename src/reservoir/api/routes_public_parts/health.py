from __future__ import annotations

import time

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
def health(request: Request) -> dict[str, object]:
    # Must never fail: reports readiness instead of raising.
    ex = getattr(request.app.state, "executor", None)
    return {
        "ok": ex is not None,
        "service": "reservoir",
        "version": "v1",
        "ts_ms": int(time.time() * 1000),
        "chain_id": getattr(ex, "chain_id", None),
    }
