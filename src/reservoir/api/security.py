from __future__ import annotations

import os
from typing import Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware


def _truthy(v: str | None) -> bool:
    if v is None:
        return False
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "") or "").strip()
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject oversized request bodies with 413 before they reach a route.

    Controls:
      - RESERVOIR_MAX_REQUEST_BYTES (default 64 KiB)
      - RESERVOIR_SIZE_LIMIT_DISABLE=1 to turn it off
    """

    def __init__(
        self,
        app,
        max_bytes: Optional[int] = None,
        exempt_prefixes: Tuple[str, ...] = ("/docs", "/openapi.json"),
    ):
        super().__init__(app)
        self._enabled = not _truthy(os.environ.get("RESERVOIR_SIZE_LIMIT_DISABLE"))
        self._max_bytes = int(max_bytes) if max_bytes is not None else _env_int("RESERVOIR_MAX_REQUEST_BYTES", 64 * 1024)
        self._exempt_prefixes = exempt_prefixes

    def _too_large(self) -> JSONResponse:
        return JSONResponse(
            status_code=413,
            content={
                "ok": False,
                "error": {"code": "request_too_large", "reason": "request body too large", "details": {"max_bytes": self._max_bytes}},
            },
        )

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        path = request.url.path or ""
        for ex in self._exempt_prefixes:
            if path.startswith(ex):
                return await call_next(request)

        cl = request.headers.get("content-length")
        if cl and cl.strip().isdigit() and int(cl) > self._max_bytes:
            return self._too_large()

        # Also cap actual body bytes (chunked uploads carry no content-length).
        if (request.method or "").upper() in {"POST", "PUT", "PATCH"}:
            body = await request.body()
            if body and len(body) > self._max_bytes:
                return self._too_large()

        return await call_next(request)
