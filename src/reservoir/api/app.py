from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from reservoir.api.errors import ApiError, apply_error_json, status_for_apply_error
from reservoir.api.routes_public import public_router
from reservoir.api.security import RequestSizeLimitMiddleware
from reservoir.api.structured_logging import RequestLogMiddleware, configure_structured_logging
from reservoir.runtime.errors import ApplyError
from reservoir.runtime.executor import ReservoirExecutor
from reservoir.runtime.runtime_logging import log_event

log = logging.getLogger("reservoir.api")


def build_executor() -> ReservoirExecutor:
    """Build the executor for API runtime from engine config.

    This wrapper exists so tests can monkeypatch `reservoir.api.app.build_executor`
    without reaching into runtime modules.
    """
    return ReservoirExecutor.from_env()


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApplyError)
    async def _apply_error(request: Request, exc: ApplyError) -> JSONResponse:
        status = status_for_apply_error(exc)
        if status >= 500:
            log_event(log, "apply_error", level=logging.ERROR, path=request.url.path, code=exc.code, reason=exc.reason)
        return JSONResponse(status_code=status, content=apply_error_json(exc))

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_json())

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "ok": False,
                "error": {
                    "code": "invalid_input",
                    "reason": "request_validation_failed",
                    "details": {"errors": jsonable_encoder(exc.errors())},
                },
            },
        )


def create_app(*, boot_runtime: bool = True) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): load engine config and attach an executor
      - False: no executor; routes that need one answer 500 not_ready
    """
    configure_structured_logging()
    mode = os.environ.get("RESERVOIR_MODE", "prod").strip().lower()

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(title="Reservoir Token API", docs_url=None, redoc_url=None, openapi_url=None)
    else:
        app = FastAPI(title="Reservoir Token API")

    app.state.executor = build_executor() if boot_runtime else None

    # Request size limiter first so oversized bodies fail fast.
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RequestLogMiddleware)

    _install_error_handlers(app)
    app.include_router(public_router)
    return app
