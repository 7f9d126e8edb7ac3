"""Global JSON error handling with stable error codes and request correlation."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from overlay.errors import OverlayError
from overlay.telemetry.request_id import get_request_id

log = logging.getLogger(__name__)

_STATUS_TO_CODE = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    422: "validation_error",
    503: "storage_unavailable",
}


def _rid_from_request(request: Request) -> str:
    return get_request_id() or request.headers.get("X-Request-ID") or str(uuid4())


def _json_error(
    request: Request,
    *,
    detail: str,
    status: int,
    code: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    rid = _rid_from_request(request)
    body: Dict[str, Any] = {
        "detail": detail,
        "code": code or _STATUS_TO_CODE.get(status, "error"),
        "request_id": rid,
    }
    if extra:
        body.update(extra)
    resp = JSONResponse(status_code=status, content=body)
    resp.headers["X-Request-ID"] = rid
    return resp


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(OverlayError)
    async def overlay_exc_handler(request: Request, exc: OverlayError) -> JSONResponse:
        if exc.status_code >= 500:
            log.error("request failed: %s", exc, extra={"code": exc.code})
        return _json_error(request, detail=str(exc), status=exc.status_code, code=exc.code)

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = exc.detail if isinstance(exc.detail, str) else "HTTP error"
        return _json_error(request, detail=detail, status=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _json_error(
            request,
            detail="Validation failed",
            status=422,
            code="validation_error",
            extra={"errors": exc.errors()},
        )
