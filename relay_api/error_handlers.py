"""Mapeo de errores a respuestas JSON con vocabulario fijo.

El dispositivo solo ve {"success": false, "error": {"code", "message"}}.
Los detalles internos (excepciones de SQLAlchemy, stack traces) quedan
en el log del servidor.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .errors import RateLimited, RelayError, TransientStoreError
from .metrics import REQUEST_ERRORS_TOTAL

logger = logging.getLogger(__name__)

# Status HTTP (auth, rate limiting, routing) → código del vocabulario
_HTTP_STATUS_CODES = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "UNAUTHORIZED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "PAYLOAD_TOO_LARGE",
    429: "RATE_LIMITED",
    503: "SERVICE_UNAVAILABLE",
}

_STORE_RETRY_AFTER_SECONDS = "5"


def _body(code: str, message: str) -> dict:
    return {"success": False, "error": {"code": code, "message": message}}


def error_response(
    exc: RelayError, headers: Optional[Dict[str, str]] = None
) -> JSONResponse:
    REQUEST_ERRORS_TOTAL.labels(code=exc.code).inc()
    if isinstance(exc, TransientStoreError):
        headers = {**(headers or {}), "Retry-After": _STORE_RETRY_AFTER_SECONDS}
    elif isinstance(exc, RateLimited):
        headers = {**(headers or {}), "Retry-After": str(exc.retry_after_seconds)}
    return JSONResponse(
        status_code=exc.http_status,
        content=_body(exc.code, exc.message),
        headers=headers,
    )


async def _relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("REQUEST_FAILED path=%s code=%s", request.url.path, exc.code)
    return error_response(exc)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Solo ubicación y tipo del primer error: nunca se refleja el input
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"Invalid field '{location}': {first.get('type', 'invalid')}"
    else:
        message = "Malformed request"
    REQUEST_ERRORS_TOTAL.labels(code="VALIDATION_ERROR").inc()
    return JSONResponse(status_code=400, content=_body("VALIDATION_ERROR", message))


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_STATUS_CODES.get(exc.status_code, "INTERNAL_ERROR")
    if exc.status_code == 503:
        message = "Service unavailable"
    elif exc.status_code >= 500:
        message = "Internal server error"
    elif code == "NOT_FOUND":
        message = "Endpoint not found"
    else:
        message = str(exc.detail)
    REQUEST_ERRORS_TOTAL.labels(code=code).inc()
    return JSONResponse(
        status_code=exc.status_code,
        content=_body(code, message),
        headers=getattr(exc, "headers", None),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("UNHANDLED_ERROR path=%s err=%s", request.url.path, type(exc).__name__)
    REQUEST_ERRORS_TOTAL.labels(code="INTERNAL_ERROR").inc()
    return JSONResponse(status_code=500, content=_body("INTERNAL_ERROR", "Internal server error"))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RelayError, _relay_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
