from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from kinwatch.apps.api.response import error_response
from kinwatch.core.errors import InvalidPathError, RpcError, StoreError


logger = logging.getLogger(__name__)

# HTTP status for each RPC error code.
RPC_STATUS_CODES: dict[str, int] = {
    "UNAUTHENTICATED": 401,
    "PERMISSION_DENIED": 403,
    "RESOURCE_EXHAUSTED": 429,
    "INVALID_ARGUMENT": 400,
    "NOT_FOUND": 404,
    "INTERNAL": 500,
}

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "INVALID_ARGUMENT",
    401: "UNAUTHENTICATED",
    403: "PERMISSION_DENIED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "REQUEST_VALIDATION_ERROR",
    429: "RESOURCE_EXHAUSTED",
    500: "INTERNAL",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def rpc_error_handler(request: Request, exc: RpcError) -> JSONResponse:
    status_code = RPC_STATUS_CODES.get(exc.code, 500)
    payload = error_response(request=request, code=exc.code, message=exc.message, details=exc.details)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


async def invalid_path_handler(request: Request, exc: InvalidPathError) -> JSONResponse:
    # Keys come from device paths and record bodies, so a rejected key is a caller error.
    logger.info("invalid_path path=%s reason=%s", request.url.path, exc)
    payload = error_response(request=request, code="INVALID_ARGUMENT", message=str(exc))
    return JSONResponse(content=payload, status_code=400)


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    # Storage failures surface as a generic internal error; details stay in the logs.
    logger.error("store_error path=%s", request.url.path, exc_info=exc)
    payload = error_response(request=request, code="INTERNAL", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # Ensure Starlette-raised exceptions (404 routing, 405) share the envelope.
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": exc.errors()},
    )
    return JSONResponse(content=payload, status_code=422)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.exception("unhandled_error path=%s", request.url.path, exc_info=exc)
    payload = error_response(
        request=request,
        code="INTERNAL",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
