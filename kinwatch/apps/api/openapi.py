from __future__ import annotations

from typing import Any

from kinwatch.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, *, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message, details=details)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: _response("Invalid argument", code="INVALID_ARGUMENT", message="targetUid is required."),
    401: _response("Unauthenticated", code="UNAUTHENTICATED", message="User must be authenticated."),
    403: _response(
        "Permission denied",
        code="PERMISSION_DENIED",
        message="User must be an admin to perform this action.",
    ),
    404: _response("Not found", code="NOT_FOUND", message="Account not found."),
    422: _response(
        "Request validation failed",
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": []},
    ),
    500: _response("Internal error", code="INTERNAL", message="Internal server error"),
}

COMMAND_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    **DEFAULT_ERROR_RESPONSES,
    429: _response(
        "Daily media quota exhausted",
        code="RESOURCE_EXHAUSTED",
        message=(
            "Command Blocked: Target user has exceeded the daily media limit (5/5). "
            "Increase limit via Admin Controls."
        ),
        details={"reason": "LIMIT_REACHED", "type": "photos"},
    ),
}
