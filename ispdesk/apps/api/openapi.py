from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from ispdesk.apps.api.rate_limit import RATE_LIMIT_MESSAGE
from ispdesk.apps.api.response import ErrorEnvelope


class RateLimitedBody(BaseModel):
    error: str
    retryAfter: int


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _envelope(description: str, example: dict[str, Any]) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


RATE_LIMITED_RESPONSE: dict[int, dict[str, Any]] = {
    429: {
        "model": RateLimitedBody,
        "description": "Too many requests from this client",
        "headers": {"Retry-After": {"description": "Seconds until the window resets", "schema": {"type": "integer"}}},
        "content": {
            "application/json": {"example": {"error": RATE_LIMIT_MESSAGE, "retryAfter": 42}},
        },
    },
}

DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: _envelope("Bad request", _error_example(code="BAD_REQUEST", message="Bad request")),
    401: _envelope(
        "Unauthorized",
        _error_example(code="AUTH_UNAUTHORIZED", message="Missing or invalid bearer token"),
    ),
    403: _envelope(
        "Forbidden",
        _error_example(code="AUTH_FORBIDDEN", message="Insufficient role for this operation"),
    ),
    404: _envelope("Not found", _error_example(code="NOT_FOUND", message="Resource not found")),
    409: _envelope(
        "Lifecycle conflict",
        _error_example(
            code="INVALID_TRANSITION",
            message="Ticket CON-2026-000123 cannot move from NEW to INSTALLED",
            details={"field": "contract_status", "reason": "invalid-transition"},
        ),
    ),
    422: _envelope(
        "Validation error",
        _error_example(code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    ),
    **RATE_LIMITED_RESPONSE,
    500: _envelope(
        "Internal server error",
        _error_example(code="INTERNAL_ERROR", message="Internal server error"),
    ),
}
