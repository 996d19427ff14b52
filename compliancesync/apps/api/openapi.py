from __future__ import annotations

from typing import Any

from compliancesync.apps.api.response import ErrorBody


def _error_example(*, code: str, message: str, **details: Any) -> dict[str, Any]:
    # Build a consistent error example for OpenAPI docs.
    return {"error": message, "code": code, "request_id": "req_example", **details}


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: {
        "model": ErrorBody,
        "description": "Validation error",
        "content": {
            "application/json": {
                "example": _error_example(
                    code="VALIDATION_ERROR",
                    message="File exceeds the maximum upload size",
                    field="file_size",
                    limit=26214400,
                ),
            }
        },
    },
    401: {
        "model": ErrorBody,
        "description": "Unauthorized",
        "content": {
            "application/json": {
                "example": _error_example(code="AUTH_UNAUTHORIZED", message="Missing or invalid bearer token"),
            }
        },
    },
    403: {
        "model": ErrorBody,
        "description": "Forbidden",
        "content": {
            "application/json": {
                "example": _error_example(code="AUTH_FORBIDDEN", message="Insufficient role for this operation"),
            }
        },
    },
    404: {
        "model": ErrorBody,
        "description": "Not found",
        "content": {
            "application/json": {
                "example": _error_example(code="NOT_FOUND", message="Evidence not found"),
            }
        },
    },
    409: {
        "model": ErrorBody,
        "description": "Conflict",
        "content": {
            "application/json": {
                "example": _error_example(
                    code="SEAT_LIMIT_REACHED",
                    message="Seat limit reached for the starter plan",
                    limit=10,
                ),
            }
        },
    },
    500: {
        "model": ErrorBody,
        "description": "Internal error",
        "content": {
            "application/json": {
                "example": _error_example(code="INTERNAL_ERROR", message="Internal server error"),
            }
        },
    },
}
