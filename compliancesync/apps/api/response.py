from __future__ import annotations

from typing import Any
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel, ConfigDict


API_VERSION = "v1"


class ErrorBody(BaseModel):
    # Uniform error shape; limit-style details are flattened next to the message.
    model_config = ConfigDict(extra="allow")

    error: str
    code: str
    request_id: str | None = None


def get_request_id(request: Request) -> str:
    # Use existing request IDs when provided to preserve traceability.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get("X-Request-Id")
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key, value in (details or {}).items():
        # Reserved keys always come from the error itself.
        if key not in {"error", "code", "request_id"}:
            payload[key] = value
    payload.update({"error": message, "code": code, "request_id": get_request_id(request)})
    return payload
