"""Shared error helpers and codes."""

from __future__ import annotations

from typing import Any

from starlette.responses import JSONResponse


class ErrorCode:
    INVALID_JSON = "invalid_json"
    INVALID_MODE = "invalid_mode"
    MISSING_PARAMETER = "missing_parameter"
    INVALID_TIMESTAMP = "invalid_timestamp"
    INVALID_SALT = "invalid_salt"
    HASH_FAILURE = "hash_failure"
    HASH_TIMEOUT = "hash_timeout"
    NOT_FOUND = "not_found"
    INTERNAL_ERROR = "internal_error"


def error_response(
    code: str,
    message: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {
        "error": message,
        "code": code,
    }
    if details:
        payload.update(details)
    return JSONResponse(payload, status_code=status_code)
