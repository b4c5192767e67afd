"""Errors raised by the signature engine."""

from __future__ import annotations

from typing import Any

from naversign.common.errors import ErrorCode


class SignatureError(Exception):
    """Base class for signature engine failures."""

    code = ErrorCode.INTERNAL_ERROR
    status_code = 500
    message = "Signature computation failed"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.message
        self.details = details or {}
        super().__init__(self.message)


class MissingParameterError(SignatureError):
    """One or more required fields are absent or empty."""

    code = ErrorCode.MISSING_PARAMETER
    status_code = 400
    message = "Missing required parameters"


class InvalidTimestampError(SignatureError):
    """Timestamp is not a non-negative integer of epoch milliseconds."""

    code = ErrorCode.INVALID_TIMESTAMP
    status_code = 400
    message = "Invalid timestamp format"


class InvalidSaltError(SignatureError):
    """client_secret cannot be used as a bcrypt salt."""

    code = ErrorCode.INVALID_SALT
    status_code = 400
    message = "Invalid client_secret for bcrypt salt"


class HashComputationError(SignatureError):
    """The bcrypt primitive rejected its inputs."""

    code = ErrorCode.HASH_FAILURE
    status_code = 500
    message = "Failed to compute bcrypt hash"
