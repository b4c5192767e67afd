"""Signature engine."""

from naversign.signing.engine import (
    SignatureMode,
    SignatureRequest,
    SignatureResult,
    SigningOptions,
    VerificationRequest,
    VerificationResult,
    build_password,
    generate,
    is_valid_bcrypt_salt,
    verify,
)
from naversign.signing.errors import (
    HashComputationError,
    InvalidSaltError,
    InvalidTimestampError,
    MissingParameterError,
    SignatureError,
)

__all__ = [
    "SignatureMode",
    "SignatureRequest",
    "SignatureResult",
    "SigningOptions",
    "VerificationRequest",
    "VerificationResult",
    "build_password",
    "generate",
    "is_valid_bcrypt_salt",
    "verify",
    "SignatureError",
    "MissingParameterError",
    "InvalidTimestampError",
    "InvalidSaltError",
    "HashComputationError",
]
