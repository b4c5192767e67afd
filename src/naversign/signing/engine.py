"""Signature engine for Naver Commerce API client authentication.

The signature is a bcrypt hash of ``client_id + "_" + timestamp``. How the
client secret takes part depends on the configured mode:

- ``direct_salt``: the secret is the bcrypt salt; the hash string is the signature.
- ``generated_salt``: a fresh salt is generated and the secret is appended to
  the password before hashing.
- ``base64_wrapped``: as ``direct_salt``, with the hash string base64-encoded.
  This is the form the Naver Commerce API token endpoint expects.

Every function here is pure: options are passed in explicitly and nothing is
cached between calls.
"""

from __future__ import annotations

import base64
import binascii
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import bcrypt

from naversign.common.logging import get_logger
from naversign.signing.errors import (
    HashComputationError,
    InvalidSaltError,
    InvalidTimestampError,
    MissingParameterError,
)

logger = get_logger(__name__)

DEFAULT_COST = 10
MAX_PASSWORD_BYTES = 72
BCRYPT_ALPHABET = "./ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"

_SALT_RE = re.compile(r"\$2[aby]\$(?P<cost>\d{2})\$[./A-Za-z0-9]{22}")
_DIGITS_RE = re.compile(r"[0-9]+")

GENERATE_FIELDS = ("client_id", "timestamp", "client_secret")
VERIFY_FIELDS = GENERATE_FIELDS + ("signature",)


class SignatureMode(str, Enum):
    """How the bcrypt hash is derived and encoded."""

    DIRECT_SALT = "direct_salt"
    GENERATED_SALT = "generated_salt"
    BASE64_WRAPPED = "base64_wrapped"

    @property
    def method_tag(self) -> str:
        return {
            SignatureMode.DIRECT_SALT: "bcrypt_direct_salt",
            SignatureMode.GENERATED_SALT: "bcrypt_with_generated_salt",
            SignatureMode.BASE64_WRAPPED: "bcrypt_base64",
        }[self]


@dataclass(frozen=True)
class SigningOptions:
    """Per-call engine configuration."""

    mode: SignatureMode
    cost: int = DEFAULT_COST
    strict_timestamp: bool = True


@dataclass(frozen=True)
class SignatureRequest:
    """Inputs to signature generation."""

    client_id: Any
    timestamp: Any
    client_secret: Any

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> SignatureRequest:
        return cls(
            client_id=data.get("client_id"),
            timestamp=data.get("timestamp"),
            client_secret=data.get("client_secret"),
        )


@dataclass(frozen=True)
class VerificationRequest(SignatureRequest):
    """Inputs to signature verification."""

    signature: Any = None

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> VerificationRequest:
        return cls(
            client_id=data.get("client_id"),
            timestamp=data.get("timestamp"),
            client_secret=data.get("client_secret"),
            signature=data.get("signature"),
        )


@dataclass(frozen=True)
class SignatureResult:
    """A generated signature plus the metadata used to produce it."""

    signature: str
    mode: SignatureMode
    client_id: str
    timestamp: str
    password: str
    timestamp_ms: int | None = None
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a signature verification."""

    valid: bool
    mode: SignatureMode
    password: str
    verified_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _is_present(value: Any) -> bool:
    return value is not None and value != ""


def _require(
    request: SignatureRequest,
    fields: tuple[str, ...],
    message: str | None = None,
) -> None:
    received = {name: _is_present(getattr(request, name)) for name in fields}
    if not all(received.values()):
        raise MissingParameterError(
            message,
            details={
                "required": list(fields),
                "received": received,
                "note": "timestamp should be milliseconds since Unix epoch",
            }
        )


def _timestamp_text(timestamp: Any, strict: bool) -> str:
    """Render a timestamp as it appears in the password."""
    if isinstance(timestamp, float) and not strict and timestamp.is_integer():
        # JSON clients sometimes send 1700000000000.0
        return str(int(timestamp))

    if isinstance(timestamp, bool) or not isinstance(timestamp, (str, int)):
        raise _invalid_timestamp(timestamp)

    if isinstance(timestamp, int):
        if strict and timestamp < 0:
            raise _invalid_timestamp(timestamp)
        return str(timestamp)

    if strict and not _DIGITS_RE.fullmatch(timestamp):
        raise _invalid_timestamp(timestamp)
    return timestamp


def _invalid_timestamp(received: Any) -> InvalidTimestampError:
    return InvalidTimestampError(
        details={
            "required": "Numeric timestamp in milliseconds",
            "received": received if isinstance(received, (str, int, float)) else str(received),
            "example": str(current_timestamp_ms()),
        }
    )


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else str(value)


def current_timestamp_ms() -> int:
    """Current Unix time in milliseconds."""
    return time.time_ns() // 1_000_000


def build_password(client_id: str, timestamp: str | int) -> str:
    """Join client id and timestamp the way Naver expects: ``{client_id}_{timestamp}``."""
    return f"{client_id}_{timestamp}"


def is_valid_bcrypt_salt(secret: str) -> bool:
    """
    Check that a string is a structurally valid bcrypt salt.

    Accepts ``$2a$``, ``$2b$`` and ``$2y$`` prefixes, a two-digit
    cost between 04 and 31 and exactly 22 characters of bcrypt's base64
    alphabet.
    """
    if not isinstance(secret, str):
        return False
    match = _SALT_RE.fullmatch(secret)
    if not match:
        return False
    return 4 <= int(match.group("cost")) <= 31


def normalize_salt(salt: str) -> str:
    """
    Clear the unused low bits of the salt's final character.

    22 base64 characters carry 132 bits but bcrypt only uses 128; OpenBSD
    bcrypt ignores the remaining 4 bits, so ``...stuv`` and ``...stuu`` are
    the same salt.
    """
    last = BCRYPT_ALPHABET.index(salt[-1])
    return salt[:-1] + BCRYPT_ALPHABET[last & 0x30]


def _encode(value: str) -> bytes:
    encoded = value.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise HashComputationError(
            f"bcrypt input exceeds {MAX_PASSWORD_BYTES} bytes",
            details={"length": len(encoded)},
        )
    return encoded


def _hash(password: str, salt: bytes) -> bytes:
    try:
        return bcrypt.hashpw(_encode(password), salt)
    except ValueError as e:
        raise HashComputationError(str(e)) from e


def _checkpw(password: str, hashed: bytes) -> bool:
    encoded = _encode(password)
    try:
        return bcrypt.checkpw(encoded, hashed)
    except ValueError:
        # checkpw raises on anything that is not a well-formed bcrypt hash
        return False


def _direct_salt(secret: str) -> bytes:
    if not is_valid_bcrypt_salt(secret):
        raise InvalidSaltError(
            details={
                "required": "bcrypt salt such as $2a$10$ followed by 22 characters",
                "received_length": len(secret),
            }
        )
    return normalize_salt(secret).encode("ascii")


def generate(request: SignatureRequest, options: SigningOptions) -> SignatureResult:
    """
    Produce a signature for a client id and timestamp.

    Args:
        request: Client id, timestamp and client secret
        options: Output mode, cost factor and timestamp strictness

    Returns:
        SignatureResult carrying the signature and the password it covers

    Raises:
        MissingParameterError: A required field is absent or empty
        InvalidTimestampError: The timestamp is not acceptable
        InvalidSaltError: direct_salt/base64_wrapped with a secret that is not a salt
        HashComputationError: bcrypt rejected the inputs
    """
    _require(request, GENERATE_FIELDS)
    timestamp = _timestamp_text(request.timestamp, options.strict_timestamp)
    client_id = _as_text(request.client_id)
    secret = _as_text(request.client_secret)
    password = build_password(client_id, timestamp)

    logger.debug(
        "Generating signature",
        mode=options.mode.value,
        client_id=client_id,
        secret_length=len(secret),
    )

    if options.mode is SignatureMode.GENERATED_SALT:
        try:
            salt = bcrypt.gensalt(rounds=options.cost)
        except ValueError as e:
            raise HashComputationError(str(e)) from e
        hashed = _hash(build_password(password, secret), salt)
        signature = hashed.decode("ascii")
    else:
        hashed = _hash(password, _direct_salt(secret))
        if options.mode is SignatureMode.BASE64_WRAPPED:
            signature = base64.b64encode(hashed).decode("ascii")
        else:
            signature = hashed.decode("ascii")

    return SignatureResult(
        signature=signature,
        mode=options.mode,
        client_id=client_id,
        timestamp=timestamp,
        password=password,
        timestamp_ms=int(timestamp) if _DIGITS_RE.fullmatch(timestamp) else None,
    )


def verify(request: VerificationRequest, options: SigningOptions) -> VerificationResult:
    """
    Check a signature against the inputs it should have been produced from.

    The comparison replicates the mode the signature was generated in, so
    generated_salt signatures are checked against ``password_secret`` and
    base64_wrapped signatures are decoded first. Malformed signatures are
    reported as invalid rather than raised.
    """
    _require(request, VERIFY_FIELDS, "Missing required parameters for verification")
    timestamp = _timestamp_text(request.timestamp, strict=False)
    password = build_password(_as_text(request.client_id), timestamp)
    signature = _as_text(request.signature)

    if options.mode is SignatureMode.GENERATED_SALT:
        candidate = build_password(password, _as_text(request.client_secret))
    else:
        candidate = password

    if options.mode is SignatureMode.BASE64_WRAPPED:
        try:
            hashed = base64.b64decode(signature, validate=True)
        except (binascii.Error, ValueError):
            hashed = b""
    else:
        hashed = signature.encode("utf-8")

    valid = bool(hashed) and _checkpw(candidate, hashed)
    logger.debug("Verified signature", mode=options.mode.value, valid=valid)

    return VerificationResult(valid=valid, mode=options.mode, password=password)
