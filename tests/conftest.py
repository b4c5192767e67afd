"""Pytest configuration and fixtures."""

from typing import Any

import pytest

from naversign.common.settings import Settings
from naversign.signing.engine import SignatureMode, SigningOptions

# Canonical low-cost salt so hashing stays fast in tests
FAST_SALT = "$2b$04$abcdefghijklmnopqrstuu"


@pytest.fixture
def settings() -> Settings:
    """Create test settings."""
    return Settings(
        environment="production",
        signature_mode=SignatureMode.DIRECT_SALT,
        bcrypt_cost=4,
        strict_timestamp=True,
        allow_mode_override=True,
        debug_endpoint_enabled=True,
        hash_workers=2,
        hash_timeout_seconds=None,
        log_json=False,
    )


@pytest.fixture
def direct_options() -> SigningOptions:
    return SigningOptions(mode=SignatureMode.DIRECT_SALT, cost=4)


@pytest.fixture
def sample_body() -> dict[str, Any]:
    """Signature request body with a fast salt."""
    return {
        "client_id": "abc123",
        "timestamp": "1700000000000",
        "client_secret": FAST_SALT,
    }
