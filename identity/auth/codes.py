"""
Identity service — one-time secret generation, digesting and comparison.

Reset codes are short numeric strings typed by the user; email verification
tokens are 256-bit hex strings that travel inside a link.  Only an HMAC
digest of either is ever persisted, keyed with VERIFY_TOKEN_SECRET, so a
leaked database dump cannot be brute-forced offline without the server key.
"""
from __future__ import annotations

import hashlib
import hmac
import secrets

from identity.auth.constants import (
    OPAQUE_TOKEN_BYTES,
    RESET_CODE_LENGTH,
    RESET_CODE_MAX_LENGTH,
)
from identity.exceptions import ConfigError


def generate_code(
    length: int = RESET_CODE_LENGTH,
    max_length: int = RESET_CODE_MAX_LENGTH,
) -> str:
    """
    Return a uniformly random numeric code of ``length`` digits.

    ``length`` is clamped to ``[1, max_length]``.  The value is drawn from
    ``[10**(n-1), 10**n - 1]`` with the OS CSPRNG and zero-padded to ``n``.
    """
    n = min(max(1, int(length)), max_length)
    low = 10 ** (n - 1)
    high = 10**n - 1
    value = low + secrets.randbelow(high - low + 1)
    return str(value).zfill(n)


def generate_opaque_token() -> str:
    """Return a 256-bit random token, hex-encoded."""
    return secrets.token_hex(OPAQUE_TOKEN_BYTES)


def constant_time_equals(a: str, b: str) -> bool:
    """
    Compare two hex digests without leaking where they first differ.

    Malformed hex or differing lengths return False instead of raising.
    """
    try:
        left = bytes.fromhex(str(a))
        right = bytes.fromhex(str(b))
    except ValueError:
        return False
    if len(left) != len(right):
        return False
    return hmac.compare_digest(left, right)


class SecretHasher:
    """Keyed digest (HMAC-SHA256) for reset codes and verification tokens."""

    def __init__(self, key: str) -> None:
        if not key:
            raise ConfigError("Missing VERIFY_TOKEN_SECRET.")
        self._key = key.encode("utf-8")

    def hash(self, secret: str) -> str:
        return hmac.new(self._key, str(secret).encode("utf-8"), hashlib.sha256).hexdigest()

    def matches(self, secret: str, stored_hash: str) -> bool:
        return constant_time_equals(self.hash(secret), stored_hash)
