"""
Global slowapi rate limiter.

Imported by auth/router.py for per-endpoint limits.  Mounted onto app.state in
main.py so slowapi middleware can find it.

Storage: RATELIMIT_STORAGE_URI (e.g. redis://localhost:6379/0 in production).
Falls back to in-memory when unset, which is fine for a single process and
for local dev without Redis.

Keys:
  - signup / login / google: normalized client IP
  - send-reset-code:         ``email:<normalized email>``, or ``ip:<normalized IP>``
                             when the body carries no email
"""
from __future__ import annotations

import ipaddress
import json
import os

from fastapi import Request
from slowapi import Limiter

from identity.auth.store import normalize_email
from identity.config import Settings

RATE_LIMIT_KEY_ATTR = "rate_limit_key"
RATE_LIMIT_MESSAGE = "Too many requests, try again later"

_settings = Settings()
RESET_CODE_LIMIT = (
    f"{_settings.rate_limit_reset_max} per "
    f"{_settings.rate_limit_reset_window_minutes} minutes"
)
AUTH_LIMIT = "20 per minute"


def normalize_ip(raw: str | None) -> str:
    """
    Canonical form of a client address.

    IPv6 zone ids are dropped (``fe80::1%eth0`` → ``fe80::1``) and
    IPv4-mapped IPv6 addresses are unwrapped (``::ffff:10.0.0.1`` → ``10.0.0.1``).
    """
    if not raw:
        return "unknown"
    candidate = raw.strip().split("%", 1)[0]
    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        return candidate or "unknown"
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return str(address.ipv4_mapped)
    return str(address)


def client_ip(request: Request) -> str:
    """Client IP from the request, honouring X-Forwarded-For."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return normalize_ip(forwarded_for.split(",")[0])
    return normalize_ip(request.client.host if request.client else None)


def email_or_ip_key(request: Request) -> str:
    key = getattr(request.state, RATE_LIMIT_KEY_ATTR, None)
    return key or f"ip:{client_ip(request)}"


async def bind_email_rate_limit_key(request: Request) -> None:
    """
    Route dependency for email-keyed limits.

    Runs before the slowapi wrapper, which only sees the request object, so
    the key is derived from the JSON body here and parked on request.state.
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = None
    email = body.get("email") if isinstance(body, dict) else None
    if isinstance(email, str) and normalize_email(email):
        key = f"email:{normalize_email(email)}"
    else:
        key = f"ip:{client_ip(request)}"
    setattr(request.state, RATE_LIMIT_KEY_ATTR, key)


limiter = Limiter(
    key_func=client_ip,
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)
