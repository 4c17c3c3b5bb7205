"""
Identity service — Pydantic V2 request/response schemas for the auth domain.

Separation of concerns:
  - *Request  models:  input from the client (camelCase on the wire)
  - *Response models:  output to the client (no write-only fields exposed)

Python attributes stay snake_case; ``alias_generator=to_camel`` maps them to
the wire names (``refreshToken``, ``newPassword`` ...).  Responses are
serialized by alias, which is FastAPI's default for ``response_model``.
"""
from __future__ import annotations

import uuid

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


# ── Shared base ───────────────────────────────────────────────────────────────

class _Request(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class _Response(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


# ── Email + Password flow ─────────────────────────────────────────────────────

class SignupRequest(_Request):
    """Body for POST /signup."""

    name: str = Field(min_length=1, max_length=150)
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class LoginRequest(_Request):
    """Body for POST /login."""

    email: EmailStr
    password: str = Field(min_length=1)


# ── Token management ──────────────────────────────────────────────────────────

class RefreshRequest(_Request):
    """Body for POST /refresh."""

    refresh_token: str | None = None


# ── Google OAuth ──────────────────────────────────────────────────────────────

class GoogleAuthRequest(_Request):
    """
    Body for POST /google.

    Either ``code`` (server auth code from the native SDK or web redirect) or
    ``idToken`` must be present; ``redirectUri`` is only used with ``code``.
    """

    code: str | None = None
    id_token: str | None = None
    redirect_uri: str | None = None


# ── Password reset ─────────────────────────────────────────────────────────────

class SendResetCodeRequest(_Request):
    """Body for POST /send-reset-code."""

    email: EmailStr


class VerifyResetCodeRequest(_Request):
    """Body for POST /verify-reset-code."""

    email: EmailStr
    code: str = Field(min_length=1, max_length=12)


class ConfirmResetRequest(_Request):
    """Body for POST /confirm-reset."""

    email: EmailStr
    code: str = Field(min_length=1, max_length=12)
    new_password: str = Field(min_length=1, max_length=128)


# ── Response models ───────────────────────────────────────────────────────────

class UserResponse(BaseModel):
    """Public account view embedded in signup / login / google responses."""

    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: uuid.UUID
    name: str | None
    email: str
    is_verified: bool


class MeResponse(BaseModel):
    """Returned by GET /me."""

    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: uuid.UUID
    name: str | None
    email: str


class SignupResponse(_Response):
    message: str
    user: UserResponse


class AuthResponse(_Response):
    """Returned on successful login / google sign-in."""

    user: UserResponse
    access_token: str
    refresh_token: str


class TokenPairResponse(_Response):
    """Returned by POST /refresh."""

    access_token: str
    refresh_token: str


class OkResponse(_Response):
    ok: bool = True


class OkMessageResponse(_Response):
    ok: bool = True
    message: str
