"""
Identity service — signed access / refresh tokens.

Stateless: everything here is CPU-only JWT work.  Session state (which
refresh token is currently valid) lives on the account row as
``refresh_token_id``; this module only embeds and extracts it.

Access and refresh tokens are signed with different secrets and carry a
``typ`` claim, so neither can be presented in place of the other.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from identity.auth.constants import (
    ACCESS_TOKEN_EXPIRE_SECONDS,
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_EXPIRE_SECONDS,
    REFRESH_TOKEN_TYPE,
)
from identity.config import Settings
from identity.exceptions import ConfigError, TokenExpired, TokenInvalid


@dataclass(frozen=True, slots=True)
class TokenConfig:
    access_secret: str
    refresh_secret: str
    algorithm: str = "HS256"
    issuer: str = "identity"
    audience: str = "identity-clients"
    access_expire_seconds: int = ACCESS_TOKEN_EXPIRE_SECONDS
    refresh_expire_seconds: int = REFRESH_TOKEN_EXPIRE_SECONDS

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenConfig:
        return cls(
            access_secret=settings.jwt_access_secret,
            refresh_secret=settings.jwt_refresh_secret,
            algorithm=settings.jwt_algorithm,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            access_expire_seconds=settings.jwt_expire_seconds,
            refresh_expire_seconds=settings.jwt_refresh_expire_seconds,
        )


@dataclass(frozen=True, slots=True)
class AccessClaims:
    account_id: str


@dataclass(frozen=True, slots=True)
class RefreshClaims:
    account_id: str
    session_id: str


@dataclass(frozen=True, slots=True)
class TokenPair:
    access_token: str
    refresh_token: str


class TokenService:
    def __init__(self, config: TokenConfig) -> None:
        if not config.access_secret or not config.refresh_secret:
            raise ConfigError("Missing JWT signing secrets.")
        self._config = config

    # ── Issue ────────────────────────────────────────────────────────────────

    def _encode(self, claims: dict, secret: str, expire_seconds: int) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            **claims,
            "iat": now,
            "exp": now + timedelta(seconds=expire_seconds),
            "iss": self._config.issuer,
            "aud": self._config.audience,
        }
        return jwt.encode(payload, secret, algorithm=self._config.algorithm)

    def issue_access_token(self, account_id: uuid.UUID | str) -> str:
        return self._encode(
            {"sub": str(account_id), "typ": ACCESS_TOKEN_TYPE},
            self._config.access_secret,
            self._config.access_expire_seconds,
        )

    def issue_refresh_token(self, account_id: uuid.UUID | str, session_id: str) -> str:
        return self._encode(
            {"sub": str(account_id), "sid": session_id, "typ": REFRESH_TOKEN_TYPE},
            self._config.refresh_secret,
            self._config.refresh_expire_seconds,
        )

    def issue_pair(self, account_id: uuid.UUID | str, session_id: str) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(account_id),
            refresh_token=self.issue_refresh_token(account_id, session_id),
        )

    @staticmethod
    def new_session_id() -> str:
        return uuid.uuid4().hex

    # ── Verify ───────────────────────────────────────────────────────────────

    def _decode(self, token: str, secret: str, expected_type: str) -> dict:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self._config.algorithm],
                issuer=self._config.issuer,
                audience=self._config.audience,
            )
        except ExpiredSignatureError:
            raise TokenExpired()
        except JWTError:
            raise TokenInvalid()

        if payload.get("typ") != expected_type or not payload.get("sub"):
            raise TokenInvalid()
        return payload

    def verify_access_token(self, token: str) -> AccessClaims:
        payload = self._decode(token, self._config.access_secret, ACCESS_TOKEN_TYPE)
        return AccessClaims(account_id=payload["sub"])

    def verify_refresh_token(self, token: str) -> RefreshClaims:
        payload = self._decode(token, self._config.refresh_secret, REFRESH_TOKEN_TYPE)
        session_id = payload.get("sid")
        if not session_id:
            raise TokenInvalid()
        return RefreshClaims(account_id=payload["sub"], session_id=session_id)
