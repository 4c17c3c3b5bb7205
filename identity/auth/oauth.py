"""
Identity service — Google OAuth 2.0 federation.

Turns whatever the client holds into verified identity claims:
  * an ID token (mobile / One Tap sign-in)   → verified via tokeninfo
  * an authorization code (server auth code) → exchanged at the token endpoint,
    then the returned ID token is verified; when Google only returns an access
    token, the email is recovered through tokeninfo introspection instead.

Uses httpx directly rather than a Google SDK.  Provider rejections surface as
FederationError (400) so the caller can answer with a 4xx; network failures
and provider 5xx surface as OAuthProviderUnavailable (500).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from identity.config import Settings
from identity.exceptions import ConfigError, FederationError, OAuthProviderUnavailable

logger = logging.getLogger(__name__)

_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
_GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True, slots=True)
class OAuthClaims:
    email: str
    name: str
    subject_id: str | None


class _TokenRejected(Exception):
    def __init__(self, error: str) -> None:
        super().__init__(error)
        self.error = error


class GoogleOAuthAdapter:
    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        *,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._transport = http_transport

    @classmethod
    def from_settings(
        cls, settings: Settings, *, http_transport: httpx.AsyncBaseTransport | None = None
    ) -> GoogleOAuthAdapter:
        return cls(
            settings.google_web_client_id,
            settings.google_client_secret,
            http_transport=http_transport,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=_TIMEOUT_SECONDS, transport=self._transport)

    async def resolve(
        self,
        *,
        code: str | None = None,
        id_token: str | None = None,
        redirect_uri: str | None = None,
    ) -> OAuthClaims:
        """Return normalized claims for a Google code or ID token."""
        if not code and not id_token:
            raise FederationError("Provide code (serverAuthCode) or idToken.")
        if not self._client_id:
            logger.error("Google client id missing (GOOGLE_WEB_CLIENT_ID)")
            raise ConfigError()

        try:
            async with self._client() as client:
                if id_token:
                    info = await self._verify_id_token(client, id_token)
                else:
                    info = await self._claims_from_code(client, code, redirect_uri)
        except httpx.HTTPError as exc:
            logger.error("Google OAuth request failed: %s", exc)
            raise OAuthProviderUnavailable()

        email = info.get("email")
        if not email:
            raise FederationError("Email not provided by Google.")
        email = str(email).strip()
        return OAuthClaims(
            email=email,
            name=info.get("name") or email.split("@")[0],
            subject_id=info.get("sub") or info.get("user_id"),
        )

    # ── Authorization code exchange ─────────────────────────────────────────

    async def _claims_from_code(
        self,
        client: httpx.AsyncClient,
        code: str,
        redirect_uri: str | None,
    ) -> dict:
        if not self._client_secret:
            logger.warning(
                "Google client secret missing (GOOGLE_CLIENT_SECRET); code exchange may fail"
            )

        try:
            tokens = await self._exchange_code(client, code, redirect_uri)
        except _TokenRejected as exc:
            if not redirect_uri or exc.error == "invalid_grant":
                raise self._rejection(exc.error)
            # Some clients obtain the code without a redirect URI (installed apps).
            logger.info("Retrying Google code exchange without redirect_uri (%s)", exc.error)
            try:
                tokens = await self._exchange_code(client, code, None)
            except _TokenRejected as retry_exc:
                raise self._rejection(retry_exc.error)

        if tokens.get("id_token"):
            return await self._verify_id_token(client, tokens["id_token"])
        if tokens.get("access_token"):
            info = await self._tokeninfo(client, access_token=tokens["access_token"])
            return {
                "email": info.get("email"),
                "name": None,
                "sub": info.get("sub") or info.get("user_id"),
            }
        raise FederationError(
            "No usable token (id_token/access_token) received from Google."
        )

    async def _exchange_code(
        self,
        client: httpx.AsyncClient,
        code: str,
        redirect_uri: str | None,
    ) -> dict:
        data = {
            "code": code,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "grant_type": "authorization_code",
        }
        if redirect_uri:
            data["redirect_uri"] = redirect_uri

        resp = await client.post(_GOOGLE_TOKEN_URL, data=data)
        if resp.status_code >= 500:
            logger.error("Google token endpoint error %s", resp.status_code)
            raise OAuthProviderUnavailable()
        if resp.status_code != 200:
            raise _TokenRejected(_error_code(resp))
        return resp.json()

    @staticmethod
    def _rejection(error: str) -> FederationError:
        if error == "invalid_grant":
            return FederationError("Invalid or expired authorization code.")
        return FederationError(f"Google rejected the authorization code ({error}).")

    # ── Token verification / introspection ─────────────────────────────────

    async def _verify_id_token(self, client: httpx.AsyncClient, id_token: str) -> dict:
        info = await self._tokeninfo(client, id_token=id_token)
        if info.get("aud") != self._client_id:
            raise FederationError("ID token was issued for a different client.")
        return info

    async def _tokeninfo(self, client: httpx.AsyncClient, **params: str) -> dict:
        resp = await client.get(_GOOGLE_TOKENINFO_URL, params=params)
        if resp.status_code >= 500:
            logger.error("Google tokeninfo error %s", resp.status_code)
            raise OAuthProviderUnavailable()
        if resp.status_code != 200:
            raise FederationError("Invalid Google token.")
        return resp.json()


def _error_code(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"http_{resp.status_code}"
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return f"http_{resp.status_code}"
