"""
Identity service — domain-specific HTTP exceptions.

All exceptions use preset status codes and detail messages so that callers
never need to specify these at the call site.  Each family has a base class
(ValidationError, ConflictError, AuthError, ...) that handlers and tests can
catch without caring about the concrete reason.
"""
from fastapi import HTTPException, status


# ── 400: malformed / missing / stale input ────────────────────────────────────

class ValidationError(HTTPException):
    def __init__(self, detail: str = "Missing or invalid fields.") -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class MissingFields(ValidationError):
    pass


class InvalidResetCode(ValidationError):
    def __init__(self, detail: str = "Invalid code.") -> None:
        super().__init__(detail)


class ResetCodeExpired(ValidationError):
    def __init__(self) -> None:
        super().__init__("Code expired.")


class VerificationTokenInvalid(ValidationError):
    def __init__(self, detail: str = "Invalid token.") -> None:
        super().__init__(detail)


class VerificationTokenExpired(ValidationError):
    def __init__(self) -> None:
        super().__init__("Token expired.")


class FederationError(ValidationError):
    """The identity provider rejected the credential or returned nothing usable."""

    def __init__(self, detail: str = "Google authentication failed.") -> None:
        super().__init__(detail)


# ── 401: bad credentials / bad token ─────────────────────────────────────────

class AuthError(HTTPException):
    """Every 401 carries a Bearer challenge."""

    def __init__(
        self,
        detail: str = "Not authenticated.",
        *,
        error: str | None = None,
    ) -> None:
        challenge = 'Bearer realm="api"'
        if error:
            challenge += f', error="{error}"'
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": challenge},
        )


class NotAuthenticated(AuthError):
    pass


class InvalidCredentials(AuthError):
    def __init__(self) -> None:
        super().__init__("Invalid credentials.")


class TokenExpired(AuthError):
    def __init__(self) -> None:
        super().__init__("Token has expired.", error="invalid_token")


class TokenInvalid(AuthError):
    def __init__(self, detail: str = "Token is invalid.") -> None:
        super().__init__(detail, error="invalid_token")


# ── 403 ───────────────────────────────────────────────────────────────────────

class ForbiddenError(HTTPException):
    def __init__(self, detail: str = "Forbidden.") -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class EmailNotVerified(ForbiddenError):
    def __init__(self) -> None:
        super().__init__("Email not verified. We re-sent your verification link.")


# ── 404 ───────────────────────────────────────────────────────────────────────

class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Not found.") -> None:
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class UserNotFound(NotFoundError):
    def __init__(self) -> None:
        super().__init__("User not found.")


# ── 409 ───────────────────────────────────────────────────────────────────────

class ConflictError(HTTPException):
    def __init__(self, detail: str = "Conflict.") -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class EmailAlreadyInUse(ConflictError):
    def __init__(self) -> None:
        super().__init__("Email already in use.")


# ── 500: configuration / upstream providers ──────────────────────────────────

class ConfigError(HTTPException):
    """Missing secrets or provider credentials.

    Fatal when raised during startup; a plain 500 when detected per request.
    """

    def __init__(self, detail: str = "Server configuration error.") -> None:
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail
        )


class UpstreamError(HTTPException):
    def __init__(self, detail: str = "Upstream provider failure.") -> None:
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail
        )


class EmailDeliveryFailed(UpstreamError):
    def __init__(self) -> None:
        super().__init__("Failed to send email.")


class OAuthProviderUnavailable(UpstreamError):
    def __init__(self) -> None:
        super().__init__("Google authentication failed.")
