"""
Identity service — auth router.

Only HTTP concerns live here:
  - Route declarations, HTTP methods, status codes, response_model
  - Dependency injection (session, collaborators, current account)
  - Rate limits
  - Forwarding to the controller

Zero business logic. Zero DB queries.
"""

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from identity.auth import controller
from identity.auth.codes import SecretHasher
from identity.auth.dependencies import get_current_account_id
from identity.auth.oauth import GoogleOAuthAdapter
from identity.auth.schemas import (
    AuthResponse,
    ConfirmResetRequest,
    GoogleAuthRequest,
    LoginRequest,
    MeResponse,
    OkMessageResponse,
    OkResponse,
    RefreshRequest,
    SendResetCodeRequest,
    SignupRequest,
    SignupResponse,
    TokenPairResponse,
    VerifyResetCodeRequest,
)
from identity.auth.tokens import TokenService
from identity.config import Settings
from identity.database import get_db
from identity.dependencies import (
    get_hasher,
    get_mailer,
    get_oauth_adapter,
    get_settings,
    get_token_service,
)
from identity.email.send import Mailer
from identity.rate_limit import (
    AUTH_LIMIT,
    RESET_CODE_LIMIT,
    bind_email_rate_limit_key,
    email_or_ip_key,
    limiter,
)

router = APIRouter(tags=["auth"])


# ── Email + Password ──────────────────────────────────────────────────────────

@router.post(
    "/signup",
    response_model=SignupResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an account (email + password)",
)
@limiter.limit(AUTH_LIMIT)
async def signup(
    request: Request,
    body: SignupRequest,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    hasher: SecretHasher = Depends(get_hasher),
    mailer: Mailer = Depends(get_mailer),
) -> SignupResponse:
    return await controller.signup(session, body, settings, hasher, mailer)


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Login with email + password",
)
@limiter.limit(AUTH_LIMIT)
async def login(
    request: Request,
    body: LoginRequest,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    tokens: TokenService = Depends(get_token_service),
    hasher: SecretHasher = Depends(get_hasher),
    mailer: Mailer = Depends(get_mailer),
) -> AuthResponse:
    """Unverified accounts get a 403 and a fresh verification link by email."""
    return await controller.login(session, body, settings, tokens, hasher, mailer)


# ── Token management ──────────────────────────────────────────────────────────

@router.post(
    "/refresh",
    response_model=TokenPairResponse,
    summary="Rotate the refresh token",
)
async def refresh(
    body: RefreshRequest,
    session: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> TokenPairResponse:
    return await controller.refresh(session, body, tokens)


@router.post(
    "/logout",
    response_model=OkResponse,
    summary="Revoke the current session",
)
async def logout(
    account_id: str = Depends(get_current_account_id),
    session: AsyncSession = Depends(get_db),
) -> OkResponse:
    return await controller.logout(session, account_id)


@router.get(
    "/me",
    response_model=MeResponse,
    summary="Current account",
)
async def me(
    account_id: str = Depends(get_current_account_id),
    session: AsyncSession = Depends(get_db),
) -> MeResponse:
    return await controller.me(session, account_id)


# ── Google OAuth ──────────────────────────────────────────────────────────────

@router.post(
    "/google",
    response_model=AuthResponse,
    summary="Sign in / sign up with Google",
)
@limiter.limit(AUTH_LIMIT)
async def google(
    request: Request,
    body: GoogleAuthRequest,
    session: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    oauth: GoogleOAuthAdapter = Depends(get_oauth_adapter),
) -> AuthResponse:
    return await controller.google(session, body, tokens, oauth)


# ── Password reset ────────────────────────────────────────────────────────────

@router.post(
    "/send-reset-code",
    response_model=OkResponse,
    summary="Email a password reset code",
    dependencies=[Depends(bind_email_rate_limit_key)],
)
@limiter.limit(RESET_CODE_LIMIT, key_func=email_or_ip_key)
async def send_reset_code(
    request: Request,
    body: SendResetCodeRequest,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    hasher: SecretHasher = Depends(get_hasher),
    mailer: Mailer = Depends(get_mailer),
) -> OkResponse:
    """Answers ``{ok: true}`` whether or not an account exists for the email."""
    return await controller.send_reset_code(session, body, settings, hasher, mailer)


@router.post(
    "/verify-reset-code",
    response_model=OkMessageResponse,
    summary="Check a reset code without consuming it",
)
async def verify_reset_code(
    body: VerifyResetCodeRequest,
    session: AsyncSession = Depends(get_db),
    hasher: SecretHasher = Depends(get_hasher),
) -> OkMessageResponse:
    return await controller.verify_reset_code(session, body, hasher)


@router.post(
    "/confirm-reset",
    response_model=OkResponse,
    summary="Set a new password with a reset code",
)
async def confirm_reset(
    body: ConfirmResetRequest,
    session: AsyncSession = Depends(get_db),
    hasher: SecretHasher = Depends(get_hasher),
) -> OkResponse:
    return await controller.confirm_reset(session, body, hasher)


# ── Email verification ────────────────────────────────────────────────────────

@router.get(
    "/verify-email",
    response_model=OkResponse,
    summary="Confirm an email address from the emailed link",
)
async def verify_email(
    email: str | None = Query(default=None),
    token: str | None = Query(default=None),
    session: AsyncSession = Depends(get_db),
    hasher: SecretHasher = Depends(get_hasher),
) -> OkResponse:
    return await controller.verify_email(session, hasher, email, token)
