"""
Identity service — auth controller (request orchestration layer).

Responsibilities:
  - Receive validated input from the router.
  - Call service functions (which own business logic).
  - Produce side effects: outbound email, the best-effort verification resend.
  - Compose and return the response model.

No framework validation logic here; that belongs in schemas.py.
No business logic here; that belongs in service.py.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from identity.auth import service
from identity.auth.codes import SecretHasher
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
    UserResponse,
    VerifyResetCodeRequest,
)
from identity.auth.store import normalize_email
from identity.auth.tokens import TokenService
from identity.config import Settings
from identity.database import get_session_factory
from identity.email import send as email
from identity.email.send import Mailer
from identity.exceptions import EmailDeliveryFailed, EmailNotVerified, MissingFields

logger = logging.getLogger(__name__)

# Strong references to in-flight best-effort tasks; the event loop only keeps weak ones.
_background_tasks: set[asyncio.Task] = set()


def _spawn(coro: Coroutine[Any, Any, None]) -> asyncio.Task:
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def drain_background_tasks() -> None:
    """Wait for every pending best-effort task (shutdown, tests)."""
    while _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)


# ── Email helpers ─────────────────────────────────────────────────────────────

async def _send_verification(
    session: AsyncSession,
    email_address: str,
    name: str | None,
    settings: Settings,
    hasher: SecretHasher,
    mailer: Mailer,
) -> None:
    token = await service.create_email_verification(
        session,
        hasher,
        email_address,
        expires_hours=settings.verify_token_expires_hours,
    )
    await email.send_email_verification(
        mailer,
        email_address,
        name,
        email.verification_link(settings, email_address, token),
        settings.verify_token_expires_hours,
    )


async def _resend_verification(
    email_address: str,
    name: str | None,
    settings: Settings,
    hasher: SecretHasher,
    mailer: Mailer,
) -> None:
    """Runs detached from the request: own session, own transaction, never raises."""
    try:
        factory = get_session_factory()
        async with factory() as session:
            async with session.begin():
                await _send_verification(session, email_address, name, settings, hasher, mailer)
    except Exception:
        logger.exception("Verification resend failed for %s", email_address)


# ── Signup ────────────────────────────────────────────────────────────────────

async def signup(
    session: AsyncSession,
    body: SignupRequest,
    settings: Settings,
    hasher: SecretHasher,
    mailer: Mailer,
) -> SignupResponse:
    account = await service.register_account(
        session, name=body.name, email=body.email, password=body.password
    )
    try:
        await _send_verification(
            session, account.email, account.name, settings, hasher, mailer
        )
    except EmailDeliveryFailed:
        # The account stands; the user can trigger a resend by logging in.
        logger.error("Verification email failed at signup for %s", account.email)

    return SignupResponse(
        message="Account created. Please verify your email before logging in.",
        user=UserResponse.model_validate(account),
    )


# ── Login ─────────────────────────────────────────────────────────────────────

async def login(
    session: AsyncSession,
    body: LoginRequest,
    settings: Settings,
    tokens: TokenService,
    hasher: SecretHasher,
    mailer: Mailer,
) -> AuthResponse:
    account = await service.authenticate(session, body.email, body.password)

    if not account.is_verified:
        # Plain values only: the 403 rolls the request back and expires the instance.
        _spawn(_resend_verification(account.email, account.name, settings, hasher, mailer))
        raise EmailNotVerified()

    pair = await service.start_session(session, tokens, account)
    return AuthResponse(
        user=UserResponse.model_validate(account),
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
    )


# ── Refresh / Logout / Me ────────────────────────────────────────────────────

async def refresh(
    session: AsyncSession,
    body: RefreshRequest,
    tokens: TokenService,
) -> TokenPairResponse:
    pair = await service.rotate_session(session, tokens, body.refresh_token)
    return TokenPairResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
    )


async def logout(session: AsyncSession, account_id: str) -> OkResponse:
    await service.end_session(session, account_id)
    return OkResponse()


async def me(session: AsyncSession, account_id: str) -> MeResponse:
    account = await service.get_account(session, account_id)
    return MeResponse.model_validate(account)


# ── Google OAuth ──────────────────────────────────────────────────────────────

async def google(
    session: AsyncSession,
    body: GoogleAuthRequest,
    tokens: TokenService,
    oauth: GoogleOAuthAdapter,
) -> AuthResponse:
    if not body.code and not body.id_token:
        raise MissingFields("Provide code (serverAuthCode) or idToken.")

    claims = await oauth.resolve(
        code=body.code,
        id_token=body.id_token,
        redirect_uri=body.redirect_uri,
    )
    account = await service.find_or_create_oauth_account(session, claims)
    pair = await service.start_session(session, tokens, account)
    return AuthResponse(
        user=UserResponse.model_validate(account),
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
    )


# ── Password reset ────────────────────────────────────────────────────────────

async def send_reset_code(
    session: AsyncSession,
    body: SendResetCodeRequest,
    settings: Settings,
    hasher: SecretHasher,
    mailer: Mailer,
) -> OkResponse:
    code = await service.create_reset_code(
        session,
        hasher,
        body.email,
        length=settings.reset_code_length,
        expires_minutes=settings.reset_code_expires_minutes,
    )
    if code is not None:
        # A delivery failure propagates (500) and rolls the new entry back.
        await email.send_password_reset_code(
            mailer,
            normalize_email(body.email),
            code,
            settings.reset_code_expires_minutes,
        )
    return OkResponse()


async def verify_reset_code(
    session: AsyncSession,
    body: VerifyResetCodeRequest,
    hasher: SecretHasher,
) -> OkMessageResponse:
    await service.check_reset_code(session, hasher, body.email, body.code)
    return OkMessageResponse(message="Code verified")


async def confirm_reset(
    session: AsyncSession,
    body: ConfirmResetRequest,
    hasher: SecretHasher,
) -> OkResponse:
    await service.confirm_password_reset(
        session, hasher, body.email, body.code, body.new_password
    )
    return OkResponse()


# ── Email verification ────────────────────────────────────────────────────────

async def verify_email(
    session: AsyncSession,
    hasher: SecretHasher,
    email_address: str | None,
    token: str | None,
) -> OkResponse:
    await service.verify_email(session, hasher, email_address, token)
    return OkResponse()
