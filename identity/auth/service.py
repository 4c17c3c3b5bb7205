"""
Identity service — pure business logic for authentication.

Rules:
  - Zero FastAPI imports.
  - Zero direct DB driver calls; only the credential store on the session.
  - All I/O functions are async def.
  - No side effects beyond the session passed in (no global state mutated).
    Sending email is the controller's job; functions here return the raw
    secret the controller needs to send.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from identity.auth import store
from identity.auth.codes import SecretHasher, generate_code, generate_opaque_token
from identity.auth.constants import (
    EMAIL_VERIFY_EXPIRE_HOURS,
    RESET_CODE_EXPIRE_MINUTES,
    RESET_CODE_LENGTH,
    EntryKind,
)
from identity.auth.models import Account
from identity.auth.oauth import OAuthClaims
from identity.auth.tokens import TokenPair, TokenService
from identity.auth.utils import hash_password_async, verify_password_async
from identity.exceptions import (
    InvalidCredentials,
    InvalidResetCode,
    MissingFields,
    ResetCodeExpired,
    TokenInvalid,
    UserNotFound,
    VerificationTokenExpired,
    VerificationTokenInvalid,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _is_expired(entry: store.SecretEntry) -> bool:
    return _now() > store.as_utc(entry.expires_at)


# ── Accounts ──────────────────────────────────────────────────────────────────

async def register_account(
    session: AsyncSession,
    *,
    name: str,
    email: str,
    password: str,
) -> Account:
    """Create an unverified password account.  Raises EmailAlreadyInUse."""
    if not name or not email or not password:
        raise MissingFields()
    password_hash = await hash_password_async(password)
    return await store.create_account(
        session,
        name=name,
        email=email,
        password_hash=password_hash,
    )


async def authenticate(session: AsyncSession, email: str, password: str) -> Account:
    """
    Return the account whose password matches.

    Unknown email, OAuth-only account and wrong password all raise the same
    InvalidCredentials so the response never reveals which one it was.
    Verification state is the caller's concern.
    """
    account = await store.find_by_email(session, email)
    if account is None or not account.password_hash:
        raise InvalidCredentials()
    if not await verify_password_async(password, account.password_hash):
        raise InvalidCredentials()
    return account


async def get_account(session: AsyncSession, account_id: uuid.UUID | str) -> Account:
    account = await store.find_by_id(session, account_id)
    if account is None:
        raise UserNotFound()
    return account


async def find_or_create_oauth_account(
    session: AsyncSession, claims: OAuthClaims
) -> Account:
    """
    Link a Google identity to an account by email.

    New accounts are created verified (the provider vouched for the address)
    and without a password.  Existing accounts are returned unchanged.
    """
    account = await store.find_by_email(session, claims.email)
    if account is not None:
        return account
    return await store.create_account(
        session,
        name=claims.name or claims.email.split("@")[0],
        email=claims.email,
        password_hash=None,
        is_verified=True,
        verified_at=_now(),
    )


# ── Sessions (refresh-token rotation) ─────────────────────────────────────────

async def start_session(
    session: AsyncSession, tokens: TokenService, account: Account
) -> TokenPair:
    """Open a new session, replacing any previous one for the account."""
    session_id = tokens.new_session_id()
    await store.set_refresh_token_id(session, account.id, session_id)
    return tokens.issue_pair(account.id, session_id)


async def rotate_session(
    session: AsyncSession, tokens: TokenService, refresh_token: str | None
) -> TokenPair:
    """
    Exchange a refresh token for a new pair.

    The presented token must carry the session id currently stored on the
    account; a replayed (already rotated) or revoked token is rejected.
    The match is checked by the UPDATE itself, never against a loaded row.
    """
    if not refresh_token:
        raise MissingFields("Missing refresh token.")

    claims = tokens.verify_refresh_token(refresh_token)
    account = await store.find_by_id(session, claims.account_id)
    if account is None:
        raise TokenInvalid()

    session_id = tokens.new_session_id()
    if not await store.swap_refresh_token_id(
        session, account.id, claims.session_id, session_id
    ):
        raise TokenInvalid("Token is invalid (rotated or revoked).")
    return tokens.issue_pair(account.id, session_id)


async def end_session(session: AsyncSession, account_id: uuid.UUID | str) -> None:
    """Revoke every refresh token issued to the account."""
    await store.set_refresh_token_id(session, account_id, None)


# ── Email verification ────────────────────────────────────────────────────────

async def create_email_verification(
    session: AsyncSession,
    hasher: SecretHasher,
    email: str,
    *,
    expires_hours: int = EMAIL_VERIFY_EXPIRE_HOURS,
) -> str:
    """Supersede any pending verification for ``email``; return the raw token."""
    token = generate_opaque_token()
    await store.replace_active_entry(
        session,
        EntryKind.EMAIL_VERIFICATION,
        email=email,
        token_hash=hasher.hash(token),
        expires_at=_now() + timedelta(hours=expires_hours),
    )
    return token


async def verify_email(
    session: AsyncSession,
    hasher: SecretHasher,
    email: str | None,
    token: str | None,
) -> None:
    if not email or not token:
        raise MissingFields("Missing parameters.")

    entry = await store.get_active_entry(session, EntryKind.EMAIL_VERIFICATION, email)
    if entry is None:
        raise VerificationTokenInvalid("Invalid or expired token.")
    if _is_expired(entry):
        await _discard_expired(session, EntryKind.EMAIL_VERIFICATION, entry)
        raise VerificationTokenExpired()
    if not hasher.matches(token, entry.token_hash):
        raise VerificationTokenInvalid()

    if not await store.mark_verified(session, email):
        raise VerificationTokenInvalid("No account for this email.")
    await store.delete_entry(session, EntryKind.EMAIL_VERIFICATION, entry.id)


# ── Password reset ────────────────────────────────────────────────────────────

async def create_reset_code(
    session: AsyncSession,
    hasher: SecretHasher,
    email: str,
    *,
    length: int = RESET_CODE_LENGTH,
    expires_minutes: int = RESET_CODE_EXPIRE_MINUTES,
) -> str | None:
    """
    Store a fresh hashed reset code for ``email`` and return the raw code.

    Returns None, storing nothing, when no account has that email; the caller
    must answer exactly as in the success case.
    """
    if await store.find_by_email(session, email) is None:
        return None
    code = generate_code(length)
    await store.replace_active_entry(
        session,
        EntryKind.PASSWORD_RESET,
        email=email,
        token_hash=hasher.hash(code),
        expires_at=_now() + timedelta(minutes=expires_minutes),
    )
    return code


async def check_reset_code(
    session: AsyncSession,
    hasher: SecretHasher,
    email: str,
    code: str,
) -> store.SecretEntry:
    """
    Validate ``code`` against the active reset entry without consuming it.

    An expired entry is deleted (and the deletion committed) before the
    error is raised.
    """
    if not email or not code:
        raise MissingFields("Missing parameters.")

    entry = await store.get_active_entry(session, EntryKind.PASSWORD_RESET, email)
    if entry is None:
        raise InvalidResetCode("Invalid or expired code.")
    if _is_expired(entry):
        await _discard_expired(session, EntryKind.PASSWORD_RESET, entry)
        raise ResetCodeExpired()
    if not hasher.matches(code, entry.token_hash):
        raise InvalidResetCode()
    return entry


async def confirm_password_reset(
    session: AsyncSession,
    hasher: SecretHasher,
    email: str,
    code: str,
    new_password: str,
) -> None:
    """
    Apply a password reset.

    Set the new hash, revoke all sessions and delete the entry; all three
    happen in the caller's transaction, so they commit or roll back together.
    """
    if not new_password:
        raise MissingFields("Missing parameters.")
    entry = await check_reset_code(session, hasher, email, code)

    account = await store.find_by_email(session, email)
    if account is None:
        raise UserNotFound()

    password_hash = await hash_password_async(new_password)
    await store.set_password_hash(session, account.id, password_hash)
    await store.set_refresh_token_id(session, account.id, None)
    await store.delete_entry(session, EntryKind.PASSWORD_RESET, entry.id)


async def _discard_expired(
    session: AsyncSession, kind: EntryKind, entry: store.SecretEntry
) -> None:
    # Committed here: the error raised next rolls back the request transaction.
    await store.delete_entry(session, kind, entry.id)
    await session.commit()
