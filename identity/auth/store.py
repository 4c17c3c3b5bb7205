"""
Identity service — credential store (accounts + one-time secret entries).

Rules:
  - Every email is normalized (trimmed, lowercased) before it touches SQL.
  - Queries go through the SQLAlchemy async session passed in; the caller
    owns the surrounding transaction.
  - Multi-statement invariants run inside a SAVEPOINT so they stay
    all-or-nothing even when nested in the request transaction.
  - Account updates are plain UPDATE statements; Account instances already
    loaded in the session are not refreshed by them.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from identity.auth.constants import EntryKind
from identity.auth.models import Account, EmailVerificationEntry, PasswordResetEntry
from identity.exceptions import EmailAlreadyInUse

SecretEntry = PasswordResetEntry | EmailVerificationEntry

_ENTRY_MODELS: dict[EntryKind, type[PasswordResetEntry] | type[EmailVerificationEntry]] = {
    EntryKind.PASSWORD_RESET: PasswordResetEntry,
    EntryKind.EMAIL_VERIFICATION: EmailVerificationEntry,
}


def normalize_email(email: str | None) -> str:
    return str(email or "").strip().lower()


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _coerce_id(account_id: uuid.UUID | str) -> uuid.UUID | None:
    if isinstance(account_id, uuid.UUID):
        return account_id
    try:
        return uuid.UUID(str(account_id))
    except ValueError:
        return None


# ── Accounts ──────────────────────────────────────────────────────────────────

async def find_by_email(session: AsyncSession, email: str) -> Account | None:
    result = await session.execute(
        select(Account).where(func.lower(Account.email) == normalize_email(email))
    )
    return result.scalar_one_or_none()


async def find_by_id(session: AsyncSession, account_id: uuid.UUID | str) -> Account | None:
    key = _coerce_id(account_id)
    if key is None:
        return None
    return await session.get(Account, key)


async def create_account(
    session: AsyncSession,
    *,
    name: str | None,
    email: str,
    password_hash: str | None,
    is_verified: bool = False,
    verified_at: datetime | None = None,
) -> Account:
    """
    Insert a new account.

    The pre-check gives the common case a clean 409; the unique index on
    lower(email) still rejects a concurrent insert that slipped past it.
    """
    normalized = normalize_email(email)
    if await find_by_email(session, normalized) is not None:
        raise EmailAlreadyInUse()

    account = Account(
        name=name,
        email=normalized,
        password_hash=password_hash,
        is_verified=is_verified,
        verified_at=verified_at,
    )
    try:
        async with session.begin_nested():
            session.add(account)
            await session.flush()
    except IntegrityError:
        raise EmailAlreadyInUse()
    return account


async def set_refresh_token_id(
    session: AsyncSession, account_id: uuid.UUID | str, token_id: str | None
) -> bool:
    """Store the current session id; ``None`` revokes every refresh token."""
    key = _coerce_id(account_id)
    if key is None:
        return False
    result = await session.execute(
        update(Account)
        .where(Account.id == key)
        .values(refresh_token_id=token_id, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def swap_refresh_token_id(
    session: AsyncSession,
    account_id: uuid.UUID | str,
    expected: str,
    token_id: str,
) -> bool:
    """
    Replace the session id only while it still equals ``expected``.

    The check and the write are one UPDATE, so two requests presenting the
    same refresh token cannot both rotate it.
    """
    key = _coerce_id(account_id)
    if key is None or not expected:
        return False
    result = await session.execute(
        update(Account)
        .where(Account.id == key, Account.refresh_token_id == expected)
        .values(refresh_token_id=token_id, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def set_password_hash(
    session: AsyncSession, account_id: uuid.UUID | str, password_hash: str
) -> bool:
    key = _coerce_id(account_id)
    if key is None:
        return False
    result = await session.execute(
        update(Account)
        .where(Account.id == key)
        .values(password_hash=password_hash, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def mark_verified(session: AsyncSession, email: str) -> bool:
    now = datetime.now(timezone.utc)
    result = await session.execute(
        update(Account)
        .where(func.lower(Account.email) == normalize_email(email))
        .values(is_verified=True, verified_at=now, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


# ── One-time secret entries ───────────────────────────────────────────────────

async def replace_active_entry(
    session: AsyncSession,
    kind: EntryKind,
    *,
    email: str,
    token_hash: str,
    expires_at: datetime,
) -> SecretEntry:
    """
    Supersede the active entry for ``email`` with a new one.

    Delete and insert share one SAVEPOINT: either both land or neither does,
    so there is never more than one active entry per email.
    """
    model = _ENTRY_MODELS[kind]
    normalized = normalize_email(email)
    async with session.begin_nested():
        await session.execute(
            delete(model).where(
                model.email == normalized,
                model.consumed_at.is_(None),
            )
        )
        entry = model(email=normalized, token_hash=token_hash, expires_at=expires_at)
        session.add(entry)
        await session.flush()
    return entry


async def get_active_entry(
    session: AsyncSession, kind: EntryKind, email: str
) -> SecretEntry | None:
    """Most recent unconsumed entry for ``email``; ties go to the highest id."""
    model = _ENTRY_MODELS[kind]
    result = await session.execute(
        select(model)
        .where(
            model.email == normalize_email(email),
            model.consumed_at.is_(None),
        )
        .order_by(model.created_at.desc(), model.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def delete_entry(session: AsyncSession, kind: EntryKind, entry_id: int) -> None:
    model = _ENTRY_MODELS[kind]
    await session.execute(delete(model).where(model.id == entry_id))


async def delete_all_for_email(session: AsyncSession, kind: EntryKind, email: str) -> None:
    model = _ENTRY_MODELS[kind]
    await session.execute(delete(model).where(model.email == normalize_email(email)))
