import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import count_entries
from identity.auth import store
from identity.auth.constants import EntryKind
from identity.auth.models import Account, PasswordResetEntry
from identity.exceptions import ConflictError, EmailAlreadyInUse


def _in(minutes: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)


# ── Email normalization ──────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "raw", ["A@B.com", "a@b.com", "  a@B.COM ", "\tA@b.Com\n"]
)
def test_normalize_email_is_case_insensitive(raw: str) -> None:
    assert store.normalize_email(raw) == "a@b.com"


@pytest.mark.parametrize("raw", ["A@B.com", " Mixed.Case@Example.ORG ", "", None])
def test_normalize_email_is_idempotent(raw) -> None:
    once = store.normalize_email(raw)
    assert store.normalize_email(once) == once


# ── Accounts ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_account_stores_normalized_email(db_session: AsyncSession) -> None:
    account = await store.create_account(
        db_session, name="A", email=" Alice@Example.COM ", password_hash="h"
    )
    assert account.email == "alice@example.com"
    assert account.is_verified is False
    assert account.refresh_token_id is None
    assert isinstance(account.id, uuid.UUID)

    found = await store.find_by_email(db_session, "ALICE@example.com")
    assert found is not None and found.id == account.id


@pytest.mark.asyncio
async def test_create_account_rejects_duplicate_in_any_case(db_session: AsyncSession) -> None:
    await store.create_account(db_session, name="A", email="dup@x.com", password_hash="h")
    with pytest.raises(EmailAlreadyInUse) as exc_info:
        await store.create_account(db_session, name="B", email="DUP@x.com", password_hash="h")
    assert isinstance(exc_info.value, ConflictError)
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_unique_index_rejects_insert_that_passed_the_precheck(
    db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    await store.create_account(db_session, name="A", email="race@x.com", password_hash="h")

    async def _stale_lookup(session, email):
        return None

    monkeypatch.setattr(store, "find_by_email", _stale_lookup)
    with pytest.raises(EmailAlreadyInUse):
        await store.create_account(db_session, name="B", email="race@x.com", password_hash="h")

    # The failed insert only rolled back its savepoint.
    count = await db_session.scalar(select(func.count()).select_from(Account))
    assert count == 1


@pytest.mark.asyncio
async def test_find_by_id_accepts_uuid_or_string(db_session: AsyncSession) -> None:
    account = await store.create_account(db_session, name=None, email="id@x.com", password_hash=None)
    assert (await store.find_by_id(db_session, account.id)).email == "id@x.com"
    assert (await store.find_by_id(db_session, str(account.id))).email == "id@x.com"
    assert await store.find_by_id(db_session, uuid.uuid4()) is None
    assert await store.find_by_id(db_session, "not-a-uuid") is None


@pytest.mark.asyncio
async def test_refresh_token_id_and_password_updates(db_session: AsyncSession) -> None:
    account = await store.create_account(db_session, name="A", email="upd@x.com", password_hash="old")

    assert await store.set_refresh_token_id(db_session, account.id, "sid-1") is True
    assert await store.set_password_hash(db_session, account.id, "new") is True
    await db_session.commit()

    fresh = await store.find_by_email(db_session, "upd@x.com")
    await db_session.refresh(fresh)
    assert fresh.refresh_token_id == "sid-1"
    assert fresh.password_hash == "new"

    assert await store.set_refresh_token_id(db_session, account.id, None) is True
    await db_session.refresh(fresh)
    assert fresh.refresh_token_id is None

    assert await store.set_refresh_token_id(db_session, uuid.uuid4(), "x") is False
    assert await store.set_password_hash(db_session, "garbage", "x") is False


@pytest.mark.asyncio
async def test_swap_refresh_token_id_only_from_current_value(db_session: AsyncSession) -> None:
    account = await store.create_account(db_session, name="A", email="cas@x.com", password_hash="h")
    await store.set_refresh_token_id(db_session, account.id, "sid-1")

    assert await store.swap_refresh_token_id(db_session, account.id, "sid-1", "sid-2") is True
    # The old value is gone, so a second swap from it loses.
    assert await store.swap_refresh_token_id(db_session, account.id, "sid-1", "sid-3") is False
    await db_session.refresh(account)
    assert account.refresh_token_id == "sid-2"

    await store.set_refresh_token_id(db_session, account.id, None)
    assert await store.swap_refresh_token_id(db_session, account.id, "sid-2", "sid-4") is False
    assert await store.swap_refresh_token_id(db_session, "not-a-uuid", "sid-2", "sid-4") is False


@pytest.mark.asyncio
async def test_mark_verified(db_session: AsyncSession) -> None:
    account = await store.create_account(db_session, name="A", email="v@x.com", password_hash="h")
    assert await store.mark_verified(db_session, "V@X.com") is True
    await db_session.refresh(account)
    assert account.is_verified is True
    assert account.verified_at is not None
    assert await store.mark_verified(db_session, "nobody@x.com") is False


# ── One-time secret entries ───────────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize("kind", list(EntryKind))
async def test_replace_active_entry_supersedes_previous(
    db_session: AsyncSession, kind: EntryKind
) -> None:
    first = await store.replace_active_entry(
        db_session, kind, email="E@x.com", token_hash="aa", expires_at=_in(15)
    )
    second = await store.replace_active_entry(
        db_session, kind, email="e@x.com", token_hash="bb", expires_at=_in(15)
    )
    assert second.id != first.id
    assert await count_entries(db_session, kind, "e@x.com") == 1

    active = await store.get_active_entry(db_session, kind, "E@X.COM")
    assert active is not None
    assert active.token_hash == "bb"
    assert active.email == "e@x.com"


@pytest.mark.asyncio
async def test_entries_are_scoped_per_kind(db_session: AsyncSession) -> None:
    await store.replace_active_entry(
        db_session, EntryKind.PASSWORD_RESET, email="k@x.com", token_hash="aa", expires_at=_in(15)
    )
    await store.replace_active_entry(
        db_session, EntryKind.EMAIL_VERIFICATION, email="k@x.com", token_hash="bb", expires_at=_in(60)
    )
    reset = await store.get_active_entry(db_session, EntryKind.PASSWORD_RESET, "k@x.com")
    verify = await store.get_active_entry(db_session, EntryKind.EMAIL_VERIFICATION, "k@x.com")
    assert reset.token_hash == "aa"
    assert verify.token_hash == "bb"


@pytest.mark.asyncio
async def test_partial_unique_index_allows_one_active_entry(db_session: AsyncSession) -> None:
    db_session.add(PasswordResetEntry(email="p@x.com", token_hash="aa", expires_at=_in(15)))
    await db_session.flush()

    with pytest.raises(IntegrityError):
        async with db_session.begin_nested():
            db_session.add(PasswordResetEntry(email="p@x.com", token_hash="bb", expires_at=_in(15)))
            await db_session.flush()


@pytest.mark.asyncio
async def test_consumed_entries_are_ignored(db_session: AsyncSession) -> None:
    consumed = PasswordResetEntry(
        email="c@x.com",
        token_hash="old",
        expires_at=_in(15),
        consumed_at=datetime.now(timezone.utc),
    )
    db_session.add(consumed)
    await db_session.flush()

    assert await store.get_active_entry(db_session, EntryKind.PASSWORD_RESET, "c@x.com") is None

    # A consumed row does not block a new active one.
    await store.replace_active_entry(
        db_session, EntryKind.PASSWORD_RESET, email="c@x.com", token_hash="new", expires_at=_in(15)
    )
    active = await store.get_active_entry(db_session, EntryKind.PASSWORD_RESET, "c@x.com")
    assert active.token_hash == "new"
    assert await count_entries(db_session, EntryKind.PASSWORD_RESET, "c@x.com") == 2


@pytest.mark.asyncio
async def test_delete_entry_and_delete_all(db_session: AsyncSession) -> None:
    entry = await store.replace_active_entry(
        db_session, EntryKind.EMAIL_VERIFICATION, email="d@x.com", token_hash="aa", expires_at=_in(5)
    )
    await store.delete_entry(db_session, EntryKind.EMAIL_VERIFICATION, entry.id)
    assert await store.get_active_entry(db_session, EntryKind.EMAIL_VERIFICATION, "d@x.com") is None

    db_session.add(
        PasswordResetEntry(
            email="d@x.com", token_hash="x", expires_at=_in(5), consumed_at=datetime.now(timezone.utc)
        )
    )
    await store.replace_active_entry(
        db_session, EntryKind.PASSWORD_RESET, email="d@x.com", token_hash="y", expires_at=_in(5)
    )
    await store.delete_all_for_email(db_session, EntryKind.PASSWORD_RESET, "D@x.com")
    assert await count_entries(db_session, EntryKind.PASSWORD_RESET, "d@x.com") == 0
