"""
Identity service — SQLAlchemy ORM models for the auth domain.

Tables owned by this module:
  - accounts             User accounts, password hashes and the current refresh session
  - password_resets      Email-keyed HMAC digests of password reset codes
  - email_verifications  Email-keyed HMAC digests of email verification link tokens
"""
from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from shared.database.postgres import Base

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
_ENTRY_ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
_ACTIVE_ENTRY = sa.text("consumed_at IS NULL")


class Account(Base):
    __tablename__ = "accounts"

    # ── Primary key ──────────────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # ── Identity ──────────────────────────────────────────────────────────────
    name: Mapped[str | None] = mapped_column(sa.String(150), nullable=True)
    # Always stored trimmed + lowercased; uniqueness is enforced on lower(email)
    email: Mapped[str] = mapped_column(sa.String(254), nullable=False)
    # nullable: OAuth-only accounts have no password
    password_hash: Mapped[str | None] = mapped_column(
        sa.String(255), nullable=True
    )

    # ── Session ───────────────────────────────────────────────────────────────
    # Session id embedded in the only refresh token that is currently valid.
    # NULL means no active session (logged out, or revoked by a password reset).
    refresh_token_id: Mapped[str | None] = mapped_column(
        sa.String(64), nullable=True
    )

    # ── Email verification ────────────────────────────────────────────────────
    is_verified: Mapped[bool] = mapped_column(
        sa.Boolean(),
        nullable=False,
        default=False,
        server_default=sa.false(),
    )
    verified_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )

    # ── Timestamps ───────────────────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


sa.Index("uq_accounts_email_lower", func.lower(Account.email), unique=True)


class _SecretEntry:
    """
    Columns shared by both one-time secret tables.

    No FK to accounts: a reset can be requested for an email that has no
    account.  Only the HMAC digest is stored; the raw secret goes out by email.
    At most one row per email may have consumed_at IS NULL.
    """

    id: Mapped[int] = mapped_column(
        _ENTRY_ID_TYPE, primary_key=True, autoincrement=True
    )
    email: Mapped[str] = mapped_column(sa.String(254), nullable=False, index=True)
    token_hash: Mapped[str] = mapped_column(sa.String(128), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    consumed_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )


class PasswordResetEntry(_SecretEntry, Base):
    __tablename__ = "password_resets"
    __table_args__ = (
        sa.Index(
            "uq_password_resets_active_email",
            "email",
            unique=True,
            postgresql_where=_ACTIVE_ENTRY,
            sqlite_where=_ACTIVE_ENTRY,
        ),
    )


class EmailVerificationEntry(_SecretEntry, Base):
    __tablename__ = "email_verifications"
    __table_args__ = (
        sa.Index(
            "uq_email_verifications_active_email",
            "email",
            unique=True,
            postgresql_where=_ACTIVE_ENTRY,
            sqlite_where=_ACTIVE_ENTRY,
        ),
    )
