"""Initial auth schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

Tables created:
  - accounts             User accounts; email unique on lower(email)
  - password_resets      HMAC digests of password reset codes
  - email_verifications  HMAC digests of email verification link tokens

Both secret tables allow at most one row per email with consumed_at IS NULL
(partial unique index).
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_SECRET_TABLES = ("password_resets", "email_verifications")


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(150), nullable=True),
        sa.Column("email", sa.String(254), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("refresh_token_id", sa.String(64), nullable=True),
        sa.Column(
            "is_verified",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_accounts"),
    )
    op.create_index(
        "uq_accounts_email_lower",
        "accounts",
        [sa.text("lower(email)")],
        unique=True,
    )

    for table in _SECRET_TABLES:
        op.create_table(
            table,
            sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
            sa.Column("email", sa.String(254), nullable=False),
            sa.Column("token_hash", sa.String(128), nullable=False),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.text("NOW()"),
            ),
            sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id", name=f"pk_{table}"),
        )
        op.create_index(f"ix_{table}_email", table, ["email"])
        op.create_index(f"ix_{table}_expires_at", table, ["expires_at"])
        op.create_index(
            f"uq_{table}_active_email",
            table,
            ["email"],
            unique=True,
            postgresql_where=sa.text("consumed_at IS NULL"),
        )


def downgrade() -> None:
    for table in reversed(_SECRET_TABLES):
        op.drop_table(table)
    op.drop_index("uq_accounts_email_lower", table_name="accounts")
    op.drop_table("accounts")
