"""create_account_tables

Create users, roles, profiles, verifications, otps, refresh_tokens and
sms_attempts tables.

Revision ID: 3f1c2a9d7e10
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1c2a9d7e10"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
            nullable=False,
        ),
    ]


def _user_fk(name: str = "user_id", ondelete: str = "CASCADE", nullable: bool = False):
    return sa.Column(
        name,
        sa.VARCHAR(21),
        sa.ForeignKey("users.id", ondelete=ondelete),
        nullable=nullable,
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.VARCHAR(21), primary_key=True),
        sa.Column("username", sa.String(50), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("auth_provider", sa.String(20), nullable=False, server_default="password"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_phone", "users", ["phone"], unique=True)

    op.create_table(
        "roles",
        sa.Column("id", sa.VARCHAR(21), primary_key=True),
        sa.Column("name", sa.String(50), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_roles_name", "roles", ["name"], unique=True)

    op.create_table(
        "user_roles",
        sa.Column("id", sa.VARCHAR(21), primary_key=True),
        _user_fk(),
        sa.Column(
            "role_id",
            sa.VARCHAR(21),
            sa.ForeignKey("roles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),
    )
    op.create_index("ix_user_roles_user_id", "user_roles", ["user_id"])
    op.create_index("ix_user_roles_role_id", "user_roles", ["role_id"])

    op.create_table(
        "profiles",
        sa.Column("id", sa.VARCHAR(21), primary_key=True),
        _user_fk(),
        sa.Column("full_name", sa.String(160), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("profession", sa.String(120), nullable=True),
        sa.Column("languages", sa.JSON(), nullable=True),
        sa.Column("photo_url", sa.String(500), nullable=True),
        sa.Column("gender", sa.String(10), nullable=True),
        sa.Column("age", sa.Integer(), nullable=True),
        sa.Column("religion", sa.String(100), nullable=True),
        sa.Column("ethnicity", sa.String(100), nullable=True),
        sa.Column("education", sa.String(120), nullable=True),
        sa.Column("interests", sa.JSON(), nullable=True),
        sa.Column("rating_avg", sa.Float(), nullable=False, server_default="0"),
        sa.Column("rating_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("verification_status", sa.String(20), nullable=False, server_default="none"),
        *_timestamps(),
    )
    op.create_index("ix_profiles_user_id", "profiles", ["user_id"], unique=True)

    op.create_table(
        "verifications",
        sa.Column("id", sa.VARCHAR(21), primary_key=True),
        _user_fk(),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("document_url", sa.String(500), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("verified_by", sa.VARCHAR(21), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_verifications_user_id", "verifications", ["user_id"])
    op.create_index("ix_verifications_status", "verifications", ["status"])

    op.create_table(
        "otps",
        sa.Column("id", sa.VARCHAR(21), primary_key=True),
        sa.Column("phone", sa.String(20), nullable=False),
        sa.Column("reference_type", sa.String(50), nullable=True),
        sa.Column("reference_id", sa.String(64), nullable=True),
        sa.Column("scope", sa.String(140), nullable=False),
        sa.Column("hashed_secret", sa.String(128), nullable=False),
        sa.Column("issued_at", sa.BigInteger(), nullable=False),
        sa.Column("expires_at", sa.BigInteger(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        *_timestamps(),
    )
    op.create_index("ix_otps_phone", "otps", ["phone"])
    op.create_index("ix_otps_scope", "otps", ["scope"])
    op.create_index("ix_otps_expires_at", "otps", ["expires_at"])
    # At most one pending code per scope
    op.create_index(
        "uq_otps_pending_scope",
        "otps",
        ["scope"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.VARCHAR(21), primary_key=True),
        _user_fk(),
        sa.Column("hashed_token", sa.String(100), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("replaced_by_token_id", sa.VARCHAR(21), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_refresh_tokens_user_id", "refresh_tokens", ["user_id"])
    op.create_index("ix_refresh_tokens_expires_at", "refresh_tokens", ["expires_at"])

    op.create_table(
        "sms_attempts",
        sa.Column("id", sa.VARCHAR(21), primary_key=True),
        _user_fk(ondelete="SET NULL", nullable=True),
        sa.Column("phone", sa.String(20), nullable=False),
        sa.Column("action", sa.String(30), nullable=False),
        sa.Column("sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("provider_info", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_sms_attempts_user_id", "sms_attempts", ["user_id"])
    op.create_index("ix_sms_attempts_phone", "sms_attempts", ["phone"])


def downgrade() -> None:
    op.drop_table("sms_attempts")
    op.drop_table("refresh_tokens")
    op.drop_index("uq_otps_pending_scope", table_name="otps")
    op.drop_table("otps")
    op.drop_table("verifications")
    op.drop_table("profiles")
    op.drop_table("user_roles")
    op.drop_table("roles")
    op.drop_table("users")
