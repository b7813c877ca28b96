"""init statements, download tokens and audit logs

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "customers",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(), nullable=True, unique=True),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # One statement per customer and period; storage keys are never shared.
    op.create_table(
        "statements",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("customer_id", sa.String(), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("storage_key", sa.String(), nullable=False, unique=True),
        sa.Column("file_name", sa.String(), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("period", sa.String(), nullable=False),
        sa.Column("content_type", sa.String(), nullable=False),
        sa.Column("checksum_sha256", sa.String(), nullable=False),
        sa.Column("encrypted", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("customer_id", "period", name="uq_statements_customer_period"),
    )
    op.create_index("ix_statements_customer_id", "statements", ["customer_id"], unique=False)
    op.create_index("ix_statements_period", "statements", ["period"], unique=False)
    op.create_index(
        "ix_statements_customer_period_created",
        "statements",
        ["customer_id", "period", "created_at"],
        unique=False,
    )

    # statement_id is deliberately not a foreign key: tokens outlive deleted statements.
    op.create_table(
        "download_tokens",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("token", sa.String(), nullable=False),
        sa.Column("statement_id", sa.String(), nullable=False),
        sa.Column("customer_id", sa.String(), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_download_tokens_token", "download_tokens", ["token"], unique=True)
    op.create_index("ix_download_tokens_statement_id", "download_tokens", ["statement_id"], unique=False)
    op.create_index("ix_download_tokens_customer_id", "download_tokens", ["customer_id"], unique=False)
    op.create_index("ix_download_tokens_expires_at", "download_tokens", ["expires_at"], unique=False)
    op.create_index(
        "ix_download_tokens_customer_active",
        "download_tokens",
        ["customer_id", "used", "expires_at"],
        unique=False,
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("customer_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=False),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("details", sa.String(length=1000), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_customer_id", "audit_logs", ["customer_id"], unique=False)
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)
    op.create_index("ix_audit_logs_occurred_at", "audit_logs", ["occurred_at"], unique=False)
    op.create_index(
        "ix_audit_logs_customer_occurred",
        "audit_logs",
        ["customer_id", sa.text("occurred_at DESC")],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_audit_logs_customer_occurred", table_name="audit_logs")
    op.drop_index("ix_audit_logs_occurred_at", table_name="audit_logs")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_customer_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_download_tokens_customer_active", table_name="download_tokens")
    op.drop_index("ix_download_tokens_expires_at", table_name="download_tokens")
    op.drop_index("ix_download_tokens_customer_id", table_name="download_tokens")
    op.drop_index("ix_download_tokens_statement_id", table_name="download_tokens")
    op.drop_index("ix_download_tokens_token", table_name="download_tokens")
    op.drop_table("download_tokens")
    op.drop_index("ix_statements_customer_period_created", table_name="statements")
    op.drop_index("ix_statements_period", table_name="statements")
    op.drop_index("ix_statements_customer_id", table_name="statements")
    op.drop_table("statements")
    op.drop_table("customers")
