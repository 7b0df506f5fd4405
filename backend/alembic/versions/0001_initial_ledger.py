"""Initial leave ledger schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

HOURS = sa.Numeric(12, 4)


def upgrade() -> None:
    op.create_table(
        "leave_policy",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("leave_type_id", sa.Uuid(), nullable=False),
        sa.Column("accrual_method", sa.String(length=50), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("settings_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("company_id", "leave_type_id", name="uq_policy_company_leave_type"),
    )
    op.create_index("ix_leave_policy_company_id", "leave_policy", ["company_id"])
    op.create_index("ix_leave_policy_leave_type_id", "leave_policy", ["leave_type_id"])

    op.create_table(
        "leave_grant",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("leave_type_id", sa.Uuid(), nullable=False),
        sa.Column("policy_id", sa.Uuid(), sa.ForeignKey("leave_policy.id", ondelete="SET NULL"), nullable=True),
        sa.Column("quantity", HOURS, nullable=False),
        sa.Column("forfeited_quantity", HOURS, nullable=False, server_default="0"),
        sa.Column("granted_on", sa.Date(), nullable=False),
        sa.Column("expires_on", sa.Date(), nullable=True),
        sa.Column("source", sa.String(length=50), nullable=False),
        sa.Column("source_ref", sa.String(length=255), nullable=False),
        sa.Column("note", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("source", "source_ref", name="uq_grant_idempotency"),
        sa.CheckConstraint("quantity >= 0", name="ck_grant_quantity_non_negative"),
        sa.CheckConstraint(
            "forfeited_quantity >= 0 AND forfeited_quantity <= quantity",
            name="ck_grant_forfeited_within_quantity",
        ),
        sa.CheckConstraint("expires_on IS NULL OR expires_on >= granted_on", name="ck_grant_expiry_after_grant"),
    )
    op.create_index("ix_leave_grant_company_id", "leave_grant", ["company_id"])
    op.create_index("ix_leave_grant_user_id", "leave_grant", ["user_id"])
    op.create_index("ix_grant_user_leave_type", "leave_grant", ["user_id", "leave_type_id"])

    op.create_table(
        "leave_consumption",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("grant_id", sa.Uuid(), sa.ForeignKey("leave_grant.id", ondelete="CASCADE"), nullable=False),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("leave_type_id", sa.Uuid(), nullable=False),
        sa.Column("quantity", HOURS, nullable=False),
        sa.Column("is_hold", sa.Boolean(), nullable=False),
        sa.Column("consumed_on", sa.Date(), nullable=False),
        sa.Column("note", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity > 0", name="ck_consumption_quantity_positive"),
    )
    op.create_index("ix_leave_consumption_grant_id", "leave_consumption", ["grant_id"])
    op.create_index("ix_leave_consumption_request_id", "leave_consumption", ["request_id"])
    op.create_index("ix_consumption_user_leave_type", "leave_consumption", ["user_id", "leave_type_id"])

    op.create_table(
        "company_calendar",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("non_working_weekdays", sa.JSON(), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_company_calendar_company_id", "company_calendar", ["company_id"], unique=True)

    op.create_table(
        "company_calendar_date",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.UniqueConstraint("company_id", "date", name="uq_calendar_company_date"),
    )
    op.create_index("ix_company_calendar_date_company_id", "company_calendar_date", ["company_id"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=True),
        sa.Column("actor_id", sa.Uuid(), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("target_type", sa.String(length=50), nullable=True),
        sa.Column("target_id", sa.String(length=255), nullable=True),
        sa.Column("before_json", sa.JSON(), nullable=True),
        sa.Column("after_json", sa.JSON(), nullable=True),
        sa.Column("details_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_log_company_id", "audit_log", ["company_id"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])
    op.create_index("ix_audit_log_created_at", "audit_log", ["created_at"])
    op.create_index("ix_audit_target", "audit_log", ["target_type", "target_id"])


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("company_calendar_date")
    op.drop_table("company_calendar")
    op.drop_table("leave_consumption")
    op.drop_table("leave_grant")
    op.drop_table("leave_policy")
