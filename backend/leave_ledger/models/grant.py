# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field

from leave_ledger.models.base import HOURS_TYPE, TimestampMixin, UUIDBase


class LeaveGrant(UUIDBase, TimestampMixin, table=True):
    """A ledger line giving hours of leave to a user, valid until expires_on."""

    __tablename__ = "leave_grant"
    __table_args__ = (
        sa.Index("ix_grant_user_leave_type", "user_id", "leave_type_id"),
        sa.UniqueConstraint("source", "source_ref", name="uq_grant_idempotency"),
        sa.CheckConstraint("quantity >= 0", name="ck_grant_quantity_non_negative"),
        sa.CheckConstraint(
            "forfeited_quantity >= 0 AND forfeited_quantity <= quantity",
            name="ck_grant_forfeited_within_quantity",
        ),
        sa.CheckConstraint("expires_on IS NULL OR expires_on >= granted_on", name="ck_grant_expiry_after_grant"),
    )

    company_id: uuid.UUID = Field(index=True)
    user_id: uuid.UUID = Field(index=True)
    leave_type_id: uuid.UUID
    policy_id: uuid.UUID | None = Field(
        default=None,
        sa_column=sa.Column(sa.Uuid, sa.ForeignKey("leave_policy.id", ondelete="SET NULL"), nullable=True),
    )
    quantity: Decimal = Field(sa_type=HOURS_TYPE)
    forfeited_quantity: Decimal = Field(
        default=Decimal(0), sa_type=HOURS_TYPE, sa_column_kwargs={"server_default": "0"}
    )
    granted_on: date
    expires_on: date | None = None
    source: str = Field(max_length=50)
    source_ref: str = Field(max_length=255)
    note: str | None = None
