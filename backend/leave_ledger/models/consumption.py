# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field

from leave_ledger.models.base import HOURS_TYPE, TimestampMixin, UUIDBase


class LeaveConsumption(UUIDBase, TimestampMixin, table=True):
    """Hours deducted from one grant on behalf of a leave request."""

    __tablename__ = "leave_consumption"
    __table_args__ = (
        sa.Index("ix_consumption_user_leave_type", "user_id", "leave_type_id"),
        sa.CheckConstraint("quantity > 0", name="ck_consumption_quantity_positive"),
    )

    grant_id: uuid.UUID = Field(
        sa_column=sa.Column(
            sa.Uuid, sa.ForeignKey("leave_grant.id", ondelete="CASCADE"), nullable=False, index=True
        ),
    )
    request_id: uuid.UUID = Field(index=True)
    company_id: uuid.UUID
    user_id: uuid.UUID
    leave_type_id: uuid.UUID
    quantity: Decimal = Field(sa_type=HOURS_TYPE)
    is_hold: bool
    consumed_on: date
    note: str | None = None
