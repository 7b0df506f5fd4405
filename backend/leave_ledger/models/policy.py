# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field

from leave_ledger.models.base import TimestampMixin, UUIDBase


def _now_utc() -> datetime:
    return datetime.now(UTC)


class LeavePolicy(UUIDBase, TimestampMixin, table=True):
    """Accrual and allocation rules for one (company, leave type) pair."""

    __tablename__ = "leave_policy"
    __table_args__ = (sa.UniqueConstraint("company_id", "leave_type_id", name="uq_policy_company_leave_type"),)

    company_id: uuid.UUID = Field(index=True)
    leave_type_id: uuid.UUID = Field(index=True)
    accrual_method: str = Field(max_length=50)
    is_active: bool = Field(default=True, sa_column_kwargs={"server_default": sa.true()})
    settings_json: dict[str, Any] | None = Field(default=None, sa_type=sa.JSON)
    updated_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=_now_utc,
        sa_type=sa.DateTime(timezone=True),
        sa_column_kwargs={"server_default": sa.func.now(), "onupdate": sa.func.now()},
    )
