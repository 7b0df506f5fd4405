# ruff: noqa: TC003
from __future__ import annotations

import datetime
import uuid

import sqlalchemy as sa
from sqlmodel import Field

from leave_ledger.models.base import UUIDBase


def _now_utc() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class CompanyCalendar(UUIDBase, table=True):
    """Weekly non-working weekdays and timezone of a company."""

    __tablename__ = "company_calendar"

    company_id: uuid.UUID = Field(unique=True, index=True)
    # 0 = Sunday ... 6 = Saturday.
    non_working_weekdays: list[int] = Field(default_factory=lambda: [0, 6], sa_type=sa.JSON)
    timezone: str | None = Field(default=None, max_length=64)
    updated_at: datetime.datetime = Field(  # type: ignore[call-overload]
        default_factory=_now_utc,
        sa_type=sa.DateTime(timezone=True),
        sa_column_kwargs={"server_default": sa.func.now(), "onupdate": sa.func.now()},
    )


class CompanyCalendarDate(UUIDBase, table=True):
    """An explicit holiday, blackout, or working-day override for a company."""

    __tablename__ = "company_calendar_date"
    __table_args__ = (sa.UniqueConstraint("company_id", "date", name="uq_calendar_company_date"),)

    company_id: uuid.UUID = Field(index=True)
    date: datetime.date
    kind: str = Field(max_length=20)
    name: str | None = Field(default=None, max_length=255)
