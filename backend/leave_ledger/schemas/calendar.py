# ruff: noqa: TC001, TC003
from __future__ import annotations

import datetime
import uuid

from pydantic import BaseModel, Field, field_validator

from leave_ledger.models.enums import CalendarDateKind


class CalendarDateEntry(BaseModel):
    """An explicit holiday, blackout, or working-day override."""

    date: datetime.date
    kind: CalendarDateKind = CalendarDateKind.HOLIDAY
    name: str | None = Field(default=None, max_length=255)


class SaveCalendarRequest(BaseModel):
    """Request body for replacing a company's business calendar."""

    non_working_weekdays: list[int] = Field(
        default_factory=lambda: [0, 6],
        description="0 = Sunday ... 6 = Saturday",
    )
    timezone: str | None = Field(default=None, max_length=64)
    dates: list[CalendarDateEntry] = []

    @field_validator("non_working_weekdays")
    @classmethod
    def _validate_weekdays(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            msg = "non_working_weekdays must be between 0 (Sunday) and 6 (Saturday)"
            raise ValueError(msg)
        return sorted(set(value))

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str | None) -> str | None:
        if value is None:
            return value
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            msg = f"Unknown timezone: {value}"
            raise ValueError(msg) from exc
        return value

    @field_validator("dates")
    @classmethod
    def _validate_unique_dates(cls, value: list[CalendarDateEntry]) -> list[CalendarDateEntry]:
        seen = [entry.date for entry in value]
        if len(seen) != len(set(seen)):
            msg = "Calendar dates must be unique"
            raise ValueError(msg)
        return value


class CalendarResponse(BaseModel):
    """A company's business calendar."""

    company_id: uuid.UUID
    non_working_weekdays: list[int]
    timezone: str
    dates: list[CalendarDateEntry]


class BusinessDayCheckResponse(BaseModel):
    """Result of a business-day check."""

    date: datetime.date
    is_business_day: bool
    # The date itself when it is a business day; None if none within a year.
    next_business_day: datetime.date | None = None
