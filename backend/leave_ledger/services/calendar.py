# ruff: noqa: TC003
"""Business calendar: weekly non-working days, holidays, blackouts and overrides."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select
from sqlmodel import col

from leave_ledger.config import get_settings
from leave_ledger.models.calendar import CompanyCalendar, CompanyCalendarDate
from leave_ledger.models.enums import AuditAction, AuditTargetType, CalendarDateKind
from leave_ledger.schemas.calendar import BusinessDayCheckResponse, CalendarDateEntry, CalendarResponse
from leave_ledger.services.audit import model_to_audit_dict, write_audit_log

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.schemas.auth import AuthContext
    from leave_ledger.schemas.calendar import SaveCalendarRequest

# 0 = Sunday ... 6 = Saturday.
DEFAULT_NON_WORKING_WEEKDAYS: frozenset[int] = frozenset({0, 6})

# Upper bound when walking to a neighbouring business day.
_MAX_SEARCH_DAYS = 366


@dataclass(frozen=True)
class BusinessDayOptions:
    """Everything needed to decide whether a date is a business day."""

    non_working_weekdays: frozenset[int] = DEFAULT_NON_WORKING_WEEKDAYS
    blackout_dates: frozenset[date] = field(default_factory=frozenset)
    working_dates: frozenset[date] = field(default_factory=frozenset)
    timezone: str = "UTC"

    def with_blackouts(self, extra: Iterable[date]) -> BusinessDayOptions:
        """Return a copy with additional blacked-out dates."""
        return BusinessDayOptions(
            non_working_weekdays=self.non_working_weekdays,
            blackout_dates=self.blackout_dates | frozenset(extra),
            working_dates=self.working_dates,
            timezone=self.timezone,
        )


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def weekday_index(day: date) -> int:
    """Return the weekday with 0 = Sunday ... 6 = Saturday."""
    return day.isoweekday() % 7


def _as_date(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def is_business_day(
    day: date | str,
    non_working_weekdays: Iterable[int] = DEFAULT_NON_WORKING_WEEKDAYS,
    blackout_dates: Iterable[date | str] = (),
    working_dates: Iterable[date | str] = (),
) -> bool:
    """Return True if the date is a working weekday (or override) and not blacked out."""
    current = _as_date(day)
    if current in {_as_date(d) for d in blackout_dates}:
        return False
    if current in {_as_date(d) for d in working_dates}:
        return True
    return weekday_index(current) not in set(non_working_weekdays)


def is_business_day_with(day: date, options: BusinessDayOptions) -> bool:
    """is_business_day driven by a BusinessDayOptions bundle."""
    if day in options.blackout_dates:
        return False
    if day in options.working_dates:
        return True
    return weekday_index(day) not in options.non_working_weekdays


def expand_range_to_business_dates(
    start: date | str,
    end: date | str,
    options: BusinessDayOptions | None = None,
) -> list[str]:
    """Return the ISO dates of business days in [start, end], ascending."""
    opts = options or BusinessDayOptions()
    current = _as_date(start)
    last = _as_date(end)
    days: list[str] = []
    while current <= last:
        if is_business_day_with(current, opts):
            days.append(current.isoformat())
        current += timedelta(days=1)
    return days


def previous_business_day(day: date, options: BusinessDayOptions) -> date | None:
    """Return the closest business day strictly before ``day``, or None within a year."""
    current = day
    for _ in range(_MAX_SEARCH_DAYS):
        current -= timedelta(days=1)
        if is_business_day_with(current, options):
            return current
    return None


def next_business_day(day: date, options: BusinessDayOptions) -> date | None:
    """Return ``day`` itself if it is a business day, else the next one within a year."""
    current = day
    for _ in range(_MAX_SEARCH_DAYS + 1):
        if is_business_day_with(current, options):
            return current
        current += timedelta(days=1)
    return None


def today_in_timezone(timezone: str | None = None) -> date:
    """Return today's date in the given (or operational) timezone."""
    tz_name = timezone or get_settings().operational_timezone
    return datetime.now(ZoneInfo(tz_name)).date()


# ---------------------------------------------------------------------------
# DB-backed helpers
# ---------------------------------------------------------------------------


async def _get_calendar_row(session: AsyncSession, company_id: uuid.UUID) -> CompanyCalendar | None:
    result = await session.execute(select(CompanyCalendar).where(col(CompanyCalendar.company_id) == company_id))
    return result.scalar_one_or_none()


async def _list_calendar_dates(session: AsyncSession, company_id: uuid.UUID) -> list[CompanyCalendarDate]:
    result = await session.execute(
        select(CompanyCalendarDate)
        .where(col(CompanyCalendarDate.company_id) == company_id)
        .order_by(col(CompanyCalendarDate.date))
    )
    return list(result.scalars().all())


async def load_business_day_options(
    session: AsyncSession,
    company_id: uuid.UUID,
    extra_blackouts: Iterable[date] = (),
) -> BusinessDayOptions:
    """Load a company's calendar into BusinessDayOptions.

    Companies without a calendar row get Saturday/Sunday off and the
    operational timezone.
    """
    calendar = await _get_calendar_row(session, company_id)
    dates = await _list_calendar_dates(session, company_id)

    blackouts = {d.date for d in dates if d.kind in (CalendarDateKind.HOLIDAY, CalendarDateKind.BLACKOUT)}
    blackouts.update(extra_blackouts)
    working = {d.date for d in dates if d.kind == CalendarDateKind.WORKDAY}

    if calendar is None:
        weekdays = DEFAULT_NON_WORKING_WEEKDAYS
        timezone = get_settings().operational_timezone
    else:
        weekdays = frozenset(calendar.non_working_weekdays)
        timezone = calendar.timezone or get_settings().operational_timezone

    return BusinessDayOptions(
        non_working_weekdays=weekdays,
        blackout_dates=frozenset(blackouts),
        working_dates=frozenset(working),
        timezone=timezone,
    )


def _build_calendar_response(
    company_id: uuid.UUID,
    calendar: CompanyCalendar | None,
    dates: list[CompanyCalendarDate],
) -> CalendarResponse:
    settings = get_settings()
    return CalendarResponse(
        company_id=company_id,
        non_working_weekdays=sorted(calendar.non_working_weekdays if calendar else DEFAULT_NON_WORKING_WEEKDAYS),
        timezone=(calendar.timezone if calendar else None) or settings.operational_timezone,
        dates=[CalendarDateEntry(date=d.date, kind=CalendarDateKind(d.kind), name=d.name) for d in dates],
    )


async def get_calendar(session: AsyncSession, company_id: uuid.UUID) -> CalendarResponse:
    """Return a company's calendar, falling back to defaults when none is saved."""
    calendar = await _get_calendar_row(session, company_id)
    dates = await _list_calendar_dates(session, company_id)
    return _build_calendar_response(company_id, calendar, dates)


async def save_calendar(
    session: AsyncSession,
    auth: AuthContext,
    payload: SaveCalendarRequest,
) -> CalendarResponse:
    """Replace a company's weekly pattern and explicit dates."""
    calendar = await _get_calendar_row(session, auth.company_id)
    before = await get_calendar(session, auth.company_id)

    if calendar is None:
        calendar = CompanyCalendar(company_id=auth.company_id)
        session.add(calendar)
    calendar.non_working_weekdays = list(payload.non_working_weekdays)
    calendar.timezone = payload.timezone
    calendar.updated_at = datetime.now(UTC)

    await session.execute(delete(CompanyCalendarDate).where(col(CompanyCalendarDate.company_id) == auth.company_id))
    for entry in payload.dates:
        session.add(
            CompanyCalendarDate(
                company_id=auth.company_id,
                date=entry.date,
                kind=entry.kind.value,
                name=entry.name,
            )
        )
    await session.flush()

    await write_audit_log(
        session,
        company_id=auth.company_id,
        actor_id=auth.user_id,
        action=AuditAction.CALENDAR_SAVED,
        target_type=AuditTargetType.CALENDAR,
        target_id=calendar.id,
        before_json=before.model_dump(mode="json"),
        after_json={
            **model_to_audit_dict(calendar),
            "dates": [entry.model_dump(mode="json") for entry in payload.dates],
        },
    )

    await session.commit()
    return await get_calendar(session, auth.company_id)


async def check_business_day(
    session: AsyncSession,
    company_id: uuid.UUID,
    day: date,
    extra_blackouts: Iterable[date] = (),
) -> BusinessDayCheckResponse:
    """Check a single date against the company calendar."""
    options = await load_business_day_options(session, company_id, extra_blackouts)
    return BusinessDayCheckResponse(
        date=day,
        is_business_day=is_business_day_with(day, options),
        next_business_day=next_business_day(day, options),
    )
