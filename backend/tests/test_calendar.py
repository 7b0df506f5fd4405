"""Tests for business-day evaluation and the company calendar endpoints."""

from __future__ import annotations

import uuid
from datetime import date
from typing import TYPE_CHECKING

from leave_ledger.services.calendar import (
    BusinessDayOptions,
    expand_range_to_business_dates,
    is_business_day,
    load_business_day_options,
    next_business_day,
    previous_business_day,
    weekday_index,
)

if TYPE_CHECKING:
    from httpx import AsyncClient
    from sqlalchemy.ext.asyncio import AsyncSession

COMPANY_ID = uuid.uuid4()
ADMIN_ID = uuid.uuid4()
EMPLOYEE_ID = uuid.uuid4()

AUTH_HEADERS = {
    "X-Company-Id": str(COMPANY_ID),
    "X-User-Id": str(ADMIN_ID),
    "X-Role": "admin",
}

EMPLOYEE_HEADERS = {
    "X-Company-Id": str(COMPANY_ID),
    "X-User-Id": str(EMPLOYEE_ID),
    "X-Role": "employee",
}

CALENDAR_URL = f"/companies/{COMPANY_ID}/calendar"

# 2025-01-04 is a Saturday, 2025-01-05 a Sunday, 2025-01-06 a Monday.
SATURDAY = date(2025, 1, 4)
SUNDAY = date(2025, 1, 5)
MONDAY = date(2025, 1, 6)


# ===========================================================================
# Pure helpers
# ===========================================================================


class TestWeekdayIndex:
    def test_sunday_is_zero(self) -> None:
        assert weekday_index(SUNDAY) == 0

    def test_saturday_is_six(self) -> None:
        assert weekday_index(SATURDAY) == 6

    def test_monday_is_one(self) -> None:
        assert weekday_index(MONDAY) == 1


class TestIsBusinessDay:
    def test_default_weekend(self) -> None:
        assert is_business_day(SATURDAY) is False
        assert is_business_day(SUNDAY) is False
        assert is_business_day(MONDAY) is True

    def test_iso_string_input(self) -> None:
        assert is_business_day("2025-01-06") is True

    def test_blackout(self) -> None:
        assert is_business_day(MONDAY, blackout_dates=[MONDAY]) is False

    def test_working_override_on_weekend(self) -> None:
        assert is_business_day(SATURDAY, working_dates=["2025-01-04"]) is True

    def test_blackout_beats_working_override(self) -> None:
        assert is_business_day(SATURDAY, blackout_dates=[SATURDAY], working_dates=[SATURDAY]) is False

    def test_custom_weekly_pattern(self) -> None:
        # Friday (5) and Saturday (6) off.
        assert is_business_day(date(2025, 1, 3), non_working_weekdays=[5, 6]) is False
        assert is_business_day(SUNDAY, non_working_weekdays=[5, 6]) is True


class TestExpandRange:
    def test_skips_weekend(self) -> None:
        days = expand_range_to_business_dates(date(2025, 1, 3), MONDAY)
        assert days == ["2025-01-03", "2025-01-06"]

    def test_skips_holiday(self) -> None:
        options = BusinessDayOptions(blackout_dates=frozenset({MONDAY}))
        days = expand_range_to_business_dates(MONDAY, date(2025, 1, 7), options)
        assert days == ["2025-01-07"]

    def test_empty_when_end_before_start(self) -> None:
        assert expand_range_to_business_dates(date(2025, 1, 7), MONDAY) == []

    def test_all_weekend(self) -> None:
        assert expand_range_to_business_dates(SATURDAY, SUNDAY) == []


class TestNeighbouringBusinessDays:
    def test_previous_skips_weekend(self) -> None:
        assert previous_business_day(MONDAY, BusinessDayOptions()) == date(2025, 1, 3)

    def test_next_returns_same_day_when_business(self) -> None:
        assert next_business_day(MONDAY, BusinessDayOptions()) == MONDAY

    def test_next_rolls_forward(self) -> None:
        assert next_business_day(SATURDAY, BusinessDayOptions()) == MONDAY

    def test_none_when_every_day_is_off(self) -> None:
        options = BusinessDayOptions(non_working_weekdays=frozenset(range(7)))
        assert previous_business_day(MONDAY, options) is None
        assert next_business_day(MONDAY, options) is None


# ===========================================================================
# Calendar endpoints
# ===========================================================================


async def _save_calendar(async_client: AsyncClient, **overrides: object) -> dict:
    payload: dict = {
        "non_working_weekdays": [0, 6],
        "timezone": "Asia/Tokyo",
        "dates": [
            {"date": "2025-01-06", "kind": "HOLIDAY", "name": "Coming of Age Day"},
            {"date": "2025-01-11", "kind": "WORKDAY", "name": "Make-up day"},
        ],
    }
    payload.update(overrides)
    resp = await async_client.put(CALENDAR_URL, json=payload, headers=AUTH_HEADERS)
    assert resp.status_code == 200, resp.text
    return resp.json()


class TestCalendarEndpoints:
    async def test_defaults_without_saved_calendar(self, async_client: AsyncClient) -> None:
        resp = await async_client.get(CALENDAR_URL, headers=EMPLOYEE_HEADERS)
        assert resp.status_code == 200
        data = resp.json()
        assert data["non_working_weekdays"] == [0, 6]
        assert data["dates"] == []

    async def test_save_and_get(self, async_client: AsyncClient) -> None:
        saved = await _save_calendar(async_client)
        assert saved["timezone"] == "Asia/Tokyo"
        assert len(saved["dates"]) == 2

        resp = await async_client.get(CALENDAR_URL, headers=EMPLOYEE_HEADERS)
        assert resp.json() == saved

    async def test_save_replaces_dates(self, async_client: AsyncClient) -> None:
        await _save_calendar(async_client)
        saved = await _save_calendar(async_client, dates=[{"date": "2025-02-11", "kind": "HOLIDAY"}])
        assert [d["date"] for d in saved["dates"]] == ["2025-02-11"]

    async def test_weekdays_sorted_and_deduplicated(self, async_client: AsyncClient) -> None:
        saved = await _save_calendar(async_client, non_working_weekdays=[6, 0, 6])
        assert saved["non_working_weekdays"] == [0, 6]

    async def test_invalid_weekday_rejected(self, async_client: AsyncClient) -> None:
        resp = await async_client.put(CALENDAR_URL, json={"non_working_weekdays": [7]}, headers=AUTH_HEADERS)
        assert resp.status_code == 422

    async def test_unknown_timezone_rejected(self, async_client: AsyncClient) -> None:
        resp = await async_client.put(CALENDAR_URL, json={"timezone": "Mars/Olympus"}, headers=AUTH_HEADERS)
        assert resp.status_code == 422

    async def test_duplicate_dates_rejected(self, async_client: AsyncClient) -> None:
        payload = {"dates": [{"date": "2025-01-06"}, {"date": "2025-01-06", "kind": "BLACKOUT"}]}
        resp = await async_client.put(CALENDAR_URL, json=payload, headers=AUTH_HEADERS)
        assert resp.status_code == 422

    async def test_employee_cannot_save(self, async_client: AsyncClient) -> None:
        resp = await async_client.put(CALENDAR_URL, json={}, headers=EMPLOYEE_HEADERS)
        assert resp.status_code == 403

    async def test_check_business_day(self, async_client: AsyncClient) -> None:
        await _save_calendar(async_client)

        holiday = await async_client.get(f"{CALENDAR_URL}/check?date=2025-01-06", headers=EMPLOYEE_HEADERS)
        assert holiday.json() == {"date": "2025-01-06", "is_business_day": False, "next_business_day": "2025-01-07"}

        makeup = await async_client.get(f"{CALENDAR_URL}/check?date=2025-01-11", headers=EMPLOYEE_HEADERS)
        assert makeup.json()["is_business_day"] is True

        tuesday = await async_client.get(f"{CALENDAR_URL}/check?date=2025-01-07", headers=EMPLOYEE_HEADERS)
        assert tuesday.json()["is_business_day"] is True
        assert tuesday.json()["next_business_day"] == "2025-01-07"

    async def test_company_scope_enforced(self, async_client: AsyncClient) -> None:
        resp = await async_client.get(f"/companies/{uuid.uuid4()}/calendar", headers=AUTH_HEADERS)
        assert resp.status_code == 403


async def test_load_business_day_options(async_client: AsyncClient, db_session: AsyncSession) -> None:
    await _save_calendar(async_client)
    options = await load_business_day_options(db_session, COMPANY_ID, extra_blackouts=[date(2025, 1, 7)])
    assert options.timezone == "Asia/Tokyo"
    assert options.non_working_weekdays == frozenset({0, 6})
    assert options.blackout_dates == frozenset({MONDAY, date(2025, 1, 7)})
    assert options.working_dates == frozenset({date(2025, 1, 11)})
