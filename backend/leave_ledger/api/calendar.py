# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query

from leave_ledger.api.deps import AdminDep, AuthDep, validate_company_scope
from leave_ledger.db import SessionDep
from leave_ledger.schemas.calendar import BusinessDayCheckResponse, CalendarResponse, SaveCalendarRequest
from leave_ledger.services import calendar as calendar_service

calendar_router = APIRouter(
    prefix="/companies/{company_id}/calendar",
    tags=["calendar"],
    dependencies=[Depends(validate_company_scope)],
)


@calendar_router.get("", response_model=CalendarResponse)
async def get_calendar(
    session: SessionDep,
    auth: AuthDep,
) -> CalendarResponse:
    """Get the company's business calendar."""
    return await calendar_service.get_calendar(session, auth.company_id)


@calendar_router.put("", response_model=CalendarResponse)
async def save_calendar(
    payload: SaveCalendarRequest,
    session: SessionDep,
    auth: AdminDep,
) -> CalendarResponse:
    """Replace the company's business calendar (admin only)."""
    return await calendar_service.save_calendar(session, auth, payload)


@calendar_router.get("/check", response_model=BusinessDayCheckResponse)
async def check_business_day(
    session: SessionDep,
    auth: AuthDep,
    day: date = Query(alias="date"),
) -> BusinessDayCheckResponse:
    """Check whether a date is a business day for the company."""
    return await calendar_service.check_business_day(session, auth.company_id, day)
