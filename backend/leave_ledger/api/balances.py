# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.api.deps import AuthDep, ensure_self_or_admin, validate_company_scope
from leave_ledger.api.grants import build_grant_response
from leave_ledger.db import SessionDep
from leave_ledger.schemas.balance import (
    BalanceListResponse,
    BalanceResponse,
    GrantListResponse,
    GrantWithRemainingResponse,
)
from leave_ledger.services import balance as balance_service
from leave_ledger.services.calendar import load_business_day_options, today_in_timezone

employee_balance_router = APIRouter(
    prefix="/companies/{company_id}/employees/{employee_id}/balances",
    tags=["balances"],
    dependencies=[Depends(validate_company_scope)],
)

employee_grants_router = APIRouter(
    prefix="/companies/{company_id}/employees/{employee_id}/grants",
    tags=["balances"],
    dependencies=[Depends(validate_company_scope)],
)


async def _resolve_as_of(session: AsyncSession, company_id: uuid.UUID, as_of: date | None) -> date:
    if as_of is not None:
        return as_of
    options = await load_business_day_options(session, company_id)
    return today_in_timezone(options.timezone)


@employee_balance_router.get("", response_model=BalanceListResponse)
async def get_employee_balances(
    employee_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    leave_type_id: uuid.UUID | None = Query(default=None),
    as_of: date | None = Query(default=None),
) -> BalanceListResponse:
    """Get an employee's balances per leave type."""
    ensure_self_or_admin(auth, employee_id)
    as_of = await _resolve_as_of(session, auth.company_id, as_of)
    balances = await balance_service.get_balance(session, employee_id, leave_type_id, as_of=as_of)
    items = [
        BalanceResponse(
            leave_type_id=b.leave_type_id,
            granted=b.granted,
            used=b.used,
            held=b.held,
            expired=b.expired,
            forfeited=b.forfeited,
            remaining_confirmed=b.remaining_confirmed,
            remaining_including_holds=b.remaining_including_holds,
            available=b.available,
        )
        for b in balances
    ]
    return BalanceListResponse(as_of=as_of, items=items, total=len(items))


@employee_grants_router.get("", response_model=GrantListResponse)
async def get_employee_grants(
    employee_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    leave_type_id: uuid.UUID | None = Query(default=None),
    as_of: date | None = Query(default=None),
) -> GrantListResponse:
    """Get an employee's grants in allocation order with remaining hours."""
    ensure_self_or_admin(auth, employee_id)
    as_of = await _resolve_as_of(session, auth.company_id, as_of)
    grants = await balance_service.list_grants_with_remaining(session, employee_id, leave_type_id, as_of=as_of)
    items = [
        GrantWithRemainingResponse(
            grant=build_grant_response(g.grant),
            remaining_confirmed=g.remaining_confirmed,
            remaining_including_holds=g.remaining_including_holds,
            is_expired=g.is_expired,
        )
        for g in grants
    ]
    return GrantListResponse(items=items, total=len(items))
