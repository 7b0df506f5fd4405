# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, Body, Depends, status

from leave_ledger.api.deps import AdminDep, validate_company_scope
from leave_ledger.db import SessionDep
from leave_ledger.models.consumption import LeaveConsumption
from leave_ledger.schemas.allocation import (
    AllocateRequest,
    AllocationResponse,
    ConsumptionResponse,
    FootprintResponse,
    LedgerTransitionResponse,
    ReverseRequest,
)
from leave_ledger.services import allocation as allocation_service
from leave_ledger.services.allocation import LedgerTransition

allocations_router = APIRouter(
    prefix="/companies/{company_id}/allocations",
    tags=["allocations"],
    dependencies=[Depends(validate_company_scope)],
)


def build_consumption_response(row: LeaveConsumption) -> ConsumptionResponse:
    return ConsumptionResponse(
        id=row.id,
        grant_id=row.grant_id,
        quantity=row.quantity,
        is_hold=row.is_hold,
        consumed_on=row.consumed_on,
    )


def _build_transition_response(transition: LedgerTransition) -> LedgerTransitionResponse:
    return LedgerTransitionResponse(
        request_id=transition.request_id,
        from_state=transition.from_state,
        to_state=transition.to_state,
        affected_rows=transition.affected_rows,
        hours=transition.hours,
    )


@allocations_router.post("", response_model=AllocationResponse, status_code=status.HTTP_201_CREATED)
async def allocate(
    payload: AllocateRequest,
    session: SessionDep,
    auth: AdminDep,
) -> AllocationResponse:
    """Allocate hours against an employee's grants as a hold or confirmed."""
    result = await allocation_service.allocate(
        session,
        payload.user_id,
        payload.leave_type_id,
        payload.request_id,
        payload.needs,
        payload.is_hold,
        payload.manual_grant_ids,
        company_id=auth.company_id,
        allow_expired=payload.allow_expired,
        actor_id=auth.user_id,
    )
    return AllocationResponse(
        request_id=result.request_id,
        is_hold=result.is_hold,
        total_hours=result.total_hours,
        rows=[build_consumption_response(row) for row in result.rows],
    )


@allocations_router.get("/{request_id}", response_model=FootprintResponse)
async def get_footprint(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AdminDep,
) -> FootprintResponse:
    """Get the ledger footprint of a request."""
    footprint = await allocation_service.get_request_footprint(session, request_id, company_id=auth.company_id)
    return FootprintResponse(
        request_id=footprint.request_id,
        state=footprint.state,
        total_hours=footprint.total_hours,
        rows=[build_consumption_response(row) for row in footprint.rows],
    )


@allocations_router.post("/{request_id}/confirm", response_model=LedgerTransitionResponse)
async def confirm(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AdminDep,
) -> LedgerTransitionResponse:
    """Confirm a held request."""
    transition = await allocation_service.confirm(
        session, request_id, company_id=auth.company_id, actor_id=auth.user_id
    )
    return _build_transition_response(transition)


@allocations_router.post("/{request_id}/release", response_model=LedgerTransitionResponse)
async def release(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AdminDep,
) -> LedgerTransitionResponse:
    """Release a held request."""
    transition = await allocation_service.release(
        session, request_id, company_id=auth.company_id, actor_id=auth.user_id
    )
    return _build_transition_response(transition)


@allocations_router.post("/{request_id}/reverse", response_model=LedgerTransitionResponse)
async def reverse(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AdminDep,
    payload: ReverseRequest | None = Body(default=None),
) -> LedgerTransitionResponse:
    """Reverse a confirmed request."""
    reason = payload.reason if payload is not None else None
    transition = await allocation_service.reverse(
        session, request_id, reason, company_id=auth.company_id, actor_id=auth.user_id
    )
    return _build_transition_response(transition)
