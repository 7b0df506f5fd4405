# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status

from leave_ledger.api.deps import AuthDep, ensure_self_or_admin, validate_company_scope
from leave_ledger.db import SessionDep
from leave_ledger.exceptions import AppError
from leave_ledger.models.enums import DecisionAction
from leave_ledger.schemas.request import (
    DecisionPayload,
    DecisionResponse,
    LeaveRequestResponse,
    SubmitLeaveRequestPayload,
)
from leave_ledger.services import request_flow
from leave_ledger.services.allocation import get_request_footprint

leave_requests_router = APIRouter(
    prefix="/companies/{company_id}/leave-requests",
    tags=["leave-requests"],
    dependencies=[Depends(validate_company_scope)],
)


@leave_requests_router.post("", response_model=LeaveRequestResponse, status_code=status.HTTP_201_CREATED)
async def submit_leave_request(
    payload: SubmitLeaveRequestPayload,
    session: SessionDep,
    auth: AuthDep,
) -> LeaveRequestResponse:
    """Submit request detail lines; hours are held (or deducted) on the ledger."""
    ensure_self_or_admin(auth, payload.user_id)
    if payload.manual_grant_ids and not auth.is_admin:
        raise AppError("Only admins may pick grants manually", status_code=status.HTTP_403_FORBIDDEN)

    outcome = await request_flow.submit_leave_request(session, auth.company_id, payload, actor_id=auth.user_id)
    return LeaveRequestResponse(
        request_id=outcome.request_id,
        state=outcome.state,
        total_hours=outcome.total_hours,
        needs=outcome.needs,
    )


@leave_requests_router.post("/{request_id}/decision", response_model=DecisionResponse)
async def decide_leave_request(
    request_id: uuid.UUID,
    payload: DecisionPayload,
    session: SessionDep,
    auth: AuthDep,
) -> DecisionResponse:
    """Approve, reject or cancel a request.

    Approve and reject are admin only. An employee may cancel their own request.
    """
    if not auth.is_admin:
        if payload.action != DecisionAction.CANCEL:
            raise AppError("Admin access required", status_code=status.HTTP_403_FORBIDDEN)
        footprint = await get_request_footprint(session, request_id, company_id=auth.company_id)
        if footprint.rows:
            ensure_self_or_admin(auth, footprint.rows[0].user_id)

    outcome = await request_flow.decide_leave_request(
        session,
        auth.company_id,
        request_id,
        payload.action,
        note=payload.note,
        actor_id=auth.user_id,
    )
    return DecisionResponse(
        request_id=outcome.request_id,
        action=outcome.action,
        from_state=outcome.from_state,
        to_state=outcome.to_state,
        hours=outcome.hours,
    )
