# ruff: noqa: B008, TC001, TC003
"""API endpoints for grant issuance: scheduler trigger, admin back-fill and manual grants."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Body, Depends, Query, status

from leave_ledger.api.deps import AdminDep, require_cron_secret, validate_company_scope
from leave_ledger.db import SessionDep
from leave_ledger.models.enums import GrantSource
from leave_ledger.models.grant import LeaveGrant
from leave_ledger.schemas.accrual import (
    CronGrantRequest,
    GrantRunResponse,
    GrantTargetErrorResponse,
    PolicyRunSummaryResponse,
)
from leave_ledger.schemas.balance import GrantResponse, ManualGrantRequest
from leave_ledger.services.accrual import GrantRunResult, issue_grants
from leave_ledger.services.grant import create_manual_grant


def build_grant_response(grant: LeaveGrant) -> GrantResponse:
    return GrantResponse(
        id=grant.id,
        company_id=grant.company_id,
        user_id=grant.user_id,
        leave_type_id=grant.leave_type_id,
        policy_id=grant.policy_id,
        quantity=grant.quantity,
        forfeited_quantity=grant.forfeited_quantity,
        granted_on=grant.granted_on,
        expires_on=grant.expires_on,
        source=GrantSource(grant.source),
        source_ref=grant.source_ref,
        note=grant.note,
        created_at=grant.created_at,
    )


def _build_run_response(result: GrantRunResult) -> GrantRunResponse:
    return GrantRunResponse(
        as_of=result.as_of,
        granted=result.granted,
        skipped=result.skipped,
        not_due=result.not_due,
        errors=[
            GrantTargetErrorResponse(
                company_id=e.company_id,
                leave_type_id=e.leave_type_id,
                user_id=e.user_id,
                message=e.message,
            )
            for e in result.errors
        ],
        policies=[
            PolicyRunSummaryResponse(
                policy_id=s.policy_id,
                company_id=s.company_id,
                leave_type_id=s.leave_type_id,
                accrual_method=s.accrual_method,
                granted=s.granted,
                skipped=s.skipped,
                not_due=s.not_due,
                errors=s.errors,
            )
            for s in result.policies
        ],
    )


# ---------------------------------------------------------------------------
# Scheduler trigger: POST /cron/leave-grant
# ---------------------------------------------------------------------------

cron_router = APIRouter(
    prefix="/cron",
    tags=["cron"],
    dependencies=[Depends(require_cron_secret)],
)


@cron_router.post("/leave-grant", response_model=GrantRunResponse)
async def cron_leave_grant(
    session: SessionDep,
    payload: CronGrantRequest | None = Body(default=None),
) -> GrantRunResponse:
    """Issue all grants due today (operational timezone) or on the given date.

    Called by an external scheduler with the X-Cron-Secret header.
    """
    payload = payload or CronGrantRequest()
    result = await issue_grants(session, payload.date, company_id=payload.company_id)
    return _build_run_response(result)


# ---------------------------------------------------------------------------
# Admin: POST /companies/{company_id}/grants[/issue]
# ---------------------------------------------------------------------------

grants_router = APIRouter(
    prefix="/companies/{company_id}/grants",
    tags=["grants"],
    dependencies=[Depends(validate_company_scope)],
)


@grants_router.post("/issue", response_model=GrantRunResponse)
async def issue_company_grants(
    session: SessionDep,
    auth: AdminDep,
    as_of: date | None = Query(default=None),
) -> GrantRunResponse:
    """Run grant issuance for the authenticated company (admin back-fill)."""
    result = await issue_grants(session, as_of, company_id=auth.company_id, actor_id=auth.user_id)
    return _build_run_response(result)


@grants_router.post("", response_model=GrantResponse, status_code=status.HTTP_201_CREATED)
async def create_grant(
    payload: ManualGrantRequest,
    session: SessionDep,
    auth: AdminDep,
) -> GrantResponse:
    """Create a manual grant with an explicit date (admin only)."""
    grant = await create_manual_grant(session, auth, payload)
    return build_grant_response(grant)
