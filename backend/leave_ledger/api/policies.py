# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from leave_ledger.api.deps import AdminDep, AuthDep, validate_company_scope
from leave_ledger.db import SessionDep
from leave_ledger.schemas.policy import PolicyListResponse, PolicyResponse, UpsertPolicyRequest
from leave_ledger.services import policy as policy_service

router = APIRouter(
    prefix="/companies/{company_id}/leave-policies",
    tags=["policies"],
    dependencies=[Depends(validate_company_scope)],
)


@router.get("", response_model=PolicyListResponse)
async def list_policies(
    session: SessionDep,
    auth: AuthDep,
) -> PolicyListResponse:
    """List all leave policies for the company."""
    return await policy_service.list_policies(session, auth.company_id)


@router.get("/{leave_type_id}", response_model=PolicyResponse)
async def get_policy(
    leave_type_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> PolicyResponse:
    """Get the policy of one leave type."""
    return await policy_service.get_policy(session, auth.company_id, leave_type_id)


@router.put("/{leave_type_id}", response_model=PolicyResponse)
async def upsert_policy(
    leave_type_id: uuid.UUID,
    payload: UpsertPolicyRequest,
    session: SessionDep,
    auth: AdminDep,
) -> PolicyResponse:
    """Create or replace the policy of a leave type (admin only)."""
    return await policy_service.upsert_policy(session, auth, leave_type_id, payload)
