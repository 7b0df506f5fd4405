# ruff: noqa: TC003
from __future__ import annotations

import datetime
import uuid

from pydantic import BaseModel


class CronGrantRequest(BaseModel):
    """Optional body for POST /cron/leave-grant."""

    company_id: uuid.UUID | None = None
    date: datetime.date | None = None


class GrantTargetErrorResponse(BaseModel):
    """A (policy, employee) pair that failed during a grant run."""

    company_id: uuid.UUID
    leave_type_id: uuid.UUID
    user_id: uuid.UUID | None
    message: str


class PolicyRunSummaryResponse(BaseModel):
    """Per-policy counts of a grant run."""

    policy_id: uuid.UUID
    company_id: uuid.UUID
    leave_type_id: uuid.UUID
    accrual_method: str
    granted: int
    skipped: int
    not_due: int
    errors: int


class GrantRunResponse(BaseModel):
    """Response from the grant run endpoints."""

    as_of: datetime.date
    granted: int
    skipped: int
    not_due: int
    errors: list[GrantTargetErrorResponse]
    policies: list[PolicyRunSummaryResponse]
