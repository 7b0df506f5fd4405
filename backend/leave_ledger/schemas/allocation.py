# ruff: noqa: TC001, TC003
from __future__ import annotations

import datetime
import uuid

from pydantic import BaseModel, Field

from leave_ledger.models.enums import FootprintState
from leave_ledger.schemas.types import Hours

# ---------------------------------------------------------------------------
# Allocation payloads
# ---------------------------------------------------------------------------


class AllocationNeed(BaseModel):
    """Hours to draw from the ledger for one calendar date."""

    date: datetime.date
    hours: Hours = Field(gt=0)


class AllocateRequest(BaseModel):
    """Request body for POST /companies/{company_id}/allocations."""

    user_id: uuid.UUID
    leave_type_id: uuid.UUID
    request_id: uuid.UUID
    needs: list[AllocationNeed] = Field(min_length=1)
    is_hold: bool = True
    manual_grant_ids: list[uuid.UUID] | None = None
    allow_expired: bool = Field(
        default=False,
        description="Admin-only: allow manually picked grants past their expiry",
    )


class ReverseRequest(BaseModel):
    """Request body for reversing a confirmed allocation."""

    reason: str | None = Field(default=None, max_length=1000)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class ConsumptionResponse(BaseModel):
    """A single consumption row."""

    id: uuid.UUID
    grant_id: uuid.UUID
    quantity: Hours
    is_hold: bool
    consumed_on: datetime.date


class AllocationResponse(BaseModel):
    """Rows written by an allocation."""

    request_id: uuid.UUID
    is_hold: bool
    total_hours: Hours
    rows: list[ConsumptionResponse]


class LedgerTransitionResponse(BaseModel):
    """Outcome of confirm, release or reverse."""

    request_id: uuid.UUID
    from_state: FootprintState
    to_state: FootprintState
    affected_rows: int
    hours: Hours


class FootprintResponse(BaseModel):
    """Current ledger footprint of one request."""

    request_id: uuid.UUID
    state: FootprintState
    total_hours: Hours
    rows: list[ConsumptionResponse]
