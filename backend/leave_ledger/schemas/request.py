# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Self

from pydantic import BaseModel, Field, model_validator

from leave_ledger.models.enums import DecisionAction, FootprintState, LeaveUnit
from leave_ledger.schemas.allocation import AllocationNeed
from leave_ledger.schemas.types import Hours

# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class LeaveRequestDetail(BaseModel):
    """One detail line of a leave request."""

    start_at: datetime
    end_at: datetime
    unit: LeaveUnit
    quantity: Hours = Field(gt=0)

    @model_validator(mode="after")
    def _validate_dates(self) -> Self:
        if self.end_at <= self.start_at:
            msg = "end_at must be after start_at"
            raise ValueError(msg)
        return self


class SubmitLeaveRequestPayload(BaseModel):
    """Request body for submitting a leave request against the ledger."""

    request_id: uuid.UUID
    user_id: uuid.UUID
    leave_type_id: uuid.UUID
    details: list[LeaveRequestDetail] = Field(min_length=1)
    manual_grant_ids: list[uuid.UUID] | None = None


class DecisionPayload(BaseModel):
    """Request body for approve/reject/cancel."""

    action: DecisionAction
    note: str | None = Field(default=None, max_length=1000)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class LeaveRequestResponse(BaseModel):
    """Ledger outcome of a submitted leave request."""

    request_id: uuid.UUID
    state: FootprintState
    total_hours: Hours
    needs: list[AllocationNeed]


class DecisionResponse(BaseModel):
    """Ledger outcome of a decision."""

    request_id: uuid.UUID
    action: DecisionAction
    from_state: FootprintState
    to_state: FootprintState
    hours: Hours
