# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Self

from pydantic import BaseModel, Field, model_validator

from leave_ledger.models.enums import GrantSource
from leave_ledger.schemas.types import Hours

# ---------------------------------------------------------------------------
# Balance response schemas
# ---------------------------------------------------------------------------


class BalanceResponse(BaseModel):
    """Balance of one leave type for an employee, in hours."""

    leave_type_id: uuid.UUID
    granted: Hours
    used: Hours
    held: Hours
    expired: Hours
    forfeited: Hours
    remaining_confirmed: Hours
    remaining_including_holds: Hours
    available: Hours


class BalanceListResponse(BaseModel):
    """All leave type balances for an employee."""

    as_of: date
    items: list[BalanceResponse]
    total: int


# ---------------------------------------------------------------------------
# Grant schemas
# ---------------------------------------------------------------------------


class GrantResponse(BaseModel):
    """A single grant ledger line."""

    id: uuid.UUID
    company_id: uuid.UUID
    user_id: uuid.UUID
    leave_type_id: uuid.UUID
    policy_id: uuid.UUID | None
    quantity: Hours
    forfeited_quantity: Hours
    granted_on: date
    expires_on: date | None
    source: GrantSource
    source_ref: str
    note: str | None
    created_at: datetime


class GrantWithRemainingResponse(BaseModel):
    """A grant with its remaining hours under both balance views."""

    grant: GrantResponse
    remaining_confirmed: Hours
    remaining_including_holds: Hours
    is_expired: bool


class GrantListResponse(BaseModel):
    """Grants of an employee in allocation order."""

    items: list[GrantWithRemainingResponse]
    total: int


class ManualGrantRequest(BaseModel):
    """Request body for an administrative manual or back-fill grant."""

    user_id: uuid.UUID
    leave_type_id: uuid.UUID
    quantity_hours: Hours = Field(gt=0, le=10000)
    granted_on: date
    expires_on: date | None = Field(
        default=None,
        description="Overrides the policy expiry; defaults to granted_on + expire_months",
    )
    note: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _validate_dates(self) -> Self:
        if self.expires_on is not None and self.expires_on < self.granted_on:
            msg = "expires_on must be >= granted_on"
            raise ValueError(msg)
        return self
