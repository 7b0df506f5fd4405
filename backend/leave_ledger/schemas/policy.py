# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator

from leave_ledger.models.enums import AccrualMethod, DeductionTiming, MinUnit
from leave_ledger.schemas.types import Hours

# ---------------------------------------------------------------------------
# Settings (discriminated by accrual_method)
# ---------------------------------------------------------------------------


class _BasePolicySettings(BaseModel):
    """Fields shared by every accrual method."""

    base_days_by_service: dict[str, Hours] = Field(
        default_factory=dict,
        description='Service years to granted days, e.g. {"0": 10, "1": 11}',
    )
    prorate_parttime: bool = True
    carryover_max_days: Hours | None = Field(default=None, ge=0, le=9999)
    expire_months: int = Field(default=24, gt=0, le=120)
    min_unit: MinUnit = MinUnit.HOUR
    hours_per_day: Hours = Field(default=Decimal(8), gt=0, le=24)
    allow_negative: bool = False
    hold_on_apply: bool = True
    deduction_timing: DeductionTiming = DeductionTiming.APPROVE
    business_day_only: bool = True
    blackout_dates: list[date] = []
    notes: str | None = None

    @field_validator("base_days_by_service")
    @classmethod
    def _validate_service_table(cls, value: dict[str, Decimal]) -> dict[str, Decimal]:
        for key, days in value.items():
            if not key.isdigit():
                msg = "base_days_by_service keys must be non-negative integer years"
                raise ValueError(msg)
            if days < 0 or days > 365:
                msg = "base_days_by_service values must be between 0 and 365"
                raise ValueError(msg)
        return value


class AnniversaryPolicySettings(_BasePolicySettings):
    """Grant on each anniversary of the employee's eligibility start date."""

    accrual_method: Literal["anniversary"] = "anniversary"
    anniversary_offset_days: int = Field(default=0, ge=-366, le=366)


class MonthlyPolicySettings(_BasePolicySettings):
    """Grant a twelfth of the annual entitlement on a fixed day each month."""

    accrual_method: Literal["monthly"] = "monthly"
    monthly_grant_day: int = Field(default=1, ge=1, le=31)
    anniversary_offset_days: int = Field(default=0, ge=-366, le=366)


class FiscalFixedPolicySettings(_BasePolicySettings):
    """Grant once per fiscal year on a fixed calendar date."""

    accrual_method: Literal["fiscal_fixed"] = "fiscal_fixed"
    fiscal_start_month: int = Field(default=4, ge=1, le=12)
    fiscal_start_day: int = Field(default=1, ge=1, le=31)


PolicySettings = Annotated[
    AnniversaryPolicySettings | MonthlyPolicySettings | FiscalFixedPolicySettings,
    Field(discriminator="accrual_method"),
]

# ---------------------------------------------------------------------------
# API request / response schemas
# ---------------------------------------------------------------------------


class UpsertPolicyRequest(BaseModel):
    """Request body for creating or replacing a leave policy."""

    settings: PolicySettings
    is_active: bool = True


class PolicyResponse(BaseModel):
    """Response schema for a leave policy."""

    id: uuid.UUID
    company_id: uuid.UUID
    leave_type_id: uuid.UUID
    accrual_method: AccrualMethod
    is_active: bool
    settings: PolicySettings
    created_at: datetime
    updated_at: datetime


class PolicyListResponse(BaseModel):
    """List of leave policies."""

    items: list[PolicyResponse]
    total: int
