# ruff: noqa: TC003
"""Grant ledger access: FIFO ordering, row locks, consumption totals, manual grants."""

from __future__ import annotations

import uuid
from calendar import monthrange
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlmodel import col

from leave_ledger.models.consumption import LeaveConsumption
from leave_ledger.models.enums import AuditAction, AuditTargetType, GrantSource
from leave_ledger.models.grant import LeaveGrant
from leave_ledger.services.audit import model_to_audit_dict, write_audit_log
from leave_ledger.services.policy import get_active_policy, parse_policy_settings

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.schemas.auth import AuthContext
    from leave_ledger.schemas.balance import ManualGrantRequest


@dataclass
class ConsumptionTotals:
    """Consumed hours of one grant, split by hold state."""

    confirmed: Decimal = Decimal(0)
    held: Decimal = Decimal(0)

    @property
    def total(self) -> Decimal:
        return self.confirmed + self.held


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def add_months(day: date, months: int) -> date:
    """Add calendar months, clipping the day to the target month's length."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, monthrange(year, month)[1]))


def compute_expiry(granted_on: date, expire_months: int) -> date:
    """A grant is usable through the day before its expire_months anniversary."""
    return add_months(granted_on, expire_months) - timedelta(days=1)


def is_grant_expired(grant: LeaveGrant, as_of: date) -> bool:
    """Return True if the grant can no longer be drawn on ``as_of``."""
    return grant.expires_on is not None and grant.expires_on < as_of


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def fifo_sort_key(grant: LeaveGrant) -> tuple[bool, date, date, datetime, str]:
    """Allocation order: soonest expiry first (never-expiring last), then oldest grant."""
    return (
        grant.expires_on is None,
        grant.expires_on or date.max,
        grant.granted_on,
        _aware(grant.created_at),
        str(grant.id),
    )


def sort_fifo(grants: Iterable[LeaveGrant]) -> list[LeaveGrant]:
    """Return grants in FIFO-by-expiry order."""
    return sorted(grants, key=fifo_sort_key)


def accrual_source_ref(leave_type_id: uuid.UUID, user_id: uuid.UUID, granted_on: date) -> str:
    """Idempotency key of the accrual grant for one user, leave type and issue date."""
    return f"accrual:{leave_type_id}:{user_id}:{granted_on.isoformat()}"


# ---------------------------------------------------------------------------
# DB-backed helpers
# ---------------------------------------------------------------------------


async def list_grants(
    session: AsyncSession,
    user_id: uuid.UUID,
    leave_type_id: uuid.UUID | None = None,
) -> list[LeaveGrant]:
    """Return the user's grants in FIFO-by-expiry order."""
    query = select(LeaveGrant).where(col(LeaveGrant.user_id) == user_id)
    if leave_type_id is not None:
        query = query.where(col(LeaveGrant.leave_type_id) == leave_type_id)
    result = await session.execute(
        query.order_by(
            col(LeaveGrant.expires_on).asc().nulls_last(),
            col(LeaveGrant.granted_on),
            col(LeaveGrant.created_at),
            col(LeaveGrant.id),
        )
    )
    return sort_fifo(result.scalars().all())


async def lock_grants(session: AsyncSession, grant_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, LeaveGrant]:
    """SELECT ... FOR UPDATE the given grants in id order and return them by id."""
    ids = sorted(set(grant_ids))
    if not ids:
        return {}
    result = await session.execute(
        select(LeaveGrant)
        .where(col(LeaveGrant.id).in_(ids))
        .order_by(col(LeaveGrant.id))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {grant.id: grant for grant in result.scalars().all()}


async def get_consumption_totals(
    session: AsyncSession,
    grant_ids: Iterable[uuid.UUID],
) -> dict[uuid.UUID, ConsumptionTotals]:
    """Sum consumption per grant, split into confirmed and held hours."""
    ids = list(set(grant_ids))
    totals = {grant_id: ConsumptionTotals() for grant_id in ids}
    if not ids:
        return totals

    result = await session.execute(
        select(
            col(LeaveConsumption.grant_id),
            col(LeaveConsumption.is_hold),
            func.sum(col(LeaveConsumption.quantity)),
        )
        .where(col(LeaveConsumption.grant_id).in_(ids))
        .group_by(col(LeaveConsumption.grant_id), col(LeaveConsumption.is_hold))
    )
    for grant_id, is_hold, quantity in result.all():
        amount = Decimal(quantity or 0)
        if is_hold:
            totals[grant_id].held += amount
        else:
            totals[grant_id].confirmed += amount
    return totals


async def create_manual_grant(
    session: AsyncSession,
    auth: AuthContext,
    payload: ManualGrantRequest,
) -> LeaveGrant:
    """Create an administrative grant with an explicit date and quantity.

    Expiry follows the leave type's policy unless the payload overrides it.
    """
    policy = await get_active_policy(session, payload.leave_type_id, company_id=auth.company_id)
    settings = parse_policy_settings(policy)

    grant = LeaveGrant(
        company_id=auth.company_id,
        user_id=payload.user_id,
        leave_type_id=payload.leave_type_id,
        policy_id=policy.id,
        quantity=payload.quantity_hours,
        granted_on=payload.granted_on,
        expires_on=payload.expires_on or compute_expiry(payload.granted_on, settings.expire_months),
        source=GrantSource.MANUAL.value,
        source_ref=f"manual:{uuid.uuid4()}",
        note=payload.note,
    )
    session.add(grant)
    await session.flush()

    await write_audit_log(
        session,
        company_id=auth.company_id,
        actor_id=auth.user_id,
        action=AuditAction.GRANT_MANUAL,
        target_type=AuditTargetType.LEAVE_GRANT,
        target_id=grant.id,
        after_json=model_to_audit_dict(grant),
    )

    await session.commit()
    return grant
