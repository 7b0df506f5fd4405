# ruff: noqa: TC003
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from leave_ledger.services.calendar import today_in_timezone
from leave_ledger.services.grant import get_consumption_totals, is_grant_expired, list_grants

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.models.grant import LeaveGrant


@dataclass
class LeaveBalance:
    """Derived balance of one leave type for a user, in hours.

    remaining_confirmed and remaining_including_holds reconcile exactly with
    the ledgers: total granted minus confirmed (or all) consumption.
    """

    leave_type_id: uuid.UUID
    granted: Decimal = Decimal(0)
    used: Decimal = Decimal(0)
    held: Decimal = Decimal(0)
    expired: Decimal = Decimal(0)
    forfeited: Decimal = Decimal(0)
    available: Decimal = Decimal(0)

    @property
    def remaining_confirmed(self) -> Decimal:
        return self.granted - self.used

    @property
    def remaining_including_holds(self) -> Decimal:
        return self.granted - self.used - self.held


@dataclass
class GrantWithRemaining:
    """A grant together with its remaining hours under both views."""

    grant: LeaveGrant
    remaining_confirmed: Decimal
    remaining_including_holds: Decimal
    is_expired: bool


async def list_grants_with_remaining(
    session: AsyncSession,
    user_id: uuid.UUID,
    leave_type_id: uuid.UUID | None = None,
    *,
    as_of: date | None = None,
) -> list[GrantWithRemaining]:
    """Return the user's grants in FIFO-by-expiry order with remaining hours."""
    as_of = as_of or today_in_timezone()
    grants = await list_grants(session, user_id, leave_type_id)
    totals = await get_consumption_totals(session, [grant.id for grant in grants])
    return [
        GrantWithRemaining(
            grant=grant,
            remaining_confirmed=grant.quantity - totals[grant.id].confirmed,
            remaining_including_holds=grant.quantity - totals[grant.id].total,
            is_expired=is_grant_expired(grant, as_of),
        )
        for grant in grants
    ]


async def get_balance(
    session: AsyncSession,
    user_id: uuid.UUID,
    leave_type_id: uuid.UUID | None = None,
    *,
    as_of: date | None = None,
) -> list[LeaveBalance]:
    """Recompute the user's balances from the grant and consumption ledgers.

    Returns one LeaveBalance per leave type the user holds grants for (or
    exactly one when leave_type_id is given).
    """
    as_of = as_of or today_in_timezone()
    balances: dict[uuid.UUID, LeaveBalance] = {}
    if leave_type_id is not None:
        balances[leave_type_id] = LeaveBalance(leave_type_id=leave_type_id)

    for item in await list_grants_with_remaining(session, user_id, leave_type_id, as_of=as_of):
        grant = item.grant
        balance = balances.setdefault(grant.leave_type_id, LeaveBalance(leave_type_id=grant.leave_type_id))
        balance.granted += grant.quantity
        balance.used += grant.quantity - item.remaining_confirmed
        balance.held += item.remaining_confirmed - item.remaining_including_holds
        balance.forfeited += grant.forfeited_quantity

        usable = item.remaining_including_holds - grant.forfeited_quantity
        if item.is_expired:
            balance.expired += max(usable, Decimal(0))
        else:
            balance.available += usable

    return sorted(balances.values(), key=lambda b: str(b.leave_type_id))
