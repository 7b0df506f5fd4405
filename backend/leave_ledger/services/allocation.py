# ruff: noqa: TC003
"""Allocation of leave hours against grants, and the hold/confirm/release/reverse lifecycle.

Flow of a single allocation:
1. Resolve the leave type's policy (deduction timing, negative balances).
2. Pick candidate grants: the caller's manual list or every grant in
   FIFO-by-expiry order.
3. Lock the candidate grant rows (SELECT ... FOR UPDATE, id order).
4. Read consumption totals and walk the needs date by date.
5. Persist one consumption row per (grant, date) and audit.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError
from sqlmodel import col

from leave_ledger.exceptions import (
    AppError,
    GrantExpiredError,
    InsufficientBalanceError,
    InvalidLedgerStateError,
    ZeroDurationLineError,
    concurrency_conflict_from,
)
from leave_ledger.models.consumption import LeaveConsumption
from leave_ledger.models.enums import (
    AuditAction,
    AuditTargetType,
    DeductionTiming,
    FootprintState,
    GrantSource,
)
from leave_ledger.models.grant import LeaveGrant
from leave_ledger.services.audit import SYSTEM_ACTOR_ID, model_to_audit_dict, write_audit_log, write_failure_audit
from leave_ledger.services.grant import (
    get_consumption_totals,
    is_grant_expired,
    list_grants,
    lock_grants,
    sort_fifo,
)
from leave_ledger.services.policy import find_policy, get_active_policy, parse_policy_settings
from leave_ledger.services.rounding import quantize_hours

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.schemas.allocation import AllocationNeed

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass
class AllocationResult:
    """Consumption rows written by one allocation."""

    request_id: uuid.UUID
    is_hold: bool
    rows: list[LeaveConsumption] = field(default_factory=list)

    @property
    def total_hours(self) -> Decimal:
        return sum((row.quantity for row in self.rows), Decimal(0))


@dataclass
class LedgerTransition:
    """Outcome of confirm, release or reverse."""

    request_id: uuid.UUID
    from_state: FootprintState
    to_state: FootprintState
    affected_rows: int
    hours: Decimal


@dataclass
class RequestFootprint:
    """Consumption rows of one request and the state they put it in."""

    request_id: uuid.UUID
    state: FootprintState
    rows: list[LeaveConsumption] = field(default_factory=list)

    @property
    def total_hours(self) -> Decimal:
        return sum((row.quantity for row in self.rows), Decimal(0))


@dataclass
class _PlannedRow:
    grant: LeaveGrant
    consumed_on: date
    quantity: Decimal


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def footprint_state(rows: Sequence[LeaveConsumption]) -> FootprintState:
    """Classify a request's rows; a mix of hold and confirmed rows is corrupt."""
    if not rows:
        return FootprintState.NONE
    holds = {row.is_hold for row in rows}
    if holds == {True}:
        return FootprintState.HOLD
    if holds == {False}:
        return FootprintState.CONFIRMED
    raise InvalidLedgerStateError("Request has both hold and confirmed consumption rows")


def _is_eligible(grant: LeaveGrant, on: date, allow_expired: bool) -> bool:
    return allow_expired or not is_grant_expired(grant, on)


def plan_allocation(
    candidates: Sequence[LeaveGrant],
    available: dict[uuid.UUID, Decimal],
    needs: Sequence[AllocationNeed],
    *,
    allow_expired: bool = False,
) -> tuple[list[_PlannedRow], list[tuple[date, Decimal]]]:
    """Walk the needs in date order against candidates, consuming up to availability.

    Returns the planned rows and any per-date shortfall left uncovered.
    ``available`` is updated in place.
    """
    planned: dict[tuple[uuid.UUID, date], _PlannedRow] = {}
    shortfalls: list[tuple[date, Decimal]] = []

    for need in sorted(needs, key=lambda n: n.date):
        remaining = need.hours
        for grant in candidates:
            if remaining <= 0:
                break
            if not _is_eligible(grant, need.date, allow_expired):
                continue
            take = min(available[grant.id], remaining)
            if take <= 0:
                continue
            key = (grant.id, need.date)
            if key in planned:
                planned[key].quantity += take
            else:
                planned[key] = _PlannedRow(grant=grant, consumed_on=need.date, quantity=take)
            available[grant.id] -= take
            remaining -= take
        if remaining > 0:
            shortfalls.append((need.date, remaining))

    return list(planned.values()), shortfalls


# ---------------------------------------------------------------------------
# DB-backed helpers
# ---------------------------------------------------------------------------


async def _load_request_rows(
    session: AsyncSession,
    request_id: uuid.UUID,
    *,
    company_id: uuid.UUID | None = None,
    for_update: bool = False,
) -> list[LeaveConsumption]:
    query = (
        select(LeaveConsumption)
        .where(col(LeaveConsumption.request_id) == request_id)
        .order_by(col(LeaveConsumption.consumed_on), col(LeaveConsumption.id))
    )
    if company_id is not None:
        query = query.where(col(LeaveConsumption.company_id) == company_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(query)
    return list(result.scalars().all())


async def _load_manual_candidates(
    session: AsyncSession,
    user_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    manual_grant_ids: Sequence[uuid.UUID],
) -> list[LeaveGrant]:
    if len(set(manual_grant_ids)) != len(manual_grant_ids):
        raise InvalidLedgerStateError("manual_grant_ids contains duplicates")

    result = await session.execute(select(LeaveGrant).where(col(LeaveGrant.id).in_(list(manual_grant_ids))))
    by_id = {grant.id: grant for grant in result.scalars().all()}

    candidates: list[LeaveGrant] = []
    for grant_id in manual_grant_ids:
        grant = by_id.get(grant_id)
        if grant is None or grant.user_id != user_id or grant.leave_type_id != leave_type_id:
            raise InvalidLedgerStateError(f"Grant {grant_id} does not belong to this user and leave type")
        candidates.append(grant)
    return candidates


async def _get_or_create_negative_carrier(
    session: AsyncSession,
    *,
    company_id: uuid.UUID,
    user_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    policy_id: uuid.UUID | None,
    request_id: uuid.UUID,
    granted_on: date,
) -> LeaveGrant:
    """Return the zero-quantity grant that carries a request's negative balance."""
    source_ref = f"negative:{request_id}"
    result = await session.execute(
        select(LeaveGrant).where(
            col(LeaveGrant.source) == GrantSource.NEGATIVE.value,
            col(LeaveGrant.source_ref) == source_ref,
        )
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        return existing

    grant = LeaveGrant(
        company_id=company_id,
        user_id=user_id,
        leave_type_id=leave_type_id,
        policy_id=policy_id,
        quantity=Decimal(0),
        granted_on=granted_on,
        expires_on=None,
        source=GrantSource.NEGATIVE.value,
        source_ref=source_ref,
        note="Negative balance carrier",
    )
    session.add(grant)
    await session.flush()
    return grant


def request_lock_key(request_id: uuid.UUID) -> int:
    """Signed 64-bit advisory lock key for a request id."""
    return int.from_bytes(request_id.bytes[:8], "big", signed=True)


async def _lock_request(session: AsyncSession, request_id: uuid.UUID) -> None:
    """Serialize ledger writes for one request id until the transaction ends.

    A request with no rows yet has nothing for FOR UPDATE to lock, so
    PostgreSQL takes a transaction-scoped advisory lock instead. SQLite
    allows a single writer and needs none.
    """
    if session.get_bind().dialect.name == "postgresql":
        await session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": request_lock_key(request_id)})


def _rows_audit(rows: Sequence[LeaveConsumption]) -> dict[str, Any]:
    return {"rows": [model_to_audit_dict(row) for row in rows]}


async def run_ledger_operation(
    session: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    action: str,
    company_id: uuid.UUID | None,
    actor_id: uuid.UUID | None,
    target_type: AuditTargetType,
    target_id: uuid.UUID | str | None,
    details: dict[str, Any] | None = None,
) -> T:
    """Run a ledger write as one transaction.

    On a domain or concurrency error the transaction is rolled back and a
    ``<action>_failed`` audit row is committed before the error propagates.
    """
    try:
        result = await operation()
        await session.commit()
    except AppError as exc:
        await session.rollback()
        await write_failure_audit(
            session,
            company_id=company_id,
            actor_id=actor_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            error=exc,
            details_json=details,
        )
        raise
    except DBAPIError as exc:
        await session.rollback()
        conflict = concurrency_conflict_from(exc)
        if conflict is None:
            raise
        logger.warning("Concurrency conflict during %s on %s: %s", action, target_id, exc)
        await write_failure_audit(
            session,
            company_id=company_id,
            actor_id=actor_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            error=conflict,
            details_json=details,
        )
        raise conflict from exc
    return result


# ---------------------------------------------------------------------------
# Ledger operations (caller commits)
# ---------------------------------------------------------------------------


async def apply_allocation(
    session: AsyncSession,
    user_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    request_id: uuid.UUID,
    needs: Sequence[AllocationNeed],
    is_hold: bool,
    manual_grant_ids: Sequence[uuid.UUID] | None = None,
    *,
    company_id: uuid.UUID | None = None,
    allow_expired: bool = False,
    actor_id: uuid.UUID | None = None,
) -> AllocationResult:
    """Allocate ``needs`` against the user's grants without committing."""
    if not needs:
        raise ZeroDurationLineError("Allocation needs at least one line")
    # Hours are stored to four places; anything that rounds away is empty.
    needs = [need.model_copy(update={"hours": quantize_hours(need.hours)}) for need in needs]
    for index, need in enumerate(needs):
        if need.hours <= 0:
            raise ZeroDurationLineError(f"Line {index} has no hours", line_index=index)

    await _lock_request(session, request_id)
    existing = await _load_request_rows(session, request_id, for_update=True)
    if existing:
        raise InvalidLedgerStateError(f"Request {request_id} already has ledger rows")

    policy = await get_active_policy(session, leave_type_id, company_id=company_id)
    settings = parse_policy_settings(policy)
    first_day = min(need.date for need in needs)

    if manual_grant_ids:
        candidates = await _load_manual_candidates(session, user_id, leave_type_id, manual_grant_ids)
        if not allow_expired:
            for grant in candidates:
                if is_grant_expired(grant, first_day):
                    raise GrantExpiredError(f"Grant {grant.id} expired on {grant.expires_on}")
    else:
        candidates = [
            grant
            for grant in await list_grants(session, user_id, leave_type_id)
            if not is_grant_expired(grant, first_day)
        ]

    locked = await lock_grants(session, [grant.id for grant in candidates])
    candidates = [locked[grant.id] for grant in candidates if grant.id in locked]
    if not manual_grant_ids:
        candidates = sort_fifo(candidates)

    totals = await get_consumption_totals(session, locked.keys())
    counts_holds = settings.deduction_timing == DeductionTiming.APPLY
    available: dict[uuid.UUID, Decimal] = {}
    for grant in candidates:
        consumed = totals[grant.id].total if counts_holds else totals[grant.id].confirmed
        available[grant.id] = grant.quantity - grant.forfeited_quantity - consumed

    planned, shortfalls = plan_allocation(candidates, available, needs, allow_expired=allow_expired)

    if shortfalls:
        missing = sum((hours for _, hours in shortfalls), Decimal(0))
        if not settings.allow_negative:
            raise InsufficientBalanceError(f"Insufficient leave balance: short by {missing} hours")
        negative_grant: LeaveGrant | None = None
        for need_date, hours in shortfalls:
            carrier = next(
                (g for g in reversed(candidates) if _is_eligible(g, need_date, allow_expired)),
                None,
            )
            if carrier is None:
                if negative_grant is None:
                    negative_grant = await _get_or_create_negative_carrier(
                        session,
                        company_id=policy.company_id,
                        user_id=user_id,
                        leave_type_id=leave_type_id,
                        policy_id=policy.id,
                        request_id=request_id,
                        granted_on=first_day,
                    )
                carrier = negative_grant
            match = next((p for p in planned if p.grant.id == carrier.id and p.consumed_on == need_date), None)
            if match is not None:
                match.quantity += hours
            else:
                planned.append(_PlannedRow(grant=carrier, consumed_on=need_date, quantity=hours))
        logger.info("Booked %s negative hours for request=%s user=%s", missing, request_id, user_id)

    rows = [
        LeaveConsumption(
            grant_id=item.grant.id,
            request_id=request_id,
            company_id=policy.company_id,
            user_id=user_id,
            leave_type_id=leave_type_id,
            quantity=item.quantity,
            is_hold=is_hold,
            consumed_on=item.consumed_on,
        )
        for item in planned
    ]
    session.add_all(rows)
    await session.flush()

    await write_audit_log(
        session,
        company_id=policy.company_id,
        actor_id=actor_id or SYSTEM_ACTOR_ID,
        action=AuditAction.ALLOCATE_HOLD if is_hold else AuditAction.ALLOCATE_CONFIRM,
        target_type=AuditTargetType.REQUEST,
        target_id=request_id,
        after_json=_rows_audit(rows),
        details_json={
            "user_id": user_id,
            "leave_type_id": leave_type_id,
            "needs": [{"date": n.date, "hours": n.hours} for n in needs],
            "manual_grant_ids": list(manual_grant_ids or []),
            "allow_expired": allow_expired,
        },
    )

    return AllocationResult(request_id=request_id, is_hold=is_hold, rows=rows)


async def _recheck_confirmed_totals(session: AsyncSession, rows: Sequence[LeaveConsumption]) -> None:
    """Ensure confirming these hold rows cannot push any grant past its quantity."""
    sample = rows[0]
    policy = await find_policy(session, sample.leave_type_id, company_id=sample.company_id)
    if policy is not None:
        settings = parse_policy_settings(policy)
        if settings.allow_negative or settings.deduction_timing != DeductionTiming.APPROVE:
            return

    locked = await lock_grants(session, [row.grant_id for row in rows])
    totals = await get_consumption_totals(session, locked.keys())
    incoming: dict[uuid.UUID, Decimal] = {}
    for row in rows:
        incoming[row.grant_id] = incoming.get(row.grant_id, Decimal(0)) + row.quantity

    for grant_id, hours in incoming.items():
        grant = locked[grant_id]
        if totals[grant_id].confirmed + hours > grant.quantity - grant.forfeited_quantity:
            raise InsufficientBalanceError(f"Grant {grant_id} no longer covers {hours} hours")


async def apply_confirm(
    session: AsyncSession,
    request_id: uuid.UUID,
    *,
    company_id: uuid.UUID | None = None,
    actor_id: uuid.UUID | None = None,
) -> LedgerTransition:
    """Turn a request's hold rows into confirmed consumption without committing."""
    rows = await _load_request_rows(session, request_id, company_id=company_id, for_update=True)
    state = footprint_state(rows)
    if state != FootprintState.HOLD:
        raise InvalidLedgerStateError(f"Cannot confirm request {request_id} in state {state}")

    await _recheck_confirmed_totals(session, rows)

    before = _rows_audit(rows)
    for row in rows:
        row.is_hold = False
    await session.flush()

    transition = LedgerTransition(
        request_id=request_id,
        from_state=FootprintState.HOLD,
        to_state=FootprintState.CONFIRMED,
        affected_rows=len(rows),
        hours=sum((row.quantity for row in rows), Decimal(0)),
    )
    await write_audit_log(
        session,
        company_id=rows[0].company_id,
        actor_id=actor_id or SYSTEM_ACTOR_ID,
        action=AuditAction.CONFIRM,
        target_type=AuditTargetType.REQUEST,
        target_id=request_id,
        before_json=before,
        after_json=_rows_audit(rows),
    )
    return transition


async def _delete_rows(
    session: AsyncSession,
    request_id: uuid.UUID,
    *,
    company_id: uuid.UUID | None,
    expected: FootprintState,
    action: AuditAction,
    actor_id: uuid.UUID | None,
    reason: str | None = None,
) -> LedgerTransition:
    rows = await _load_request_rows(session, request_id, company_id=company_id, for_update=True)
    state = footprint_state(rows)
    if state != expected:
        verb = "release" if expected == FootprintState.HOLD else "reverse"
        raise InvalidLedgerStateError(f"Cannot {verb} request {request_id} in state {state}")

    before = _rows_audit(rows)
    owner_company_id = rows[0].company_id
    hours = sum((row.quantity for row in rows), Decimal(0))
    for row in rows:
        await session.delete(row)
    await session.flush()

    await write_audit_log(
        session,
        company_id=owner_company_id,
        actor_id=actor_id or SYSTEM_ACTOR_ID,
        action=action,
        target_type=AuditTargetType.REQUEST,
        target_id=request_id,
        before_json=before,
        details_json={"reason": reason} if reason else None,
    )
    return LedgerTransition(
        request_id=request_id,
        from_state=expected,
        to_state=FootprintState.NONE,
        affected_rows=len(rows),
        hours=hours,
    )


async def apply_release(
    session: AsyncSession,
    request_id: uuid.UUID,
    *,
    company_id: uuid.UUID | None = None,
    actor_id: uuid.UUID | None = None,
) -> LedgerTransition:
    """Delete a request's hold rows without committing."""
    return await _delete_rows(
        session,
        request_id,
        company_id=company_id,
        expected=FootprintState.HOLD,
        action=AuditAction.RELEASE,
        actor_id=actor_id,
    )


async def apply_reverse(
    session: AsyncSession,
    request_id: uuid.UUID,
    reason: str | None = None,
    *,
    company_id: uuid.UUID | None = None,
    actor_id: uuid.UUID | None = None,
) -> LedgerTransition:
    """Delete a request's confirmed rows without committing."""
    return await _delete_rows(
        session,
        request_id,
        company_id=company_id,
        expected=FootprintState.CONFIRMED,
        action=AuditAction.REVERSE,
        actor_id=actor_id,
        reason=reason,
    )


# ---------------------------------------------------------------------------
# Transactional entry points
# ---------------------------------------------------------------------------


async def allocate(
    session: AsyncSession,
    user_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    request_id: uuid.UUID,
    needs: Sequence[AllocationNeed],
    is_hold: bool,
    manual_grant_ids: Sequence[uuid.UUID] | None = None,
    *,
    company_id: uuid.UUID | None = None,
    allow_expired: bool = False,
    actor_id: uuid.UUID | None = None,
) -> AllocationResult:
    """Allocate hours against grants and commit; nothing is written on failure."""
    return await run_ledger_operation(
        session,
        lambda: apply_allocation(
            session,
            user_id,
            leave_type_id,
            request_id,
            needs,
            is_hold,
            manual_grant_ids,
            company_id=company_id,
            allow_expired=allow_expired,
            actor_id=actor_id,
        ),
        action=AuditAction.ALLOCATE_HOLD if is_hold else AuditAction.ALLOCATE_CONFIRM,
        company_id=company_id,
        actor_id=actor_id,
        target_type=AuditTargetType.REQUEST,
        target_id=request_id,
        details={"user_id": user_id, "leave_type_id": leave_type_id},
    )


async def confirm(
    session: AsyncSession,
    request_id: uuid.UUID,
    *,
    company_id: uuid.UUID | None = None,
    actor_id: uuid.UUID | None = None,
) -> LedgerTransition:
    """Confirm a held request and commit."""
    return await run_ledger_operation(
        session,
        lambda: apply_confirm(session, request_id, company_id=company_id, actor_id=actor_id),
        action=AuditAction.CONFIRM,
        company_id=company_id,
        actor_id=actor_id,
        target_type=AuditTargetType.REQUEST,
        target_id=request_id,
    )


async def release(
    session: AsyncSession,
    request_id: uuid.UUID,
    *,
    company_id: uuid.UUID | None = None,
    actor_id: uuid.UUID | None = None,
) -> LedgerTransition:
    """Release a held request and commit."""
    return await run_ledger_operation(
        session,
        lambda: apply_release(session, request_id, company_id=company_id, actor_id=actor_id),
        action=AuditAction.RELEASE,
        company_id=company_id,
        actor_id=actor_id,
        target_type=AuditTargetType.REQUEST,
        target_id=request_id,
    )


async def reverse(
    session: AsyncSession,
    request_id: uuid.UUID,
    reason: str | None = None,
    *,
    company_id: uuid.UUID | None = None,
    actor_id: uuid.UUID | None = None,
) -> LedgerTransition:
    """Reverse a confirmed request and commit."""
    return await run_ledger_operation(
        session,
        lambda: apply_reverse(session, request_id, reason, company_id=company_id, actor_id=actor_id),
        action=AuditAction.REVERSE,
        company_id=company_id,
        actor_id=actor_id,
        target_type=AuditTargetType.REQUEST,
        target_id=request_id,
        details={"reason": reason} if reason else None,
    )


async def get_request_footprint(
    session: AsyncSession,
    request_id: uuid.UUID,
    *,
    company_id: uuid.UUID | None = None,
) -> RequestFootprint:
    """Report a request's ledger state and rows."""
    rows = await _load_request_rows(session, request_id, company_id=company_id)
    return RequestFootprint(request_id=request_id, state=footprint_state(rows), rows=rows)
