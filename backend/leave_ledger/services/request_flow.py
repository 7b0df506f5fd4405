# ruff: noqa: TC003
"""Leave request flow: turn request detail lines into ledger needs and drive decisions."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from leave_ledger.exceptions import InvalidLedgerStateError, NonBusinessDayError, ZeroDurationLineError
from leave_ledger.models.enums import AuditAction, AuditTargetType, DecisionAction, FootprintState, LeaveUnit
from leave_ledger.schemas.allocation import AllocationNeed
from leave_ledger.services.allocation import (
    apply_allocation,
    apply_confirm,
    apply_release,
    apply_reverse,
    get_request_footprint,
    run_ledger_operation,
)
from leave_ledger.services.audit import SYSTEM_ACTOR_ID, write_audit_log
from leave_ledger.services.calendar import (
    BusinessDayOptions,
    expand_range_to_business_dates,
    is_business_day_with,
    load_business_day_options,
)
from leave_ledger.services.policy import find_policy, get_active_policy, parse_policy_settings
from leave_ledger.services.rounding import rounded_line_hours

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.schemas.policy import PolicySettings
    from leave_ledger.schemas.request import LeaveRequestDetail, SubmitLeaveRequestPayload

_DECISION_AUDIT = {
    DecisionAction.APPROVE: AuditAction.REQUEST_APPROVED,
    DecisionAction.REJECT: AuditAction.REQUEST_REJECTED,
    DecisionAction.CANCEL: AuditAction.REQUEST_CANCELED,
}


@dataclass
class SubmissionOutcome:
    """Ledger state of a request right after submission."""

    request_id: uuid.UUID
    state: FootprintState
    needs: list[AllocationNeed] = field(default_factory=list)

    @property
    def total_hours(self) -> Decimal:
        return sum((need.hours for need in self.needs), Decimal(0))


@dataclass
class DecisionOutcome:
    """Ledger transition caused by a decision."""

    request_id: uuid.UUID
    action: DecisionAction
    from_state: FootprintState
    to_state: FootprintState
    hours: Decimal


# ---------------------------------------------------------------------------
# Detail lines to needs
# ---------------------------------------------------------------------------


def _local(moment: datetime, tz: ZoneInfo) -> datetime:
    return moment.astimezone(tz) if moment.tzinfo is not None else moment


def _line_dates(line: LeaveRequestDetail, tz: ZoneInfo) -> tuple[date, date]:
    """Calendar dates spanned by a line; an end at local midnight is exclusive."""
    start = _local(line.start_at, tz)
    end = _local(line.end_at, tz)
    last = end.date()
    if end.time() == time(0) and last > start.date():
        last -= timedelta(days=1)
    return start.date(), last


def build_needs(
    details: Sequence[LeaveRequestDetail],
    policy_settings: PolicySettings,
    options: BusinessDayOptions,
) -> list[AllocationNeed]:
    """Validate detail lines and aggregate their rounded hours per date.

    Multi-day ``day`` lines are spread over the business days in range in
    chunks of hours_per_day; any remainder lands on the last day.
    """
    settings = policy_settings
    calendar = options.with_blackouts(settings.blackout_dates)
    tz = ZoneInfo(options.timezone)
    per_date: dict[date, Decimal] = {}

    for index, line in enumerate(details):
        if line.end_at <= line.start_at:
            raise ZeroDurationLineError(f"Line {index} must start before it ends", line_index=index)
    line_hours = rounded_line_hours(
        [(line.unit, line.quantity) for line in details], settings.min_unit, settings.hours_per_day
    )

    for index, (line, hours) in enumerate(zip(details, line_hours, strict=True)):
        first, last = _line_dates(line, tz)

        if LeaveUnit(line.unit) == LeaveUnit.DAY and last > first:
            if settings.business_day_only:
                days = [date.fromisoformat(d) for d in expand_range_to_business_dates(first, last, calendar)]
            else:
                days = [first + timedelta(days=offset) for offset in range((last - first).days + 1)]
            if not days:
                raise NonBusinessDayError(f"Line {index} has no business days between {first} and {last}")

            remaining = hours
            for day in days:
                chunk = min(settings.hours_per_day, remaining)
                if chunk <= 0:
                    break
                per_date[day] = per_date.get(day, Decimal(0)) + chunk
                remaining -= chunk
            if remaining > 0:
                per_date[days[-1]] += remaining
            continue

        if settings.business_day_only and not is_business_day_with(first, calendar):
            raise NonBusinessDayError(f"Line {index} falls on non-business day {first.isoformat()}")
        per_date[first] = per_date.get(first, Decimal(0)) + hours

    return [AllocationNeed(date=day, hours=per_date[day]) for day in sorted(per_date)]


# ---------------------------------------------------------------------------
# Submission and decisions
# ---------------------------------------------------------------------------


async def submit_leave_request(
    session: AsyncSession,
    company_id: uuid.UUID,
    payload: SubmitLeaveRequestPayload,
    *,
    actor_id: uuid.UUID | None = None,
) -> SubmissionOutcome:
    """Validate a request's lines and book them on the ledger.

    Flow:
    1. Resolve the leave type's active policy and the company calendar.
    2. Build per-date needs (all validation happens here, before any write).
    3. Allocate as a hold when the policy holds on apply, else confirmed.
    """
    policy = await get_active_policy(session, payload.leave_type_id, company_id=company_id)
    settings = parse_policy_settings(policy)
    options = await load_business_day_options(session, company_id)
    needs = build_needs(payload.details, settings, options)
    is_hold = settings.hold_on_apply

    async def _submit() -> SubmissionOutcome:
        await apply_allocation(
            session,
            payload.user_id,
            payload.leave_type_id,
            payload.request_id,
            needs,
            is_hold,
            payload.manual_grant_ids,
            company_id=company_id,
            actor_id=actor_id,
        )
        await write_audit_log(
            session,
            company_id=company_id,
            actor_id=actor_id or SYSTEM_ACTOR_ID,
            action=AuditAction.REQUEST_SUBMITTED,
            target_type=AuditTargetType.REQUEST,
            target_id=payload.request_id,
            details_json={
                "user_id": payload.user_id,
                "leave_type_id": payload.leave_type_id,
                "hold": is_hold,
                "needs": [{"date": n.date, "hours": n.hours} for n in needs],
            },
        )
        return SubmissionOutcome(
            request_id=payload.request_id,
            state=FootprintState.HOLD if is_hold else FootprintState.CONFIRMED,
            needs=needs,
        )

    return await run_ledger_operation(
        session,
        _submit,
        action=AuditAction.REQUEST_SUBMITTED,
        company_id=company_id,
        actor_id=actor_id,
        target_type=AuditTargetType.REQUEST,
        target_id=payload.request_id,
    )


async def decide_leave_request(
    session: AsyncSession,
    company_id: uuid.UUID,
    request_id: uuid.UUID,
    action: DecisionAction,
    *,
    note: str | None = None,
    actor_id: uuid.UUID | None = None,
) -> DecisionOutcome:
    """Apply a decision to a request's ledger footprint.

    approve confirms held rows, reject releases them, cancel reverses a
    confirmed request (or releases one still on hold). When the policy
    deducts on apply (no hold), approve leaves the confirmed rows as they
    are and reject reverses them.
    """

    async def _decide() -> DecisionOutcome:
        footprint = await get_request_footprint(session, request_id, company_id=company_id)
        if footprint.state == FootprintState.NONE:
            raise InvalidLedgerStateError(f"Request {request_id} has no ledger rows")

        sample = footprint.rows[0]
        policy = await find_policy(session, sample.leave_type_id, company_id=company_id)
        held_on_apply = policy is None or parse_policy_settings(policy).hold_on_apply
        confirmed_directly = footprint.state == FootprintState.CONFIRMED and not held_on_apply

        if action == DecisionAction.APPROVE and confirmed_directly:
            transition_from = transition_to = FootprintState.CONFIRMED
            hours = footprint.total_hours
        else:
            if action == DecisionAction.APPROVE:
                transition = await apply_confirm(session, request_id, company_id=company_id, actor_id=actor_id)
            elif footprint.state == FootprintState.HOLD:
                transition = await apply_release(session, request_id, company_id=company_id, actor_id=actor_id)
            elif action == DecisionAction.REJECT and not confirmed_directly:
                raise InvalidLedgerStateError(f"Request {request_id} is already approved; cancel it instead")
            else:
                transition = await apply_reverse(session, request_id, note, company_id=company_id, actor_id=actor_id)
            transition_from, transition_to, hours = transition.from_state, transition.to_state, transition.hours

        await write_audit_log(
            session,
            company_id=company_id,
            actor_id=actor_id or SYSTEM_ACTOR_ID,
            action=_DECISION_AUDIT[action],
            target_type=AuditTargetType.REQUEST,
            target_id=request_id,
            details_json={"from": transition_from, "to": transition_to, "hours": hours, "note": note},
        )
        return DecisionOutcome(
            request_id=request_id,
            action=action,
            from_state=transition_from,
            to_state=transition_to,
            hours=hours,
        )

    return await run_ledger_operation(
        session,
        _decide,
        action=_DECISION_AUDIT[action],
        company_id=company_id,
        actor_id=actor_id,
        target_type=AuditTargetType.REQUEST,
        target_id=request_id,
    )
