"""Accrual engine: scheduled issuance of leave grants from company policies."""

from __future__ import annotations

import logging
import uuid
from calendar import monthrange
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from leave_ledger.models.enums import AuditAction, AuditTargetType, GrantSource
from leave_ledger.models.grant import LeaveGrant
from leave_ledger.schemas.policy import (
    AnniversaryPolicySettings,
    FiscalFixedPolicySettings,
    MonthlyPolicySettings,
    PolicySettings,
)
from leave_ledger.services.audit import SYSTEM_ACTOR_ID, model_to_audit_dict, write_audit_log
from leave_ledger.services.calendar import (
    BusinessDayOptions,
    is_business_day_with,
    load_business_day_options,
    previous_business_day,
    today_in_timezone,
)
from leave_ledger.services.employee import get_employee_service
from leave_ledger.services.grant import (
    accrual_source_ref,
    compute_expiry,
    get_consumption_totals,
    is_grant_expired,
    list_grants,
    lock_grants,
    sort_fifo,
)
from leave_ledger.services.policy import list_active_policies, parse_policy_settings

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.models.policy import LeavePolicy
    from leave_ledger.services.employee import EmployeeInfo, EmployeeService

logger = logging.getLogger(__name__)

_HOURS_QUANTUM = Decimal("0.01")


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass
class GrantTargetError:
    """A policy or (policy, employee) pair that failed during a run."""

    company_id: uuid.UUID
    leave_type_id: uuid.UUID
    user_id: uuid.UUID | None
    message: str


@dataclass
class PolicyRunSummary:
    """Counts for one policy within a run."""

    policy_id: uuid.UUID
    company_id: uuid.UUID
    leave_type_id: uuid.UUID
    accrual_method: str
    granted: int = 0
    skipped: int = 0
    not_due: int = 0
    errors: int = 0


@dataclass
class GrantRunResult:
    """Summary of a grant issuance run."""

    as_of: date
    granted: int = 0
    skipped: int = 0
    not_due: int = 0
    errors: list[GrantTargetError] = field(default_factory=list)
    policies: list[PolicyRunSummary] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Pure computation helpers (no DB)
# ---------------------------------------------------------------------------


def _clip_to_month(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, monthrange(year, month)[1]))


def anniversary_in_year(start: date, year: int) -> date:
    """Anniversary of ``start`` in ``year``; Feb 29 falls on Feb 28 in common years."""
    return _clip_to_month(year, start.month, start.day)


def eligibility_start(hire_date: date, offset_days: int = 0) -> date:
    """First day an employee is eligible under the policy."""
    return hire_date + timedelta(days=offset_days)


def completed_service_years(start: date, on: date) -> int:
    """Whole years of service completed from ``start`` through ``on``."""
    if on < start:
        return 0
    years = on.year - start.year
    if on < anniversary_in_year(start, on.year):
        years -= 1
    return max(years, 0)


def lookup_base_days(table: dict[str, Decimal], service_years: int) -> Decimal:
    """Days for the largest service-years key not above ``service_years``."""
    eligible = [int(key) for key in table if int(key) <= service_years]
    if not eligible:
        return Decimal(0)
    return table[str(max(eligible))]


def is_nominal_due_date(settings: PolicySettings, employee: EmployeeInfo, day: date) -> bool:
    """Return True if the policy nominally grants to this employee on ``day``."""
    if employee.hire_date is None:
        return False

    if isinstance(settings, FiscalFixedPolicySettings):
        fiscal_day = _clip_to_month(day.year, settings.fiscal_start_month, settings.fiscal_start_day)
        return day == fiscal_day and employee.hire_date <= day

    start = eligibility_start(employee.hire_date, settings.anniversary_offset_days)
    if day < start:
        return False

    if isinstance(settings, MonthlyPolicySettings):
        return day == _clip_to_month(day.year, day.month, settings.monthly_grant_day)

    return day == anniversary_in_year(start, day.year)


def compute_grant_hours(settings: PolicySettings, employee: EmployeeInfo, day: date) -> Decimal:
    """Hours granted on a nominal due date, prorated and quantized to 0.01h."""
    if employee.hire_date is None:
        return Decimal(0)

    if isinstance(settings, FiscalFixedPolicySettings):
        start = employee.hire_date
    else:
        start = eligibility_start(employee.hire_date, settings.anniversary_offset_days)

    days = lookup_base_days(settings.base_days_by_service, completed_service_years(start, day))
    if isinstance(settings, MonthlyPolicySettings):
        days = days / 12

    hours = days * settings.hours_per_day
    if settings.prorate_parttime:
        hours = hours * employee.work_fraction
    return hours.quantize(_HOURS_QUANTUM, rounding=ROUND_HALF_UP)


def nominal_window(as_of: date, settings: PolicySettings, options: BusinessDayOptions) -> list[date] | None:
    """Nominal dates covered by a run on ``as_of``.

    None means nothing may be issued on ``as_of`` (not a business day).
    With business_day_only the window reaches back to the day after the
    previous business day, so due dates on weekends and holidays roll forward.
    """
    if not settings.business_day_only:
        return [as_of]
    if not is_business_day_with(as_of, options):
        return None
    previous = previous_business_day(as_of, options)
    first = previous + timedelta(days=1) if previous is not None else as_of
    return [first + timedelta(days=offset) for offset in range((as_of - first).days + 1)]


def find_due_date(
    settings: PolicySettings,
    employee: EmployeeInfo,
    as_of: date,
    options: BusinessDayOptions,
) -> date | None:
    """Latest nominal due date settled by a run on ``as_of``, if any."""
    window = nominal_window(as_of, settings, options)
    if not window:
        return None
    due = [day for day in window if is_nominal_due_date(settings, employee, day)]
    return due[-1] if due else None


# ---------------------------------------------------------------------------
# DB-backed helpers
# ---------------------------------------------------------------------------


async def _grant_exists(
    session: AsyncSession,
    user_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    granted_on: date,
) -> bool:
    result = await session.execute(
        select(col(LeaveGrant.id)).where(
            col(LeaveGrant.user_id) == user_id,
            col(LeaveGrant.leave_type_id) == leave_type_id,
            col(LeaveGrant.granted_on) == granted_on,
            col(LeaveGrant.source) == GrantSource.ACCRUAL.value,
        )
    )
    return result.first() is not None


async def forfeit_excess_carryover(
    session: AsyncSession,
    policy: LeavePolicy,
    settings: PolicySettings,
    user_id: uuid.UUID,
    as_of: date,
    *,
    actor_id: uuid.UUID,
) -> Decimal:
    """Forfeit unexpired prior hours above the carry-over cap.

    Hours under hold or confirmed consumption are never forfeited. Excess is
    taken from the soonest-expiring grants first. Returns hours forfeited.
    """
    if settings.carryover_max_days is None:
        return Decimal(0)

    cap = settings.carryover_max_days * settings.hours_per_day
    prior = [
        grant
        for grant in await list_grants(session, user_id, policy.leave_type_id)
        if grant.granted_on < as_of and not is_grant_expired(grant, as_of)
    ]
    locked = await lock_grants(session, [grant.id for grant in prior])
    prior = sort_fifo(locked.values())
    totals = await get_consumption_totals(session, locked.keys())

    remaining = {
        grant.id: max(grant.quantity - grant.forfeited_quantity - totals[grant.id].total, Decimal(0))
        for grant in prior
    }
    excess = sum(remaining.values(), Decimal(0)) - cap
    if excess <= 0:
        return Decimal(0)

    forfeited_total = Decimal(0)
    for grant in prior:
        if excess <= 0:
            break
        take = min(remaining[grant.id], excess)
        if take <= 0:
            continue
        before = model_to_audit_dict(grant)
        grant.forfeited_quantity = grant.forfeited_quantity + take
        excess -= take
        forfeited_total += take
        await session.flush()
        await write_audit_log(
            session,
            company_id=policy.company_id,
            actor_id=actor_id,
            action=AuditAction.GRANT_FORFEITED,
            target_type=AuditTargetType.LEAVE_GRANT,
            target_id=grant.id,
            before_json=before,
            after_json=model_to_audit_dict(grant),
            details_json={"forfeited_hours": take, "cap_hours": cap, "as_of": as_of},
        )
    return forfeited_total


async def _issue_for_employee(
    session: AsyncSession,
    policy: LeavePolicy,
    settings: PolicySettings,
    employee: EmployeeInfo,
    as_of: date,
    options: BusinessDayOptions,
    *,
    actor_id: uuid.UUID,
) -> str:
    """Issue one employee's grant for ``as_of``. Returns granted, skipped or not_due."""
    due_date = find_due_date(settings, employee, as_of, options)
    if due_date is None:
        return "not_due"

    hours = compute_grant_hours(settings, employee, due_date)
    if hours <= 0:
        return "not_due"

    if await _grant_exists(session, employee.id, policy.leave_type_id, as_of):
        return "skipped"

    await forfeit_excess_carryover(session, policy, settings, employee.id, as_of, actor_id=actor_id)

    grant = LeaveGrant(
        company_id=policy.company_id,
        user_id=employee.id,
        leave_type_id=policy.leave_type_id,
        policy_id=policy.id,
        quantity=hours,
        granted_on=as_of,
        expires_on=compute_expiry(as_of, settings.expire_months),
        source=GrantSource.ACCRUAL.value,
        source_ref=accrual_source_ref(policy.leave_type_id, employee.id, as_of),
        note=f"{settings.accrual_method} grant due {due_date.isoformat()}",
    )
    session.add(grant)
    await session.flush()

    await write_audit_log(
        session,
        company_id=policy.company_id,
        actor_id=actor_id,
        action=AuditAction.GRANT_ISSUED,
        target_type=AuditTargetType.LEAVE_GRANT,
        target_id=grant.id,
        after_json=model_to_audit_dict(grant),
        details_json={"due_date": due_date, "accrual_method": settings.accrual_method},
    )
    return "granted"


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


async def issue_grants(
    session: AsyncSession,
    as_of: date | None = None,
    *,
    company_id: uuid.UUID | None = None,
    employee_service: EmployeeService | None = None,
    timezone: str | None = None,
    actor_id: uuid.UUID | None = None,
) -> GrantRunResult:
    """Issue every grant due on ``as_of`` across active policies.

    Idempotent: re-running for the same date reports existing grants as
    skipped. Each (policy, employee) target runs in its own savepoint so a
    failure is logged and collected without aborting the run.

    Args:
        session: Database session; the run is committed at the end.
        as_of: Issue date (defaults to today in the operational timezone).
        company_id: If provided, only process that company's policies.
        employee_service: Employee directory (defaults to the configured one).
        timezone: Timezone used to resolve the default ``as_of``.
        actor_id: Recorded in audit rows; the system actor when omitted.
    """
    as_of = as_of or today_in_timezone(timezone)
    directory = employee_service or get_employee_service()
    actor = actor_id or SYSTEM_ACTOR_ID
    result = GrantRunResult(as_of=as_of)

    # Employees and calendar per company, cached only once both loaded.
    company_context: dict[uuid.UUID, tuple[list[EmployeeInfo], BusinessDayOptions]] = {}

    for policy in await list_active_policies(session, company_id=company_id):
        summary = PolicyRunSummary(
            policy_id=policy.id,
            company_id=policy.company_id,
            leave_type_id=policy.leave_type_id,
            accrual_method=policy.accrual_method,
        )
        result.policies.append(summary)

        try:
            settings = parse_policy_settings(policy)
            if policy.company_id not in company_context:
                async with session.begin_nested():
                    employees = await directory.list_active_employees(policy.company_id)
                    company_options = await load_business_day_options(session, policy.company_id)
                company_context[policy.company_id] = (employees, company_options)
            employees, company_options = company_context[policy.company_id]
            options = company_options.with_blackouts(settings.blackout_dates)
        except Exception as exc:
            logger.exception("Error loading policy=%s company=%s", policy.id, policy.company_id)
            summary.errors += 1
            result.errors.append(
                GrantTargetError(
                    company_id=policy.company_id,
                    leave_type_id=policy.leave_type_id,
                    user_id=None,
                    message=str(exc),
                )
            )
            continue

        for employee in employees:
            try:
                async with session.begin_nested():
                    outcome = await _issue_for_employee(
                        session, policy, settings, employee, as_of, options, actor_id=actor
                    )
            except IntegrityError:
                # A concurrent run issued the same grant first.
                outcome = "skipped"
            except Exception as exc:
                logger.exception(
                    "Error issuing grant for employee=%s policy=%s as_of=%s",
                    employee.id,
                    policy.id,
                    as_of,
                )
                summary.errors += 1
                result.errors.append(
                    GrantTargetError(
                        company_id=policy.company_id,
                        leave_type_id=policy.leave_type_id,
                        user_id=employee.id,
                        message=str(exc),
                    )
                )
                continue

            if outcome == "granted":
                summary.granted += 1
                result.granted += 1
            elif outcome == "skipped":
                summary.skipped += 1
                result.skipped += 1
            else:
                summary.not_due += 1
                result.not_due += 1

    await write_audit_log(
        session,
        company_id=company_id,
        actor_id=actor,
        action=AuditAction.GRANT_ISSUE_JOB,
        details_json={
            "as_of": as_of,
            "granted": result.granted,
            "skipped": result.skipped,
            "not_due": result.not_due,
            "errors": len(result.errors),
            "policies": [
                {
                    "policy_id": s.policy_id,
                    "accrual_method": s.accrual_method,
                    "granted": s.granted,
                    "skipped": s.skipped,
                    "not_due": s.not_due,
                    "errors": s.errors,
                }
                for s in result.policies
            ],
        },
    )
    await session.commit()

    logger.info(
        "Grant run as_of=%s granted=%d skipped=%d not_due=%d errors=%d",
        as_of,
        result.granted,
        result.skipped,
        result.not_due,
        len(result.errors),
    )
    return result
