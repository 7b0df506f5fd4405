"""Tests for allocation against grants and the hold/confirm/release/reverse lifecycle."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import select
from sqlmodel import col

from leave_ledger.exceptions import (
    GrantExpiredError,
    InsufficientBalanceError,
    InvalidLedgerStateError,
    PolicyNotFoundError,
    ZeroDurationLineError,
)
from leave_ledger.models.audit import AuditLog
from leave_ledger.models.consumption import LeaveConsumption
from leave_ledger.models.enums import DeductionTiming, FootprintState, GrantSource
from leave_ledger.models.grant import LeaveGrant
from leave_ledger.schemas.allocation import AllocationNeed
from leave_ledger.schemas.auth import AuthContext
from leave_ledger.schemas.policy import AnniversaryPolicySettings, UpsertPolicyRequest
from leave_ledger.services.allocation import (
    allocate,
    confirm,
    footprint_state,
    get_request_footprint,
    plan_allocation,
    release,
    reverse,
)
from leave_ledger.services.balance import get_balance
from leave_ledger.services.grant import sort_fifo
from leave_ledger.services.policy import upsert_policy

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

COMPANY_ID = uuid.uuid4()
ADMIN_ID = uuid.uuid4()
USER_ID = uuid.uuid4()
LEAVE_TYPE_ID = uuid.uuid4()

ADMIN = AuthContext(company_id=COMPANY_ID, user_id=ADMIN_ID, role="admin")

AS_OF = date(2025, 1, 10)


def _need(hours: int | str, day: date = AS_OF) -> AllocationNeed:
    return AllocationNeed(date=day, hours=Decimal(hours))


async def _create_policy(session: AsyncSession, **overrides: object) -> None:
    values: dict = {"base_days_by_service": {"0": Decimal(10)}}
    values.update(overrides)
    await upsert_policy(
        session,
        ADMIN,
        LEAVE_TYPE_ID,
        UpsertPolicyRequest(settings=AnniversaryPolicySettings(**values)),
    )


async def _add_grant(
    session: AsyncSession,
    quantity: int | str,
    *,
    expires_on: date | None = date(2026, 12, 31),
    granted_on: date = date(2024, 1, 1),
    user_id: uuid.UUID = USER_ID,
) -> uuid.UUID:
    """Insert a manual grant directly and return its id."""
    grant = LeaveGrant(
        company_id=COMPANY_ID,
        user_id=user_id,
        leave_type_id=LEAVE_TYPE_ID,
        quantity=Decimal(quantity),
        granted_on=granted_on,
        expires_on=expires_on,
        source=GrantSource.MANUAL.value,
        source_ref=f"manual:{uuid.uuid4()}",
    )
    session.add(grant)
    await session.commit()
    return grant.id


async def _rows_by_grant(session: AsyncSession, request_id: uuid.UUID) -> dict[uuid.UUID, Decimal]:
    footprint = await get_request_footprint(session, request_id)
    totals: dict[uuid.UUID, Decimal] = {}
    for row in footprint.rows:
        totals[row.grant_id] = totals.get(row.grant_id, Decimal(0)) + row.quantity
    return totals


async def _balance(session: AsyncSession) -> tuple[Decimal, Decimal]:
    [balance] = await get_balance(session, USER_ID, LEAVE_TYPE_ID, as_of=AS_OF)
    return balance.remaining_confirmed, balance.remaining_including_holds


async def _count_rows(session: AsyncSession) -> int:
    result = await session.execute(select(LeaveConsumption))
    return len(result.scalars().all())


# ===========================================================================
# Pure helpers
# ===========================================================================


def _grant(quantity: int, expires_on: date | None, granted_on: date = date(2024, 1, 1)) -> LeaveGrant:
    return LeaveGrant(
        company_id=COMPANY_ID,
        user_id=USER_ID,
        leave_type_id=LEAVE_TYPE_ID,
        quantity=Decimal(quantity),
        granted_on=granted_on,
        expires_on=expires_on,
        source=GrantSource.MANUAL.value,
        source_ref=str(uuid.uuid4()),
    )


def _consumption(*, is_hold: bool) -> LeaveConsumption:
    return LeaveConsumption(
        grant_id=uuid.uuid4(),
        request_id=uuid.uuid4(),
        company_id=COMPANY_ID,
        user_id=USER_ID,
        leave_type_id=LEAVE_TYPE_ID,
        quantity=Decimal(1),
        is_hold=is_hold,
        consumed_on=AS_OF,
    )


class TestSortFifo:
    def test_expiry_first_nulls_last(self) -> None:
        never = _grant(5, None)
        late = _grant(5, date(2025, 6, 30))
        soon = _grant(5, date(2025, 1, 31))
        assert [g.id for g in sort_fifo([never, late, soon])] == [soon.id, late.id, never.id]

    def test_ties_broken_by_grant_date(self) -> None:
        newer = _grant(5, date(2025, 6, 30), granted_on=date(2024, 6, 1))
        older = _grant(5, date(2025, 6, 30), granted_on=date(2024, 1, 1))
        assert [g.id for g in sort_fifo([newer, older])] == [older.id, newer.id]


class TestPlanAllocation:
    def test_walks_grants_in_order(self) -> None:
        first, second = _grant(5, date(2025, 1, 31)), _grant(5, date(2025, 6, 30))
        available = {first.id: Decimal(5), second.id: Decimal(5)}

        planned, shortfalls = plan_allocation([first, second], available, [_need(7)])

        assert [(p.grant.id, p.quantity) for p in planned] == [(first.id, Decimal(5)), (second.id, Decimal(2))]
        assert shortfalls == []
        assert available[second.id] == Decimal(3)

    def test_reports_shortfall(self) -> None:
        only = _grant(3, None)
        planned, shortfalls = plan_allocation([only], {only.id: Decimal(3)}, [_need(5)])
        assert planned[0].quantity == Decimal(3)
        assert shortfalls == [(AS_OF, Decimal(2))]

    def test_skips_grant_expired_before_need(self) -> None:
        expiring = _grant(8, date(2025, 1, 15))
        later = _grant(8, None)
        available = {expiring.id: Decimal(8), later.id: Decimal(8)}

        planned, _ = plan_allocation(
            [expiring, later], available, [_need(4, date(2025, 1, 14)), _need(4, date(2025, 1, 16))]
        )

        assert [(p.grant.id, p.consumed_on) for p in planned] == [
            (expiring.id, date(2025, 1, 14)),
            (later.id, date(2025, 1, 16)),
        ]


class TestFootprintState:
    def test_states(self) -> None:
        hold, confirmed = _consumption(is_hold=True), _consumption(is_hold=False)
        assert footprint_state([]) == FootprintState.NONE
        assert footprint_state([hold]) == FootprintState.HOLD
        assert footprint_state([confirmed]) == FootprintState.CONFIRMED
        with pytest.raises(InvalidLedgerStateError):
            footprint_state([hold, confirmed])


# ===========================================================================
# Allocation against the database
# ===========================================================================


class TestAllocate:
    async def test_fifo_by_expiry(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session)
        soon = await _add_grant(db_session, 5, expires_on=date(2025, 1, 31))
        late = await _add_grant(db_session, 5, expires_on=date(2025, 6, 30))
        never = await _add_grant(db_session, 5, expires_on=None)
        request_id = uuid.uuid4()

        result = await allocate(db_session, USER_ID, LEAVE_TYPE_ID, request_id, [_need(7)], is_hold=True)

        assert result.total_hours == Decimal(7)
        assert await _rows_by_grant(db_session, request_id) == {soon: Decimal(5), late: Decimal(2)}
        assert never not in await _rows_by_grant(db_session, request_id)

    async def test_expired_grants_excluded(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session)
        await _add_grant(db_session, 8, expires_on=date(2025, 1, 9))
        valid = await _add_grant(db_session, 8, expires_on=None)
        request_id = uuid.uuid4()

        await allocate(db_session, USER_ID, LEAVE_TYPE_ID, request_id, [_need(4)], is_hold=False)

        assert await _rows_by_grant(db_session, request_id) == {valid: Decimal(4)}

    async def test_insufficient_balance_writes_nothing(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session)
        await _add_grant(db_session, 3)
        request_id = uuid.uuid4()

        with pytest.raises(InsufficientBalanceError):
            await allocate(db_session, USER_ID, LEAVE_TYPE_ID, request_id, [_need(5)], is_hold=True)

        assert await _count_rows(db_session) == 0
        footprint = await get_request_footprint(db_session, request_id)
        assert footprint.state == FootprintState.NONE

    async def test_failure_is_audited(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session)
        await _add_grant(db_session, 3)
        request_id = uuid.uuid4()

        with pytest.raises(InsufficientBalanceError):
            await allocate(db_session, USER_ID, LEAVE_TYPE_ID, request_id, [_need(5)], is_hold=True)

        result = await db_session.execute(select(AuditLog).where(col(AuditLog.target_id) == str(request_id)))
        [entry] = result.scalars().all()
        assert entry.action == "leave_allocate_hold_failed"
        assert entry.details_json is not None
        assert entry.details_json["error"] == "InsufficientBalanceError"

    async def test_holds_count_under_apply_timing(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session, deduction_timing=DeductionTiming.APPLY)
        await _add_grant(db_session, 8)
        await allocate(db_session, USER_ID, LEAVE_TYPE_ID, uuid.uuid4(), [_need(6)], is_hold=True)

        with pytest.raises(InsufficientBalanceError):
            await allocate(db_session, USER_ID, LEAVE_TYPE_ID, uuid.uuid4(), [_need(4)], is_hold=True)

    async def test_holds_ignored_under_approve_timing(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session, deduction_timing=DeductionTiming.APPROVE)
        await _add_grant(db_session, 8)
        first = uuid.uuid4()
        second = uuid.uuid4()
        await allocate(db_session, USER_ID, LEAVE_TYPE_ID, first, [_need(6)], is_hold=True)
        await allocate(db_session, USER_ID, LEAVE_TYPE_ID, second, [_need(4)], is_hold=True)

        await confirm(db_session, first)
        # Only 2h left once the first hold is confirmed.
        with pytest.raises(InsufficientBalanceError):
            await confirm(db_session, second)
        footprint = await get_request_footprint(db_session, second)
        assert footprint.state == FootprintState.HOLD

    async def test_negative_balance_on_last_grant(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session, allow_negative=True)
        first = await _add_grant(db_session, 4, expires_on=date(2025, 6, 30))
        last = await _add_grant(db_session, 4, expires_on=None)
        request_id = uuid.uuid4()

        await allocate(db_session, USER_ID, LEAVE_TYPE_ID, request_id, [_need(10)], is_hold=False)

        assert await _rows_by_grant(db_session, request_id) == {first: Decimal(4), last: Decimal(6)}
        assert await _balance(db_session) == (Decimal(-2), Decimal(-2))

    async def test_negative_balance_without_grants(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session, allow_negative=True)
        request_id = uuid.uuid4()

        await allocate(db_session, USER_ID, LEAVE_TYPE_ID, request_id, [_need(3)], is_hold=False)

        result = await db_session.execute(
            select(LeaveGrant).where(col(LeaveGrant.source) == GrantSource.NEGATIVE.value)
        )
        [carrier] = result.scalars().all()
        assert carrier.quantity == Decimal(0)
        assert carrier.source_ref == f"negative:{request_id}"
        assert await _rows_by_grant(db_session, request_id) == {carrier.id: Decimal(3)}

    async def test_request_with_rows_rejected(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session)
        await _add_grant(db_session, 16)
        request_id = uuid.uuid4()
        await allocate(db_session, USER_ID, LEAVE_TYPE_ID, request_id, [_need(4)], is_hold=True)

        with pytest.raises(InvalidLedgerStateError):
            await allocate(db_session, USER_ID, LEAVE_TYPE_ID, request_id, [_need(4)], is_hold=True)

    async def test_policy_required(self, db_session: AsyncSession) -> None:
        await _add_grant(db_session, 16)
        with pytest.raises(PolicyNotFoundError):
            await allocate(db_session, USER_ID, LEAVE_TYPE_ID, uuid.uuid4(), [_need(4)], is_hold=True)

    async def test_zero_hours_rejected(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session)
        need = AllocationNeed.model_construct(date=AS_OF, hours=Decimal(0))
        with pytest.raises(ZeroDurationLineError):
            await allocate(db_session, USER_ID, LEAVE_TYPE_ID, uuid.uuid4(), [need], is_hold=True)

    async def test_hours_below_ledger_precision_rejected(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session)
        await _add_grant(db_session, 5)
        request_id = uuid.uuid4()

        with pytest.raises(ZeroDurationLineError) as exc_info:
            await allocate(db_session, USER_ID, LEAVE_TYPE_ID, request_id, [_need("0.00001")], is_hold=True)

        assert exc_info.value.line_index == 0
        assert await _count_rows(db_session) == 0
        result = await db_session.execute(select(AuditLog).where(col(AuditLog.target_id) == str(request_id)))
        [entry] = result.scalars().all()
        assert entry.action == "leave_allocate_hold_failed"

    async def test_hours_stored_at_ledger_precision(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session)
        grant_id = await _add_grant(db_session, 5)
        request_id = uuid.uuid4()

        result = await allocate(
            db_session, USER_ID, LEAVE_TYPE_ID, request_id, [_need("1.00005")], is_hold=True
        )

        assert result.total_hours == Decimal("1.0001")
        assert await _rows_by_grant(db_session, request_id) == {grant_id: Decimal("1.0001")}


class TestManualGrants:
    async def test_caller_order_respected(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session)
        soon = await _add_grant(db_session, 5, expires_on=date(2025, 1, 31))
        never = await _add_grant(db_session, 5, expires_on=None)
        request_id = uuid.uuid4()

        await allocate(
            db_session, USER_ID, LEAVE_TYPE_ID, request_id, [_need(6)], is_hold=True, manual_grant_ids=[never, soon]
        )

        assert await _rows_by_grant(db_session, request_id) == {never: Decimal(5), soon: Decimal(1)}

    async def test_foreign_grant_rejected(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session)
        foreign = await _add_grant(db_session, 5, user_id=uuid.uuid4())

        with pytest.raises(InvalidLedgerStateError):
            await allocate(
                db_session, USER_ID, LEAVE_TYPE_ID, uuid.uuid4(), [_need(1)], is_hold=True, manual_grant_ids=[foreign]
            )

    async def test_expired_grant_rejected(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session)
        expired = await _add_grant(db_session, 5, expires_on=date(2024, 12, 31))

        with pytest.raises(GrantExpiredError):
            await allocate(
                db_session, USER_ID, LEAVE_TYPE_ID, uuid.uuid4(), [_need(1)], is_hold=True, manual_grant_ids=[expired]
            )

    async def test_expired_grant_allowed_with_override(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session)
        expired = await _add_grant(db_session, 5, expires_on=date(2024, 12, 31))
        request_id = uuid.uuid4()

        await allocate(
            db_session,
            USER_ID,
            LEAVE_TYPE_ID,
            request_id,
            [_need(2)],
            is_hold=False,
            manual_grant_ids=[expired],
            allow_expired=True,
        )

        assert await _rows_by_grant(db_session, request_id) == {expired: Decimal(2)}


# ===========================================================================
# Lifecycle
# ===========================================================================


class TestLifecycle:
    async def test_hold_then_release_restores_balances(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session)
        await _add_grant(db_session, 40)
        before = await _balance(db_session)
        request_id = uuid.uuid4()

        await allocate(db_session, USER_ID, LEAVE_TYPE_ID, request_id, [_need(8)], is_hold=True)
        assert await _balance(db_session) == (Decimal(40), Decimal(32))

        transition = await release(db_session, request_id)

        assert transition.from_state == FootprintState.HOLD
        assert transition.to_state == FootprintState.NONE
        assert transition.hours == Decimal(8)
        assert await _balance(db_session) == before

    async def test_hold_confirm_reverse_restores_balances(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session)
        await _add_grant(db_session, 40)
        before = await _balance(db_session)
        request_id = uuid.uuid4()

        await allocate(db_session, USER_ID, LEAVE_TYPE_ID, request_id, [_need(8)], is_hold=True)
        confirmed = await confirm(db_session, request_id)
        assert confirmed.to_state == FootprintState.CONFIRMED
        assert await _balance(db_session) == (Decimal(32), Decimal(32))

        reversed_ = await reverse(db_session, request_id, "Plans changed")

        assert reversed_.from_state == FootprintState.CONFIRMED
        assert await _balance(db_session) == before

    async def test_invalid_transitions(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session)
        await _add_grant(db_session, 40)
        held = uuid.uuid4()
        done = uuid.uuid4()
        await allocate(db_session, USER_ID, LEAVE_TYPE_ID, held, [_need(4)], is_hold=True)
        await allocate(db_session, USER_ID, LEAVE_TYPE_ID, done, [_need(4)], is_hold=False)

        with pytest.raises(InvalidLedgerStateError):
            await reverse(db_session, held)
        with pytest.raises(InvalidLedgerStateError):
            await confirm(db_session, done)
        with pytest.raises(InvalidLedgerStateError):
            await release(db_session, done)
        with pytest.raises(InvalidLedgerStateError):
            await confirm(db_session, uuid.uuid4())

    async def test_remaining_with_holds_never_exceeds_confirmed(self, db_session: AsyncSession) -> None:
        await _create_policy(db_session)
        await _add_grant(db_session, 24)
        for hours, is_hold in ((4, True), (8, False), (2, True)):
            await allocate(db_session, USER_ID, LEAVE_TYPE_ID, uuid.uuid4(), [_need(hours)], is_hold=is_hold)
            remaining_confirmed, remaining_including_holds = await _balance(db_session)
            assert remaining_including_holds <= remaining_confirmed
