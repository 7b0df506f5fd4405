"""Tests for translating lock and serialization failures into ConcurrencyConflictError."""

from __future__ import annotations

import asyncio
import os
import uuid
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import col

from leave_ledger.config import Settings
from leave_ledger.db import engine_connect_args
from leave_ledger.exceptions import (
    ConcurrencyConflictError,
    InsufficientBalanceError,
    InvalidLedgerStateError,
    concurrency_conflict_from,
)
from leave_ledger.models.audit import AuditLog
from leave_ledger.models.consumption import LeaveConsumption
from leave_ledger.models.enums import AuditAction, AuditTargetType, DeductionTiming, GrantSource
from leave_ledger.models.grant import LeaveGrant
from leave_ledger.schemas.allocation import AllocationNeed
from leave_ledger.schemas.auth import AuthContext
from leave_ledger.schemas.policy import AnniversaryPolicySettings, UpsertPolicyRequest
from leave_ledger.services.allocation import allocate, request_lock_key, run_ledger_operation
from leave_ledger.services.policy import upsert_policy

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

COMPANY_ID = uuid.uuid4()
USER_ID = uuid.uuid4()
LEAVE_TYPE_ID = uuid.uuid4()

requires_postgres = pytest.mark.skipif(
    not os.environ.get("TEST_DATABASE_URL", "").startswith("postgresql"),
    reason="row and advisory locks need PostgreSQL; set TEST_DATABASE_URL",
)


class _DriverError(Exception):
    """Stand-in for a driver exception carrying a SQLSTATE."""

    def __init__(self, sqlstate: str) -> None:
        super().__init__(f"driver error {sqlstate}")
        self.sqlstate = sqlstate


def _wrapped(sqlstate: str) -> DBAPIError:
    return OperationalError("SELECT 1", {}, _DriverError(sqlstate))


class TestConcurrencyConflictFrom:
    @pytest.mark.parametrize("sqlstate", ["40001", "40P01", "55P03"])
    def test_retryable_codes(self, sqlstate: str) -> None:
        assert isinstance(concurrency_conflict_from(_wrapped(sqlstate)), ConcurrencyConflictError)

    def test_unique_violation_is_not_a_conflict(self) -> None:
        assert concurrency_conflict_from(_wrapped("23505")) is None

    def test_pgcode_attribute(self) -> None:
        orig = Exception("psycopg style")
        orig.pgcode = "40001"  # type: ignore[attr-defined]
        assert concurrency_conflict_from(OperationalError("SELECT 1", {}, orig)) is not None

    def test_cause_of_adapted_error(self) -> None:
        # asyncpg errors arrive wrapped by SQLAlchemy's DBAPI adapter.
        adapted = Exception("adapted")
        adapted.__cause__ = _DriverError("40P01")
        assert concurrency_conflict_from(OperationalError("SELECT 1", {}, adapted)) is not None

    def test_plain_exception(self) -> None:
        assert concurrency_conflict_from(ValueError("boom")) is None

    def test_status_code(self) -> None:
        assert ConcurrencyConflictError().status_code == 409


class TestRunLedgerOperation:
    async def test_conflict_translated_and_audited(self, db_session: AsyncSession) -> None:
        request_id = uuid.uuid4()

        async def _deadlock() -> None:
            raise _wrapped("40P01")

        with pytest.raises(ConcurrencyConflictError):
            await run_ledger_operation(
                db_session,
                _deadlock,
                action=AuditAction.CONFIRM,
                company_id=COMPANY_ID,
                actor_id=None,
                target_type=AuditTargetType.REQUEST,
                target_id=request_id,
            )

        result = await db_session.execute(select(AuditLog).where(col(AuditLog.target_id) == str(request_id)))
        [entry] = result.scalars().all()
        assert entry.action == "leave_confirm_failed"
        assert entry.details_json is not None
        assert entry.details_json["error"] == "ConcurrencyConflictError"

    async def test_other_database_errors_propagate(self, db_session: AsyncSession) -> None:
        async def _broken() -> None:
            raise _wrapped("23505")

        with pytest.raises(OperationalError):
            await run_ledger_operation(
                db_session,
                _broken,
                action=AuditAction.CONFIRM,
                company_id=COMPANY_ID,
                actor_id=None,
                target_type=AuditTargetType.REQUEST,
                target_id=uuid.uuid4(),
            )

        result = await db_session.execute(select(AuditLog))
        assert result.scalars().all() == []

    async def test_success_commits(self, db_session: AsyncSession) -> None:
        async def _ok() -> str:
            return "done"

        result = await run_ledger_operation(
            db_session,
            _ok,
            action=AuditAction.CONFIRM,
            company_id=COMPANY_ID,
            actor_id=None,
            target_type=AuditTargetType.REQUEST,
            target_id=uuid.uuid4(),
        )
        assert result == "done"


class TestLockTimeout:
    def test_postgres_bounds_lock_waits(self) -> None:
        settings = Settings(database_url="postgresql+asyncpg://u:p@db/ledger", db_lock_timeout_ms=2500)
        assert engine_connect_args(settings) == {"server_settings": {"lock_timeout": "2500"}}

    def test_other_backends_untouched(self) -> None:
        assert engine_connect_args(Settings(database_url="sqlite+aiosqlite://")) == {}


class TestRequestLockKey:
    def test_stable_per_request(self) -> None:
        request_id = uuid.uuid4()
        assert request_lock_key(request_id) == request_lock_key(uuid.UUID(str(request_id)))

    def test_fits_signed_bigint(self) -> None:
        assert request_lock_key(uuid.UUID(int=2**128 - 1)) == -1
        assert -(2**63) <= request_lock_key(uuid.uuid4()) < 2**63


async def _seed_ledger(engine: AsyncEngine, hours: int) -> uuid.UUID:
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        await upsert_policy(
            session,
            AuthContext(company_id=COMPANY_ID, user_id=uuid.uuid4(), role="admin"),
            LEAVE_TYPE_ID,
            UpsertPolicyRequest(settings=AnniversaryPolicySettings(deduction_timing=DeductionTiming.APPLY)),
        )
        grant = LeaveGrant(
            company_id=COMPANY_ID,
            user_id=USER_ID,
            leave_type_id=LEAVE_TYPE_ID,
            quantity=Decimal(hours),
            granted_on=date(2025, 1, 1),
            source=GrantSource.MANUAL.value,
            source_ref=f"manual:{uuid.uuid4()}",
        )
        session.add(grant)
        await session.commit()
        return grant.id


async def _allocate_in_own_session(engine: AsyncEngine, request_id: uuid.UUID, hours: int, *, is_hold: bool) -> object:
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        need = AllocationNeed(date=date(2025, 2, 3), hours=Decimal(hours))
        return await allocate(session, USER_ID, LEAVE_TYPE_ID, request_id, [need], is_hold=is_hold)


async def _consumed(engine: AsyncEngine) -> list[LeaveConsumption]:
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        result = await session.execute(select(LeaveConsumption))
        return list(result.scalars().all())


@requires_postgres
class TestConcurrentAllocation:
    async def test_parallel_requests_cannot_overdraw_a_grant(self, engine: AsyncEngine) -> None:
        await _seed_ledger(engine, hours=8)

        outcomes = await asyncio.gather(
            _allocate_in_own_session(engine, uuid.uuid4(), 6, is_hold=False),
            _allocate_in_own_session(engine, uuid.uuid4(), 6, is_hold=False),
            return_exceptions=True,
        )

        failures = [outcome for outcome in outcomes if isinstance(outcome, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], (InsufficientBalanceError, ConcurrencyConflictError))
        assert sum(row.quantity for row in await _consumed(engine)) == Decimal(6)

    async def test_same_request_booked_once(self, engine: AsyncEngine) -> None:
        await _seed_ledger(engine, hours=40)
        request_id = uuid.uuid4()

        outcomes = await asyncio.gather(
            _allocate_in_own_session(engine, request_id, 4, is_hold=True),
            _allocate_in_own_session(engine, request_id, 4, is_hold=True),
            return_exceptions=True,
        )

        failures = [outcome for outcome in outcomes if isinstance(outcome, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], (InvalidLedgerStateError, ConcurrencyConflictError))
        rows = await _consumed(engine)
        assert [row.request_id for row in rows] == [request_id]
        assert rows[0].quantity == Decimal(4)
