# ruff: noqa: TC003
from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import date
from typing import TYPE_CHECKING

from leave_ledger.config import Settings, get_settings
from leave_ledger.services import accrual, allocation, balance
from leave_ledger.services.calendar import today_in_timezone
from leave_ledger.services.employee import EmployeeService, get_employee_service

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.schemas.allocation import AllocationNeed


class LeaveLedgerService:
    """Entry point to the ledger with its configuration passed in explicitly.

    Wraps the module-level operations so callers outside FastAPI (workers,
    scripts) need not rely on global settings or the default employee
    directory.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        settings: Settings | None = None,
        employee_service: EmployeeService | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.employee_service = employee_service or get_employee_service()

    def today(self) -> date:
        """Today in the operational timezone."""
        return today_in_timezone(self.settings.operational_timezone)

    async def issue_grants(
        self,
        as_of: date | None = None,
        *,
        company_id: uuid.UUID | None = None,
        actor_id: uuid.UUID | None = None,
    ) -> accrual.GrantRunResult:
        return await accrual.issue_grants(
            self.session,
            as_of or self.today(),
            company_id=company_id,
            employee_service=self.employee_service,
            actor_id=actor_id,
        )

    async def allocate(
        self,
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
    ) -> allocation.AllocationResult:
        return await allocation.allocate(
            self.session,
            user_id,
            leave_type_id,
            request_id,
            needs,
            is_hold,
            manual_grant_ids,
            company_id=company_id,
            allow_expired=allow_expired,
            actor_id=actor_id,
        )

    async def confirm(
        self,
        request_id: uuid.UUID,
        *,
        actor_id: uuid.UUID | None = None,
    ) -> allocation.LedgerTransition:
        return await allocation.confirm(self.session, request_id, actor_id=actor_id)

    async def release(
        self,
        request_id: uuid.UUID,
        *,
        actor_id: uuid.UUID | None = None,
    ) -> allocation.LedgerTransition:
        return await allocation.release(self.session, request_id, actor_id=actor_id)

    async def reverse(
        self,
        request_id: uuid.UUID,
        reason: str | None = None,
        *,
        actor_id: uuid.UUID | None = None,
    ) -> allocation.LedgerTransition:
        return await allocation.reverse(self.session, request_id, reason, actor_id=actor_id)

    async def get_balance(
        self,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID | None = None,
        *,
        as_of: date | None = None,
    ) -> list[balance.LeaveBalance]:
        return await balance.get_balance(self.session, user_id, leave_type_id, as_of=as_of or self.today())

    async def list_grants_with_remaining(
        self,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID | None = None,
        *,
        as_of: date | None = None,
    ) -> list[balance.GrantWithRemaining]:
        return await balance.list_grants_with_remaining(
            self.session, user_id, leave_type_id, as_of=as_of or self.today()
        )
