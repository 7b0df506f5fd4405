# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

FULL_TIME_WORK_DAYS = 5


class EmployeeInfo(BaseModel):
    """What the ledger needs to know about an employee to issue grants."""

    id: uuid.UUID
    company_id: uuid.UUID
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    hire_date: date | None = None  # no accrual until set
    weekly_work_days: int = Field(default=5, ge=1, le=7)
    is_active: bool = True

    @property
    def is_part_time(self) -> bool:
        return self.weekly_work_days < FULL_TIME_WORK_DAYS

    @property
    def work_fraction(self) -> Decimal:
        """Share of a full-time week worked; 1 for full-time and above."""
        if not self.is_part_time:
            return Decimal(1)
        return Decimal(self.weekly_work_days) / FULL_TIME_WORK_DAYS


@runtime_checkable
class EmployeeService(Protocol):
    """Interface for the employee directory the accrual engine reads from."""

    async def get_employee(self, company_id: uuid.UUID, employee_id: uuid.UUID) -> EmployeeInfo | None:
        """Fetch employee metadata. Returns None if not found."""
        ...

    async def list_active_employees(self, company_id: uuid.UUID) -> list[EmployeeInfo]:
        """Employees of a company currently eligible for accrual."""
        ...


class InMemoryEmployeeService:
    """Directory kept in process memory, for development and tests."""

    def __init__(self) -> None:
        self._employees: dict[tuple[uuid.UUID, uuid.UUID], EmployeeInfo] = {}

    def seed(self, employee: EmployeeInfo) -> None:
        """Add or replace an employee."""
        self._employees[(employee.company_id, employee.id)] = employee

    async def get_employee(self, company_id: uuid.UUID, employee_id: uuid.UUID) -> EmployeeInfo | None:
        return self._employees.get((company_id, employee_id))

    async def list_active_employees(self, company_id: uuid.UUID) -> list[EmployeeInfo]:
        return [e for e in self._employees.values() if e.company_id == company_id and e.is_active]


_employee_service: EmployeeService = InMemoryEmployeeService()


def get_employee_service() -> EmployeeService:
    """Return the installed employee directory."""
    return _employee_service


def set_employee_service(service: EmployeeService) -> None:
    """Install the directory used by grant runs (production wiring or tests)."""
    global _employee_service
    _employee_service = service
