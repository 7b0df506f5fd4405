from sqlmodel import SQLModel

from leave_ledger.models.audit import AuditLog
from leave_ledger.models.base import TimestampMixin, UUIDBase
from leave_ledger.models.calendar import CompanyCalendar, CompanyCalendarDate
from leave_ledger.models.consumption import LeaveConsumption
from leave_ledger.models.enums import (
    AccrualMethod,
    AuditAction,
    AuditTargetType,
    CalendarDateKind,
    DecisionAction,
    DeductionTiming,
    FootprintState,
    GrantSource,
    LeaveUnit,
    MinUnit,
)
from leave_ledger.models.grant import LeaveGrant
from leave_ledger.models.policy import LeavePolicy

__all__ = [
    "AccrualMethod",
    "AuditAction",
    "AuditLog",
    "AuditTargetType",
    "CalendarDateKind",
    "CompanyCalendar",
    "CompanyCalendarDate",
    "DecisionAction",
    "DeductionTiming",
    "FootprintState",
    "GrantSource",
    "LeaveConsumption",
    "LeaveGrant",
    "LeavePolicy",
    "LeaveUnit",
    "MinUnit",
    "SQLModel",
    "TimestampMixin",
    "UUIDBase",
]
