from __future__ import annotations

import enum


class AccrualMethod(enum.StrEnum):
    """Rule governing when and how much leave a policy grants."""

    ANNIVERSARY = "anniversary"
    FISCAL_FIXED = "fiscal_fixed"
    MONTHLY = "monthly"


class MinUnit(enum.StrEnum):
    """Smallest quantity of leave a policy allows."""

    HOUR = "1h"
    HALF_DAY = "0.5d"
    DAY = "1d"


class LeaveUnit(enum.StrEnum):
    """Unit a leave request line is entered in."""

    DAY = "day"
    HALF = "half"
    HOUR = "hour"


class DeductionTiming(enum.StrEnum):
    """Whether holds count against availability (apply) or only confirmed rows (approve)."""

    APPLY = "apply"
    APPROVE = "approve"


class GrantSource(enum.StrEnum):
    """Origin of a grant line."""

    ACCRUAL = "ACCRUAL"
    MANUAL = "MANUAL"
    NEGATIVE = "NEGATIVE"


class FootprintState(enum.StrEnum):
    """Ledger footprint of a single leave request."""

    NONE = "NONE"
    HOLD = "HOLD"
    CONFIRMED = "CONFIRMED"


class CalendarDateKind(enum.StrEnum):
    """Explicit calendar date entry."""

    HOLIDAY = "HOLIDAY"
    BLACKOUT = "BLACKOUT"
    WORKDAY = "WORKDAY"


class DecisionAction(enum.StrEnum):
    """Decision taken on a leave request."""

    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"


class AuditTargetType(enum.StrEnum):
    """Target type recorded in the audit log."""

    LEAVE_GRANT = "leave_grants"
    LEAVE_CONSUMPTION = "leave_consumptions"
    LEAVE_POLICY = "leave_policies"
    CALENDAR = "business_calendars"
    REQUEST = "requests"


class AuditAction(enum.StrEnum):
    """Action recorded in the audit log."""

    GRANT_ISSUE_JOB = "grant_issue_job"
    GRANT_ISSUED = "grant_issued"
    GRANT_MANUAL = "grant_manual"
    GRANT_FORFEITED = "grant_forfeited"
    ALLOCATE_HOLD = "leave_allocate_hold"
    ALLOCATE_CONFIRM = "leave_allocate_confirm"
    CONFIRM = "leave_confirm"
    RELEASE = "leave_release"
    REVERSE = "leave_reverse"
    REQUEST_SUBMITTED = "leave_request_submitted"
    REQUEST_APPROVED = "leave_request_approved"
    REQUEST_REJECTED = "leave_request_rejected"
    REQUEST_CANCELED = "leave_request_canceled"
    POLICY_SAVED = "leave_policy_saved"
    CALENDAR_SAVED = "calendar_saved"
