from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

from leave_ledger.models.audit import AuditLog

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlmodel import SQLModel

    from leave_ledger.models.enums import AuditTargetType

# Actor recorded for scheduled and other unattended writes.
SYSTEM_ACTOR_ID = uuid.UUID(int=0)


def to_jsonable(value: Any) -> Any:
    """Convert a value to a JSON-safe form for audit payloads."""
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    return value


def model_to_audit_dict(model: SQLModel) -> dict[str, Any]:
    """Serialize a SQLModel instance to a JSON-safe dict for audit logging."""
    return {key: to_jsonable(value) for key, value in model.model_dump().items()}


async def write_audit_log(
    session: AsyncSession,
    *,
    company_id: uuid.UUID | None,
    actor_id: uuid.UUID | None,
    action: str,
    target_type: AuditTargetType | None = None,
    target_id: uuid.UUID | str | None = None,
    before_json: dict[str, Any] | None = None,
    after_json: dict[str, Any] | None = None,
    details_json: dict[str, Any] | None = None,
) -> AuditLog:
    """Write an immutable audit log entry within the caller's transaction."""
    entry = AuditLog(
        company_id=company_id,
        actor_id=actor_id,
        action=str(action),
        target_type=target_type.value if target_type is not None else None,
        target_id=str(target_id) if target_id is not None else None,
        before_json=before_json,
        after_json=after_json,
        details_json=to_jsonable(details_json) if details_json is not None else None,
    )
    session.add(entry)
    return entry


async def write_failure_audit(
    session: AsyncSession,
    *,
    company_id: uuid.UUID | None,
    actor_id: uuid.UUID | None,
    action: str,
    target_type: AuditTargetType | None,
    target_id: uuid.UUID | str | None,
    error: Exception,
    details_json: dict[str, Any] | None = None,
) -> None:
    """Record a rejected ledger operation after its transaction was rolled back.

    The entry is committed on its own so the failure survives the rollback.
    """
    details: dict[str, Any] = {"error": type(error).__name__, "message": str(error)}
    if details_json:
        details.update(details_json)
    await write_audit_log(
        session,
        company_id=company_id,
        actor_id=actor_id,
        action=f"{action}_failed",
        target_type=target_type,
        target_id=target_id,
        details_json=details,
    )
    await session.commit()
