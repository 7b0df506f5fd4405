# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import TypeAdapter
from sqlalchemy import select
from sqlmodel import col

from leave_ledger.exceptions import PolicyNotFoundError
from leave_ledger.models.enums import AccrualMethod, AuditAction, AuditTargetType
from leave_ledger.models.policy import LeavePolicy
from leave_ledger.schemas.policy import PolicyListResponse, PolicyResponse, PolicySettings
from leave_ledger.services.audit import model_to_audit_dict, to_jsonable, write_audit_log

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.schemas.auth import AuthContext
    from leave_ledger.schemas.policy import UpsertPolicyRequest

_settings_adapter: TypeAdapter[PolicySettings] = TypeAdapter(PolicySettings)


def settings_to_json(settings: PolicySettings) -> dict[str, Any]:
    """Dump settings for storage, keeping decimals exact as strings."""
    return to_jsonable(settings.model_dump())


def parse_policy_settings(policy: LeavePolicy) -> PolicySettings:
    """Validate a stored policy's settings_json into its typed settings model."""
    raw = dict(policy.settings_json or {})
    raw["accrual_method"] = policy.accrual_method
    return _settings_adapter.validate_python(raw)


def _build_policy_response(policy: LeavePolicy) -> PolicyResponse:
    return PolicyResponse(
        id=policy.id,
        company_id=policy.company_id,
        leave_type_id=policy.leave_type_id,
        accrual_method=AccrualMethod(policy.accrual_method),
        is_active=policy.is_active,
        settings=parse_policy_settings(policy),
        created_at=policy.created_at,
        updated_at=policy.updated_at,
    )


async def find_policy(
    session: AsyncSession,
    leave_type_id: uuid.UUID,
    *,
    company_id: uuid.UUID | None = None,
) -> LeavePolicy | None:
    """Return the policy for a leave type (scoped to a company when given)."""
    query = select(LeavePolicy).where(col(LeavePolicy.leave_type_id) == leave_type_id)
    if company_id is not None:
        query = query.where(col(LeavePolicy.company_id) == company_id)
    result = await session.execute(query.order_by(col(LeavePolicy.created_at)))
    return result.scalars().first()


async def get_active_policy(
    session: AsyncSession,
    leave_type_id: uuid.UUID,
    *,
    company_id: uuid.UUID | None = None,
) -> LeavePolicy:
    """Return the active policy for a leave type or raise PolicyNotFoundError."""
    policy = await find_policy(session, leave_type_id, company_id=company_id)
    if policy is None or not policy.is_active:
        raise PolicyNotFoundError(f"No active leave policy for leave type {leave_type_id}")
    return policy


async def list_active_policies(
    session: AsyncSession,
    *,
    company_id: uuid.UUID | None = None,
) -> list[LeavePolicy]:
    """Return every active policy, optionally for one company, in a stable order."""
    query = select(LeavePolicy).where(col(LeavePolicy.is_active).is_(True))
    if company_id is not None:
        query = query.where(col(LeavePolicy.company_id) == company_id)
    result = await session.execute(
        query.order_by(col(LeavePolicy.company_id), col(LeavePolicy.accrual_method), col(LeavePolicy.id))
    )
    return list(result.scalars().all())


async def upsert_policy(
    session: AsyncSession,
    auth: AuthContext,
    leave_type_id: uuid.UUID,
    payload: UpsertPolicyRequest,
) -> PolicyResponse:
    """Create or replace the policy of a (company, leave type) pair."""
    policy = await find_policy(session, leave_type_id, company_id=auth.company_id)
    before = model_to_audit_dict(policy) if policy is not None else None

    if policy is None:
        policy = LeavePolicy(company_id=auth.company_id, leave_type_id=leave_type_id, accrual_method="")
        session.add(policy)

    policy.accrual_method = payload.settings.accrual_method
    policy.settings_json = settings_to_json(payload.settings)
    policy.is_active = payload.is_active
    policy.updated_at = datetime.now(UTC)
    await session.flush()

    await write_audit_log(
        session,
        company_id=auth.company_id,
        actor_id=auth.user_id,
        action=AuditAction.POLICY_SAVED,
        target_type=AuditTargetType.LEAVE_POLICY,
        target_id=policy.id,
        before_json=before,
        after_json=model_to_audit_dict(policy),
    )

    await session.commit()
    return _build_policy_response(policy)


async def get_policy(
    session: AsyncSession,
    company_id: uuid.UUID,
    leave_type_id: uuid.UUID,
) -> PolicyResponse:
    """Fetch the policy of one leave type."""
    policy = await find_policy(session, leave_type_id, company_id=company_id)
    if policy is None:
        raise PolicyNotFoundError(f"No leave policy for leave type {leave_type_id}")
    return _build_policy_response(policy)


async def list_policies(session: AsyncSession, company_id: uuid.UUID) -> PolicyListResponse:
    """List all policies of a company."""
    result = await session.execute(
        select(LeavePolicy)
        .where(col(LeavePolicy.company_id) == company_id)
        .order_by(col(LeavePolicy.created_at), col(LeavePolicy.id))
    )
    policies = result.scalars().all()
    return PolicyListResponse(items=[_build_policy_response(p) for p in policies], total=len(policies))
