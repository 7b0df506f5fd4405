# ruff: noqa: B008, TC003
from __future__ import annotations

import hmac
import uuid
from typing import Annotated

from fastapi import Depends, Header, Path, status

from leave_ledger.config import get_settings
from leave_ledger.exceptions import AppError
from leave_ledger.schemas.auth import AuthContext, Role


async def get_auth_context(
    x_company_id: uuid.UUID = Header(),
    x_user_id: uuid.UUID = Header(),
    x_role: Role = Header(default="employee"),
) -> AuthContext:
    """Extract dev auth context from request headers."""
    return AuthContext(company_id=x_company_id, user_id=x_user_id, role=x_role)


AuthDep = Annotated[AuthContext, Depends(get_auth_context)]


async def require_admin(
    auth: AuthDep,
) -> AuthContext:
    """Require admin role for the request."""
    if not auth.is_admin:
        raise AppError("Admin access required", status_code=status.HTTP_403_FORBIDDEN)
    return auth


AdminDep = Annotated[AuthContext, Depends(require_admin)]


async def validate_company_scope(
    company_id: uuid.UUID = Path(),
    auth: AuthContext = Depends(get_auth_context),
) -> AuthContext:
    """Ensure the path company_id matches the auth header company_id."""
    if company_id != auth.company_id:
        raise AppError("Company ID mismatch", status_code=status.HTTP_403_FORBIDDEN)
    return auth


def ensure_self_or_admin(auth: AuthContext, user_id: uuid.UUID) -> None:
    """Employees may only act on their own ledger; admins on anyone's."""
    if not auth.can_access(user_id):
        raise AppError("Not allowed to access another employee's leave", status_code=status.HTTP_403_FORBIDDEN)


async def require_cron_secret(
    x_cron_secret: str | None = Header(default=None),
) -> None:
    """Authenticate the scheduler by its shared secret."""
    expected = get_settings().cron_secret
    if not expected:
        raise AppError("Cron secret is not configured", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    if x_cron_secret is None or not hmac.compare_digest(x_cron_secret, expected):
        raise AppError("Invalid cron secret", status_code=status.HTTP_401_UNAUTHORIZED)
