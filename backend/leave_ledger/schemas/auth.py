# ruff: noqa: TC003
from __future__ import annotations

import uuid
from typing import Literal

from pydantic import BaseModel

Role = Literal["admin", "employee"]


class AuthContext(BaseModel):
    """Dev auth context extracted from request headers.

    Admins manage policies, calendars and grants and may act on any
    employee's ledger within their company. Employees see and request
    leave for themselves only.
    """

    company_id: uuid.UUID
    user_id: uuid.UUID
    role: Role = "employee"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def can_access(self, user_id: uuid.UUID) -> bool:
        """Whether this caller may read or change the given user's ledger."""
        return self.is_admin or self.user_id == user_id
