from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

_HOURS_QUANTUM = Decimal("0.0001")


class HoursType(sa.TypeDecorator[Decimal]):
    """Hour quantities stored as NUMERIC(12, 4).

    Values are quantized half-up before they are written so every backend
    stores, and returns, the same four-place figure.
    """

    impl = sa.Numeric(12, 4)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: sa.Dialect) -> Decimal | None:
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return value.quantize(_HOURS_QUANTUM, rounding=ROUND_HALF_UP)

    def process_result_value(self, value: Any, dialect: sa.Dialect) -> Decimal | None:
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return value.quantize(_HOURS_QUANTUM)


HOURS_TYPE = HoursType()


def _uuid_factory() -> uuid.UUID:
    return uuid.uuid4()


def _now_utc() -> datetime:
    return datetime.now(UTC)


class UUIDBase(SQLModel):
    """Base model with UUID primary key."""

    id: uuid.UUID = Field(
        default_factory=_uuid_factory,
        primary_key=True,
        sa_type=sa.Uuid,
    )


class TimestampMixin(SQLModel):
    """Adds created_at, the final FIFO tie-breaker for grants."""

    created_at: datetime = Field(
        default_factory=_now_utc,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
        sa_column_kwargs={"server_default": sa.func.now()},
    )
