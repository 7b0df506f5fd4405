import logging
from typing import Literal

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text

from leave_ledger.config import get_settings
from leave_ledger.db import SessionDep
from leave_ledger.services.calendar import today_in_timezone

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response.

    ``today`` is the date a scheduled grant run would issue for right now.
    """

    status: Literal["ok", "degraded"]
    version: str
    environment: str
    operational_timezone: str
    today: str


@router.get("/health", response_model=HealthResponse)
async def health(session: SessionDep) -> HealthResponse:
    """Report database reachability and the ledger's operational date."""
    settings = get_settings()
    status: Literal["ok", "degraded"] = "ok"

    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check: database connectivity failed")
        status = "degraded"

    return HealthResponse(
        status=status,
        version=settings.app_version,
        environment=settings.environment,
        operational_timezone=settings.operational_timezone,
        today=today_in_timezone(settings.operational_timezone).isoformat(),
    )
