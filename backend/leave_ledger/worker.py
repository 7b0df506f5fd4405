"""Worker process for scheduled grant issuance.

Runs an asyncio loop that issues every due leave grant once per interval
(daily by default). An external scheduler may call POST /cron/leave-grant
instead; both paths are idempotent for the same date.
"""

from __future__ import annotations

import asyncio
import logging

from leave_ledger.config import get_settings
from leave_ledger.db import get_session_factory
from leave_ledger.middleware import setup_logging
from leave_ledger.services.ledger import LeaveLedgerService

logger = logging.getLogger(__name__)


async def run_grant_once() -> None:
    """Issue grants due today in the operational timezone."""
    settings = get_settings()
    session_factory = get_session_factory()
    async with session_factory() as session:
        ledger = LeaveLedgerService(session, settings=settings)
        today = ledger.today()
        logger.info("Issuing leave grants for %s", today)
        result = await ledger.issue_grants(today)
    logger.info(
        "Grant run complete for %s: granted=%d skipped=%d not_due=%d errors=%d",
        result.as_of,
        result.granted,
        result.skipped,
        result.not_due,
        len(result.errors),
    )


async def run_grant_loop() -> None:
    """Main worker loop."""
    settings = get_settings()
    logger.info("Grant worker started (interval=%ss)", settings.grant_interval_seconds)

    while True:
        try:
            await run_grant_once()
        except Exception:
            logger.exception("Grant run failed")

        await asyncio.sleep(settings.grant_interval_seconds)


def main() -> None:
    """Entry point for the worker process."""
    setup_logging(get_settings())
    asyncio.run(run_grant_loop())


if __name__ == "__main__":
    main()
