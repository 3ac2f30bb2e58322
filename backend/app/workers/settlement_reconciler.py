"""Settle completed matches whose change-stream delivery never arrived.

Runs on the scheduler every ``SETTLEMENT_RECONCILE_MINUTES``. Safe to run
alongside the trigger: settlement itself is exactly-once, so a match the
trigger settles concurrently is simply skipped here.
"""

import logging

from pymongo.errors import PyMongoError

from app.config import settings
from app.services.settlement_service import SettlementService, settlement_service
from app.workers._state import set_synced

logger = logging.getLogger("tablekick.settlement_reconciler")

_STATE_KEY = "settlement_reconciler"


async def reconcile_settlements(service: SettlementService | None = None, limit: int | None = None) -> int:
    service = service or settlement_service
    limit = limit or settings.SETTLEMENT_RECONCILE_BATCH
    pending = await service.find_unsettled(limit)
    if not pending:
        logger.debug("No unsettled completed matches")
        return 0

    settled = 0
    failed = 0
    for match in pending:
        try:
            plan = await service.settle_completed_match(match)
        except PyMongoError:
            failed += 1
            logger.exception("Reconciler could not settle match %s; retrying next run", match.get("_id"))
            continue
        if plan is not None:
            settled += 1
    await set_synced(_STATE_KEY, last_settled=settled)
    logger.info("Reconciler settled %d of %d completed matches (%d failed)", settled, len(pending), failed)
    return settled
