import logging

from app.config import settings
from app.redis import redis_lock
from app.utils.task_decorators import every
from applications.payments.settlement import run_settlement_sweep

logger = logging.getLogger(__name__)

SETTLEMENT_LOCK_KEY = "settlement:sweep:lock"


async def run_scheduled_settlement(gateway=None) -> dict:
    """Run the sweep unless another worker already holds the sweep lock."""
    async with redis_lock(SETTLEMENT_LOCK_KEY, settings.SETTLEMENT_LOCK_TTL) as acquired:
        if not acquired:
            logger.info("Settlement sweep already running elsewhere, skipping")
            return {"locked": True}
        result = await run_settlement_sweep(gateway=gateway)
        return {"locked": False, **result.to_dict()}


@every(hour=1, minute=0)
async def daily_settlement():
    return await run_scheduled_settlement()
