import logging

from app.utils.task_decorators import every
from app.utils.notify.outbox import dispatch_pending

logger = logging.getLogger(__name__)


@every(minutes=1)
async def dispatch_notifications():
    stats = await dispatch_pending()
    if stats["picked"]:
        logger.info("Notifications dispatched: %s", stats)
    return stats
