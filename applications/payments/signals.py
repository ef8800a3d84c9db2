import logging

from tortoise.signals import post_save, post_delete

from applications.payments.models import Payment

logger = logging.getLogger(__name__)


@post_save(Payment)
async def payment_saved(sender, instance: Payment, created, using_db, update_fields):
    if created:
        logger.info(
            "Payment %s opened for application %s: %s + %s fee (%s)",
            instance.id, instance.application_id, instance.amount, instance.platform_fee, instance.status.value,
        )


@post_delete(Payment)
async def payment_deleted(sender, instance: Payment, using_db):
    logger.info("Payment %s for application %s removed", instance.id, instance.application_id)
