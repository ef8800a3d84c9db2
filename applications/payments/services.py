"""Escrow ledger.

The ledger is the only writer of Payment.status. It records intended money
state; actual movement happens through the gateway in `execute_payout`, which
observes PROCESSING rows and writes back COMPLETED or FAILED.

    PENDING -> ESCROWED -> PROCESSING -> COMPLETED | FAILED | REFUNDED
    FAILED -> PROCESSING  (admin retry)
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from tortoise import timezone
from tortoise.expressions import Q

from app.config import settings
from app.exceptions import InvalidTransition, TransitionConflict, PaymentNotFound, LedgerIntegrityError
from app.utils.money import split_amount
from app.utils.notify.outbox import enqueue_notification, notify_admins
from applications.jobs.models import TestingJob
from applications.payments.gateway import PaymentGatewayError
from applications.payments.models import Payment, PaymentStatus
from applications.testing.models import Application, ApplicationStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.ESCROWED, PaymentStatus.PROCESSING, PaymentStatus.REFUNDED},
    PaymentStatus.ESCROWED: {PaymentStatus.PROCESSING, PaymentStatus.REFUNDED},
    PaymentStatus.PROCESSING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: {PaymentStatus.PROCESSING, PaymentStatus.REFUNDED},
    PaymentStatus.COMPLETED: set(),
    PaymentStatus.REFUNDED: set(),
}

TIMESTAMP_FIELDS = {
    PaymentStatus.ESCROWED: "escrowed_at",
    PaymentStatus.COMPLETED: "completed_at",
    PaymentStatus.FAILED: "failed_at",
    PaymentStatus.REFUNDED: "refunded_at",
}

NO_DESTINATION = "Tester has no connected Stripe account"


@dataclass
class PayoutResult:
    payment_id: str
    application_id: str
    tester_id: str
    amount: Decimal
    status: str  # success | failed | skipped
    transfer_id: Optional[str] = None
    error: Optional[str] = None


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def payment_split(job: TestingJob) -> tuple[Decimal, Decimal, Decimal]:
    return split_amount(job.payment_per_tester, settings.PLATFORM_FEE_PERCENTAGE)


def payout_idempotency_key(payment: Payment) -> str:
    return f"payout:{payment.id}:{payment.payout_attempts}"


async def create_payment(application: Application, job: TestingJob, status: PaymentStatus = PaymentStatus.PENDING) -> Payment:
    amount, fee, total = payment_split(job)
    now = timezone.now()
    return await Payment.create(
        application_id=application.id,
        job_id=job.id,
        amount=amount,
        platform_fee=fee,
        total_amount=total,
        currency=settings.CURRENCY,
        status=status,
        escrowed_at=now if status in (PaymentStatus.ESCROWED, PaymentStatus.PROCESSING) else None,
    )


async def get_payment_for(application_id) -> Optional[Payment]:
    return await Payment.get_or_none(application_id=application_id)


async def transition_payment(payment: Payment, target: PaymentStatus, **fields) -> Payment:
    """Compare-and-swap the payment from its current status to `target`."""
    current = payment.status
    if not can_transition(current, target):
        raise InvalidTransition("Payment", current.value, target.value)

    if {"amount", "platform_fee", "total_amount"} & fields.keys():
        amount = fields.get("amount", payment.amount)
        fee = fields.get("platform_fee", payment.platform_fee)
        total = fields.get("total_amount", payment.total_amount)
        if amount + fee != total:
            raise LedgerIntegrityError(f"Payment {payment.id}: {amount} + {fee} != {total}")

    now = timezone.now()
    updates = dict(fields, status=target, updated_at=now)
    stamp = TIMESTAMP_FIELDS.get(target)
    if stamp and stamp not in updates:
        updates[stamp] = now
    if target == PaymentStatus.PROCESSING and payment.escrowed_at is None:
        updates["escrowed_at"] = now

    updated = await Payment.filter(id=payment.id, status=current).update(**updates)
    if not updated:
        raise TransitionConflict()

    for key, value in updates.items():
        setattr(payment, key, value)
    logger.info("Payment %s %s -> %s", payment.id, current.value, target.value)
    return payment


async def _heal(application: Application, job: TestingJob, status: PaymentStatus) -> Payment:
    logger.warning(
        "Payment missing for application %s, recreating as %s", application.id, status.value
    )
    return await create_payment(application, job, status=status)


async def escrow_payment(application: Application, job: TestingJob) -> Payment:
    payment = await get_payment_for(application.id)
    if payment is None:
        return await _heal(application, job, PaymentStatus.ESCROWED)
    return await transition_payment(payment, PaymentStatus.ESCROWED)


async def start_processing(application: Application, job: TestingJob) -> Payment:
    payment = await get_payment_for(application.id)
    if payment is None:
        return await _heal(application, job, PaymentStatus.PROCESSING)
    return await transition_payment(payment, PaymentStatus.PROCESSING)


async def ensure_processing(application: Application, job: TestingJob) -> Payment:
    """Make sure a completed application has a payment ready for payout.

    Rows already paid, failed or refunded are left alone.
    """
    payment = await get_payment_for(application.id)
    if payment is None:
        return await _heal(application, job, PaymentStatus.PROCESSING)
    if payment.status in (PaymentStatus.PENDING, PaymentStatus.ESCROWED):
        return await transition_payment(payment, PaymentStatus.PROCESSING)
    return payment


async def delete_payment(application_id) -> bool:
    payment = await get_payment_for(application_id)
    if payment is None:
        return False
    await payment.delete()
    return True


async def execute_payout(payment: Payment, gateway) -> PayoutResult:
    application = await Application.get(id=payment.application_id).prefetch_related("tester", "job")
    tester = application.tester
    result = PayoutResult(
        payment_id=str(payment.id),
        application_id=str(application.id),
        tester_id=tester.id,
        amount=payment.amount,
        status="skipped",
    )

    # a cancellation may have refunded the row since it was read
    await payment.refresh_from_db(fields=["status"])
    if payment.status != PaymentStatus.PROCESSING:
        result.error = f"Payment is {payment.status.value}"
        return result

    if not tester.stripe_account_id:
        await transition_payment(payment, PaymentStatus.FAILED, failure_reason=NO_DESTINATION)
        result.status, result.error = "failed", NO_DESTINATION
        await notify_admins(
            "payout_failed",
            "Payout failed",
            f"Payout of {payment.amount} for application {application.id} failed: {NO_DESTINATION}",
        )
        return result

    try:
        transfer_id = await gateway.transfer(
            payment.amount,
            tester.stripe_account_id,
            idempotency_key=payout_idempotency_key(payment),
            transfer_group=f"job_{application.job_id}",
            metadata={
                "application_id": str(application.id),
                "tester_id": tester.id,
                "job_id": str(application.job_id),
                "app_name": application.job.app_name,
            },
        )
    except PaymentGatewayError as e:
        logger.error("Payout failed for application %s: %s", application.id, e)
        await transition_payment(payment, PaymentStatus.FAILED, failure_reason=str(e))
        result.status, result.error = "failed", str(e)
        await notify_admins(
            "payout_failed",
            "Payout failed",
            f"Payout of {payment.amount} for application {application.id} failed: {e}",
        )
        return result

    try:
        await transition_payment(payment, PaymentStatus.COMPLETED, transfer_id=transfer_id, failure_reason=None)
    except TransitionConflict:
        # the transfer webhook may have confirmed it first
        payment = await Payment.get(id=payment.id)
        if payment.status != PaymentStatus.COMPLETED:
            raise

    result.status, result.transfer_id = "success", transfer_id
    await enqueue_notification(
        tester.id,
        "payout_sent",
        "Payment sent",
        f"{payment.amount} for testing \"{application.job.app_name}\" is on its way to your account.",
        url="/dashboard/payments",
    )
    return result


async def process_pending_payouts(gateway) -> list[PayoutResult]:
    """Pay every PROCESSING payment whose application is COMPLETED."""
    pending = await Payment.filter(
        status=PaymentStatus.PROCESSING,
        application__status=ApplicationStatus.COMPLETED,
    ).order_by("created_at")

    results = []
    for payment in pending:
        try:
            results.append(await execute_payout(payment, gateway))
        except Exception as e:
            logger.exception("Payout processing crashed for payment %s", payment.id)
            results.append(PayoutResult(
                payment_id=str(payment.id),
                application_id=str(payment.application_id),
                tester_id="",
                amount=payment.amount,
                status="failed",
                error=str(e) or "Unknown error",
            ))
    return results


async def retry_payment(payment_id) -> Payment:
    payment = await Payment.get_or_none(id=payment_id)
    if not payment:
        raise PaymentNotFound()
    return await transition_payment(
        payment,
        PaymentStatus.PROCESSING,
        payout_attempts=payment.payout_attempts + 1,
        failure_reason=None,
    )


async def record_transfer_webhook(application_id, transfer_id: str) -> Optional[Payment]:
    payment = await get_payment_for(application_id)
    if payment is None:
        logger.warning("Transfer %s references unknown application %s", transfer_id, application_id)
        return None
    if payment.status == PaymentStatus.COMPLETED:
        return payment
    if payment.status != PaymentStatus.PROCESSING:
        logger.warning("Transfer %s arrived for payment %s in %s", transfer_id, payment.id, payment.status.value)
        return payment
    try:
        return await transition_payment(payment, PaymentStatus.COMPLETED, transfer_id=transfer_id)
    except TransitionConflict:
        return await Payment.get(id=payment.id)


async def list_failed_payments(limit: int = 100) -> list[Payment]:
    """Failed payouts plus cancellation compensations whose transfer failed."""
    return await Payment.filter(
        Q(status=PaymentStatus.FAILED)
        | Q(status=PaymentStatus.REFUNDED, compensation_failed_at__isnull=False)
    ).order_by("-updated_at").limit(limit).prefetch_related("application__tester", "job")


async def refund_payment(application: Application, job: TestingJob, compensation: Decimal) -> Payment:
    """Close the payment as REFUNDED, re-sized to the compensation owed to the tester.

    The row stays as the audit record of the cancellation; the matching money
    leg is recorded on it afterwards with `record_transfer_reference`.
    """
    amount, fee, total = split_amount(compensation, settings.PLATFORM_FEE_PERCENTAGE)
    payment = await get_payment_for(application.id)
    if payment is None:
        logger.warning("Payment missing for application %s, recreating as REFUNDED", application.id)
        now = timezone.now()
        return await Payment.create(
            application_id=application.id,
            job_id=job.id,
            amount=amount,
            platform_fee=fee,
            total_amount=total,
            currency=settings.CURRENCY,
            status=PaymentStatus.REFUNDED,
            refunded_at=now,
        )
    return await transition_payment(
        payment, PaymentStatus.REFUNDED, amount=amount, platform_fee=fee, total_amount=total
    )


async def record_transfer_reference(payment_id, transfer_id: str):
    await Payment.filter(id=payment_id).update(
        transfer_id=transfer_id,
        failure_reason=None,
        compensation_failed_at=None,
        updated_at=timezone.now(),
    )


async def record_compensation_failure(payment_id, reason: str):
    now = timezone.now()
    await Payment.filter(id=payment_id).update(failure_reason=reason, compensation_failed_at=now, updated_at=now)
