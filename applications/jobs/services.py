import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from tortoise import timezone
from tortoise.transactions import in_transaction

from app.config import settings
from app.exceptions import (
    JobNotFound, NotAuthorized, JobAlreadyCancelled, JobAlreadyCompleted, JobNotDraft,
    TransitionConflict, MarketplaceError, PaymentNotFound, NothingToRetry,
)
from app.utils.money import to_money, fee_on
from app.utils.notify.outbox import enqueue_notification, notify_admins
from applications.jobs.compensation import Participant, CompensationLine, calculate_compensation
from applications.jobs.models import TestingJob, JobStatus
from applications.payments.gateway import PaymentGatewayError, EscrowIntent
from applications.payments.models import Payment, PaymentStatus
from applications.payments.services import (
    NO_DESTINATION, refund_payment, record_transfer_reference, record_compensation_failure,
)
from applications.testing.models import Application, ApplicationStatus, TERMINAL_STATUSES
from applications.user.models import User

logger = logging.getLogger(__name__)


@dataclass
class CancellationLeg:
    kind: str  # transfer | refund
    recipient: str
    amount: Decimal
    status: str  # success | failed | skipped
    reference: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CancellationResult:
    job_id: str
    compensations: list[CompensationLine]
    total_payout: Decimal
    fee_retained: Decimal
    refund_amount: Decimal
    legs: list[CancellationLeg] = field(default_factory=list)


def price_job(payment_per_tester: Decimal, testers_needed: int) -> tuple[Decimal, Decimal]:
    """Return (total_budget, platform_fee) for a job."""
    if payment_per_tester <= 0 or testers_needed <= 0:
        raise MarketplaceError("Payment per tester and testers needed must be positive")
    total_budget = to_money(to_money(payment_per_tester) * testers_needed)
    return total_budget, fee_on(total_budget, settings.PLATFORM_FEE_PERCENTAGE)


async def get_job(job_id) -> TestingJob:
    job = await TestingJob.get_or_none(id=job_id)
    if not job:
        raise JobNotFound()
    return job


def _ensure_owner(job: TestingJob, actor: User):
    if job.developer_id != actor.id:
        raise NotAuthorized("Only the job owner can do this")


async def create_job(
    developer: User,
    app_name: str,
    payment_per_tester: Decimal,
    testers_needed: int,
    test_duration: Optional[int] = None,
    app_description: Optional[str] = None,
    google_play_link: Optional[str] = None,
) -> TestingJob:
    total_budget, platform_fee = price_job(payment_per_tester, testers_needed)
    job = await TestingJob.create(
        developer_id=developer.id,
        app_name=app_name,
        app_description=app_description,
        google_play_link=google_play_link,
        payment_per_tester=to_money(payment_per_tester),
        testers_needed=testers_needed,
        test_duration=test_duration or settings.DEFAULT_TEST_DURATION_DAYS,
        total_budget=total_budget,
        platform_fee=platform_fee,
    )
    logger.info("Job %s created by %s, budget %s + fee %s", job.id, developer.id, total_budget, platform_fee)
    return job


async def create_checkout(job_id, actor: User, gateway) -> tuple[TestingJob, EscrowIntent]:
    """Open the developer's escrow charge for budget plus platform fee."""
    job = await get_job(job_id)
    _ensure_owner(job, actor)
    if job.status != JobStatus.DRAFT:
        raise JobNotDraft()

    intent = await gateway.create_escrow_intent(
        job.escrowed_total,
        job_id=str(job.id),
        developer_id=actor.id,
        idempotency_key=f"escrow:{job.id}",
    )
    job.stripe_payment_intent = intent.reference
    await job.save(update_fields=["stripe_payment_intent", "updated_at"])
    return job, intent


async def activate_job(job_id, payment_intent_id: Optional[str] = None) -> Optional[TestingJob]:
    job = await TestingJob.get_or_none(id=job_id)
    if not job:
        logger.warning("Escrow confirmed for unknown job %s", job_id)
        return None
    if job.status != JobStatus.DRAFT:
        return job

    updates = {"status": JobStatus.ACTIVE, "published_at": timezone.now()}
    if payment_intent_id:
        updates["stripe_payment_intent"] = payment_intent_id
    if await TestingJob.filter(id=job.id, status=JobStatus.DRAFT).update(**updates):
        logger.info("Job %s funded and published", job.id)
    return await TestingJob.get(id=job.id)


async def close_job_if_filled(job_id, now=None) -> bool:
    job = await TestingJob.get_or_none(id=job_id)
    if not job or job.status != JobStatus.ACTIVE:
        return False
    completed = await Application.filter(job_id=job.id, status=ApplicationStatus.COMPLETED).count()
    if completed < job.testers_needed:
        return False
    closed = await TestingJob.filter(id=job.id, status=JobStatus.ACTIVE).update(
        status=JobStatus.COMPLETED, completed_at=now or timezone.now()
    )
    if closed:
        logger.info("Job %s completed, all %s testers done", job.id, job.testers_needed)
    return bool(closed)


async def cancel_job(job_id, actor: User, gateway) -> CancellationResult:
    """Cancel a job, compensate testers by progress and refund the rest.

    The job, its applications and their payments are locked and re-read inside
    one transaction, and the breakdown is computed from those rows. If any
    application moves under the cancellation, the whole cancellation rolls
    back with a conflict. Money moves only after the commit: each transfer
    and the refund are attempted once, independently. A failed leg is
    recorded for admins to retry and leaves the committed state as it is.
    """
    job = await get_job(job_id)
    _ensure_owner(job, actor)

    now = timezone.now()
    payouts = []  # (application, payment, line) still owed money
    already_paid = set()
    async with in_transaction():
        job = await TestingJob.select_for_update().get(id=job.id)
        if job.status == JobStatus.CANCELLED:
            raise JobAlreadyCancelled()
        if job.status == JobStatus.COMPLETED:
            raise JobAlreadyCompleted()
        prior_status = job.status

        applications = await Application.filter(job_id=job.id).exclude(
            status=ApplicationStatus.REJECTED
        ).select_for_update().prefetch_related("tester")
        payments = {p.application_id: p for p in await Payment.filter(job_id=job.id).select_for_update()}

        breakdown = calculate_compensation(
            [
                Participant(
                    application_id=str(a.id),
                    tester_id=a.tester_id,
                    email=a.tester.email,
                    status=a.status,
                )
                for a in applications
            ],
            payment_per_tester=job.payment_per_tester,
            total_budget=job.total_budget,
            platform_fee=job.platform_fee,
            fee_rate=settings.PLATFORM_FEE_PERCENTAGE,
        )
        refund_amount = None if prior_status == JobStatus.DRAFT else breakdown.refund_amount

        if not await TestingJob.filter(id=job.id, status=prior_status).update(
            status=JobStatus.CANCELLED, cancelled_at=now, refund_amount=refund_amount, updated_at=now
        ):
            raise TransitionConflict()
        job.status, job.cancelled_at, job.refund_amount = JobStatus.CANCELLED, now, refund_amount

        for application in applications:
            line = breakdown.line_for(str(application.id))
            payment = payments.get(application.id)
            if line.amount > 0:
                if payment and payment.status == PaymentStatus.COMPLETED:
                    already_paid.add(str(application.id))
                else:
                    payment = await refund_payment(application, job, line.amount)
                    payouts.append((application, payment, line))
            elif payment:
                await payment.delete()

            if application.status not in TERMINAL_STATUSES:
                moved = await Application.filter(id=application.id, status=application.status).update(
                    status=ApplicationStatus.REJECTED,
                    rejection_reason="Job cancelled by developer",
                    updated_at=now,
                )
                if not moved:
                    raise TransitionConflict()

    logger.info(
        "Job %s cancelled: payout %s, fee %s, refund %s",
        job.id, breakdown.total_payout, breakdown.fee_on_payouts, breakdown.refund_amount,
    )

    result = CancellationResult(
        job_id=str(job.id),
        compensations=breakdown.lines,
        total_payout=breakdown.total_payout,
        fee_retained=breakdown.fee_on_payouts,
        refund_amount=breakdown.refund_amount,
    )

    for line in breakdown.lines:
        if line.application_id in already_paid:
            result.legs.append(CancellationLeg("transfer", line.tester_id, line.amount, "skipped", error="already paid"))

    for application, payment, line in payouts:
        result.legs.append(await _compensate_tester(application, payment, line.amount, gateway))

    if prior_status == JobStatus.DRAFT:
        result.legs.append(CancellationLeg(
            "refund", job.developer_id, breakdown.refund_amount, "skipped", error="job was never funded"
        ))
    else:
        result.legs.append(await _refund_developer(job, gateway))

    for application, _, line in payouts:
        await enqueue_notification(
            application.tester_id,
            "job_cancelled",
            "Testing job cancelled",
            f"\"{job.app_name}\" was cancelled. You will receive {line.amount} for your progress.",
        )
    await enqueue_notification(
        job.developer_id,
        "job_cancelled",
        "Job cancelled",
        f"\"{job.app_name}\" was cancelled. {breakdown.refund_amount} will be refunded to you.",
    )
    return result


async def _compensate_tester(application, payment, amount, gateway) -> CancellationLeg:
    tester = application.tester
    leg = CancellationLeg("transfer", tester.id, amount, "failed")
    if not tester.stripe_account_id:
        leg.error = NO_DESTINATION
    else:
        try:
            leg.reference = await gateway.transfer(
                amount,
                tester.stripe_account_id,
                idempotency_key=f"compensation:{application.id}",
                transfer_group=f"job_{application.job_id}",
                metadata={
                    "application_id": str(application.id),
                    "job_id": str(application.job_id),
                    "type": "cancellation_compensation",
                },
            )
        except PaymentGatewayError as e:
            logger.error("Compensation transfer failed for application %s: %s", application.id, e)
            leg.error = str(e)

    if leg.error:
        await record_compensation_failure(payment.id, leg.error)
        await notify_admins(
            "compensation_failed",
            "Cancellation compensation failed",
            f"Compensation of {amount} for application {application.id} failed: {leg.error}",
        )
        return leg

    leg.status = "success"
    await record_transfer_reference(payment.id, leg.reference)
    return leg


async def _refund_developer(job: TestingJob, gateway) -> CancellationLeg:
    amount = job.refund_amount or Decimal("0.00")
    leg = CancellationLeg("refund", job.developer_id, amount, "skipped")
    if amount <= 0:
        leg.error = "nothing to refund"
        return leg

    leg.status = "failed"
    if not job.stripe_payment_intent:
        leg.error = "Job has no payment intent"
    else:
        try:
            leg.reference = await gateway.refund(
                job.stripe_payment_intent, amount, idempotency_key=f"refund:{job.id}"
            )
        except PaymentGatewayError as e:
            logger.error("Developer refund failed for job %s: %s", job.id, e)
            leg.error = str(e)

    now = timezone.now()
    if leg.error:
        await TestingJob.filter(id=job.id).update(
            refund_failure_reason=leg.error, refund_failed_at=now, updated_at=now
        )
        await notify_admins(
            "refund_failed",
            "Developer refund failed",
            f"Refund of {amount} for job {job.id} failed: {leg.error}",
        )
        return leg

    leg.status = "success"
    await TestingJob.filter(id=job.id).update(
        refund_id=leg.reference, refund_failure_reason=None, refund_failed_at=None, updated_at=now
    )
    return leg


async def retry_compensation(payment_id, gateway) -> CancellationLeg:
    """Re-send a failed cancellation compensation under its original idempotency key."""
    payment = await Payment.get_or_none(id=payment_id)
    if not payment:
        raise PaymentNotFound()
    if payment.status != PaymentStatus.REFUNDED or payment.compensation_failed_at is None:
        raise NothingToRetry()
    application = await Application.get(id=payment.application_id).prefetch_related("tester")
    return await _compensate_tester(application, payment, payment.amount, gateway)


async def retry_refund(job_id, gateway) -> CancellationLeg:
    job = await get_job(job_id)
    if job.status != JobStatus.CANCELLED or job.refund_failed_at is None:
        raise NothingToRetry()
    return await _refund_developer(job, gateway)


async def list_failed_refunds(limit: int = 100) -> list[TestingJob]:
    return await TestingJob.filter(refund_failed_at__isnull=False).order_by("-refund_failed_at").limit(limit)
