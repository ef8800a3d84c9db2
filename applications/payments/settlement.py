"""Time-driven settlement.

Applications whose testing window has elapsed are completed and paid out,
then tester reputation and job completion are brought up to date. Each
application settles in its own transaction, so one bad row never stops the
rest of the sweep. Running the sweep twice is harmless: the second run finds
nothing in TESTING past its end date.
"""
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Iterable, Optional

from tortoise import timezone
from tortoise.transactions import in_transaction

from applications.jobs.services import close_job_if_filled
from applications.payments.gateway import get_payment_gateway
from applications.payments.services import ensure_processing, execute_payout
from applications.testing.models import Application, ApplicationStatus
from applications.user.services import recompute_reputation

logger = logging.getLogger(__name__)


@dataclass
class SweepItem:
    application_id: str
    tester_id: str
    job_id: str
    app_name: str
    days_expired: int
    status: str  # success | failed | skipped
    payout_status: Optional[str] = None
    transfer_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SweepResult:
    ran_at: str
    processed: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    jobs_completed: list[str] = field(default_factory=list)
    items: list[SweepItem] = field(default_factory=list)

    def add(self, item: SweepItem):
        self.items.append(item)
        self.processed += 1
        if item.status == "success":
            self.success += 1
        elif item.status == "failed":
            self.failed += 1
        else:
            self.skipped += 1

    def to_dict(self) -> dict:
        return asdict(self)


async def settle_application(application: Application, gateway, now: Optional[datetime] = None) -> SweepItem:
    """Complete one expired TESTING application and pay the tester."""
    now = now or timezone.now()
    job = application.job
    item = SweepItem(
        application_id=str(application.id),
        tester_id=application.tester_id,
        job_id=str(application.job_id),
        app_name=job.app_name,
        days_expired=max((now - application.testing_end_date).days, 0) if application.testing_end_date else 0,
        status="skipped",
    )

    async with in_transaction():
        completed = await Application.filter(id=application.id, status=ApplicationStatus.TESTING).update(
            status=ApplicationStatus.COMPLETED, completed_at=now, updated_at=now
        )
        if not completed:
            item.error = "Application is no longer in testing"
            return item
        payment = await ensure_processing(application, job)

    application.status, application.completed_at = ApplicationStatus.COMPLETED, now

    payout = await execute_payout(payment, gateway)
    item.status = payout.status
    item.payout_status = payment.status.value
    item.transfer_id = payout.transfer_id
    item.error = payout.error
    return item


async def refresh_after_settlement(tester_ids: Iterable[str], job_ids: Iterable[str], now=None) -> list[str]:
    """Recompute reputation and close jobs whose spots are all completed."""
    for tester_id in set(tester_ids):
        try:
            await recompute_reputation(tester_id)
        except Exception:
            logger.exception("Reputation recompute failed for tester %s", tester_id)

    closed = []
    for job_id in set(job_ids):
        if await close_job_if_filled(job_id, now):
            closed.append(str(job_id))
    return closed


async def run_settlement_sweep(now: Optional[datetime] = None, gateway=None) -> SweepResult:
    now = now or timezone.now()
    gateway = gateway or get_payment_gateway()
    result = SweepResult(ran_at=now.isoformat())

    expired = await Application.filter(
        status=ApplicationStatus.TESTING,
        testing_end_date__lte=now,
    ).order_by("testing_end_date").prefetch_related("job")
    logger.info("Settlement sweep found %s expired applications", len(expired))

    settled_testers, touched_jobs = [], []
    for application in expired:
        try:
            item = await settle_application(application, gateway, now)
        except Exception as e:
            logger.exception("Settlement failed for application %s", application.id)
            item = SweepItem(
                application_id=str(application.id),
                tester_id=application.tester_id,
                job_id=str(application.job_id),
                app_name=application.job.app_name,
                days_expired=max((now - application.testing_end_date).days, 0),
                status="failed",
                error=str(e) or "Unknown error",
            )
        result.add(item)
        if application.status == ApplicationStatus.COMPLETED:
            settled_testers.append(application.tester_id)
            touched_jobs.append(application.job_id)

    result.jobs_completed = await refresh_after_settlement(settled_testers, touched_jobs, now)
    logger.info(
        "Settlement sweep done: %s processed, %s paid, %s failed, %s skipped",
        result.processed, result.success, result.failed, result.skipped,
    )
    return result
