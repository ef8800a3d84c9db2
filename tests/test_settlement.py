from datetime import timedelta
from decimal import Decimal

from tortoise import timezone

from applications.communication.models import NotificationOutbox
from applications.jobs.models import TestingJob, JobStatus
from applications.payments.models import Payment, PaymentStatus
from applications.payments.services import process_pending_payouts, retry_payment
from applications.payments.settlement import run_settlement_sweep
from applications.testing.models import Application, ApplicationStatus
from applications.user.models import User
from tests.conftest import FakeGateway


async def test_expired_testing_is_completed_and_paid(developer, make_user, make_job, make_application, expired, gateway):
    job = await make_job(developer, testers=1)
    tester = await make_user()
    application = await make_application(
        job, tester,
        status=ApplicationStatus.TESTING,
        payment_status=PaymentStatus.PROCESSING,
        engagement_score=80.0,
        rating=4,
        **expired,
    )

    result = await run_settlement_sweep(gateway=gateway)

    assert (result.processed, result.success, result.failed) == (1, 1, 0)
    item = result.items[0]
    assert item.days_expired == 1
    assert item.transfer_id == "tr_1"

    application = await Application.get(id=application.id)
    assert application.status == ApplicationStatus.COMPLETED
    assert application.completed_at is not None

    payment = await Payment.get(application_id=application.id)
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.transfer_id == "tr_1"
    assert gateway.transfers[0]["idempotency_key"] == f"payout:{payment.id}:0"

    tester = await User.get(id=tester.id)
    assert tester.total_tests_completed == 1
    assert tester.total_earnings == Decimal("10.00")
    assert tester.average_rating == 4

    assert result.jobs_completed == [str(job.id)]
    assert (await TestingJob.get(id=job.id)).status == JobStatus.COMPLETED
    assert await NotificationOutbox.filter(user_id=tester.id, event="payout_sent").exists()


async def test_second_run_finds_nothing(developer, make_user, make_job, make_application, expired, gateway):
    job = await make_job(developer)
    await make_application(
        job, await make_user(), status=ApplicationStatus.TESTING, payment_status=PaymentStatus.PROCESSING, **expired
    )

    await run_settlement_sweep(gateway=gateway)
    again = await run_settlement_sweep(gateway=gateway)

    assert again.processed == 0
    assert len(gateway.transfers) == 1


async def test_running_windows_are_left_alone(developer, make_user, make_job, make_application, gateway):
    job = await make_job(developer)
    await make_application(
        job, await make_user(),
        status=ApplicationStatus.TESTING,
        payment_status=PaymentStatus.PROCESSING,
        testing_end_date=timezone.now() + timedelta(days=3),
    )
    result = await run_settlement_sweep(gateway=gateway)
    assert result.processed == 0


async def test_gateway_failure_is_tallied_not_raised(admin, developer, make_user, make_job, make_application, expired):
    job = await make_job(developer, testers=3)
    for _ in range(2):
        await make_application(
            job, await make_user(), status=ApplicationStatus.TESTING, payment_status=PaymentStatus.PROCESSING, **expired
        )
    broken = FakeGateway(fail_transfers=True)

    result = await run_settlement_sweep(gateway=broken)

    assert (result.processed, result.success, result.failed) == (2, 0, 2)
    assert await Application.filter(status=ApplicationStatus.COMPLETED).count() == 2
    failed = await Payment.filter(status=PaymentStatus.FAILED)
    assert len(failed) == 2
    assert failed[0].failure_reason == "Your card was declined"
    assert await NotificationOutbox.filter(user_id=admin.id, event="payout_failed").count() == 2

    # admin retry then manual payout run
    healthy = FakeGateway()
    for payment in failed:
        await retry_payment(payment.id)
    results = await process_pending_payouts(healthy)

    assert [r.status for r in results] == ["success", "success"]
    assert {t["idempotency_key"].rsplit(":", 1)[1] for t in healthy.transfers} == {"1"}


async def test_missing_payment_row_is_recreated(developer, make_user, make_job, make_application, expired, gateway):
    job = await make_job(developer)
    application = await make_application(
        job, await make_user(), status=ApplicationStatus.TESTING, payment_status=None, **expired
    )

    result = await run_settlement_sweep(gateway=gateway)

    assert result.success == 1
    payment = await Payment.get(application_id=application.id)
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.amount == Decimal("10.00")
