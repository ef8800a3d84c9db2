from decimal import Decimal

import pytest

from app.exceptions import InvalidTransition, LedgerIntegrityError, TransitionConflict
from app.utils.money import split_amount
from applications.payments.models import Payment, PaymentStatus
from applications.payments.services import (
    ALLOWED_TRANSITIONS, can_transition, transition_payment, retry_payment, payout_idempotency_key,
    ensure_processing, execute_payout,
)
from applications.testing.models import ApplicationStatus


def test_split_keeps_total_exact():
    for amount in ("10", "0.07", "33.33", "1234.56", "0.01"):
        a, fee, total = split_amount(amount, Decimal("0.15"))
        assert a + fee == total


def test_fee_rounds_half_up_to_the_cent():
    assert split_amount("0.10", Decimal("0.15")) == (Decimal("0.10"), Decimal("0.02"), Decimal("0.12"))
    assert split_amount("10", Decimal("0.15"))[1] == Decimal("1.50")


def test_terminal_states_have_no_exits():
    assert ALLOWED_TRANSITIONS[PaymentStatus.COMPLETED] == set()
    assert ALLOWED_TRANSITIONS[PaymentStatus.REFUNDED] == set()
    assert can_transition(PaymentStatus.FAILED, PaymentStatus.PROCESSING)
    assert not can_transition(PaymentStatus.PENDING, PaymentStatus.COMPLETED)


async def test_payment_created_from_job_rate(developer, make_user, make_job, make_application):
    job = await make_job(developer, rate=Decimal("12.50"))
    application = await make_application(job, await make_user())

    payment = await Payment.get(application_id=application.id)
    assert payment.amount == Decimal("12.50")
    assert payment.platform_fee == Decimal("1.88")
    assert payment.total_amount == Decimal("14.38")
    assert payment.status == PaymentStatus.PENDING


async def test_save_rejects_unbalanced_row(developer, make_user, make_job, make_application):
    job = await make_job(developer)
    application = await make_application(job, await make_user())
    payment = await Payment.get(application_id=application.id)

    payment.total_amount = Decimal("99.00")
    with pytest.raises(LedgerIntegrityError):
        await payment.save()


async def test_illegal_transition_is_refused(developer, make_user, make_job, make_application):
    job = await make_job(developer)
    application = await make_application(job, await make_user(), payment_status=PaymentStatus.PENDING)
    payment = await Payment.get(application_id=application.id)

    with pytest.raises(InvalidTransition):
        await transition_payment(payment, PaymentStatus.COMPLETED)


async def test_stale_payment_loses_the_race(developer, make_user, make_job, make_application):
    job = await make_job(developer)
    application = await make_application(job, await make_user(), payment_status=PaymentStatus.PENDING)
    first = await Payment.get(application_id=application.id)
    second = await Payment.get(application_id=application.id)

    await transition_payment(first, PaymentStatus.ESCROWED)
    with pytest.raises(TransitionConflict):
        await transition_payment(second, PaymentStatus.ESCROWED)

    assert (await Payment.get(id=first.id)).escrowed_at is not None


async def test_ensure_processing_recreates_missing_row(developer, make_user, make_job, make_application):
    job = await make_job(developer)
    application = await make_application(
        job, await make_user(), status=ApplicationStatus.COMPLETED, payment_status=None
    )

    payment = await ensure_processing(application, job)
    assert payment.status == PaymentStatus.PROCESSING
    assert payment.amount + payment.platform_fee == payment.total_amount


async def test_ensure_processing_leaves_paid_rows_alone(developer, make_user, make_job, make_application):
    job = await make_job(developer)
    application = await make_application(
        job, await make_user(), status=ApplicationStatus.COMPLETED, payment_status=PaymentStatus.COMPLETED
    )
    payment = await ensure_processing(application, job)
    assert payment.status == PaymentStatus.COMPLETED


async def test_payout_without_destination_fails(admin, developer, make_user, make_job, make_application, gateway):
    job = await make_job(developer)
    tester = await make_user(stripe_account_id=None)
    application = await make_application(
        job, tester, status=ApplicationStatus.COMPLETED, payment_status=PaymentStatus.PROCESSING
    )
    payment = await Payment.get(application_id=application.id)

    result = await execute_payout(payment, gateway)

    assert result.status == "failed"
    assert result.error == "Tester has no connected Stripe account"
    assert (await Payment.get(id=payment.id)).status == PaymentStatus.FAILED
    assert gateway.transfers == []


async def test_retry_uses_a_new_idempotency_key(developer, make_user, make_job, make_application):
    job = await make_job(developer)
    application = await make_application(
        job, await make_user(), status=ApplicationStatus.COMPLETED, payment_status=PaymentStatus.PROCESSING
    )
    payment = await Payment.get(application_id=application.id)
    first_key = payout_idempotency_key(payment)
    await transition_payment(payment, PaymentStatus.FAILED, failure_reason="declined")

    retried = await retry_payment(payment.id)

    assert retried.status == PaymentStatus.PROCESSING
    assert retried.failure_reason is None
    assert retried.payout_attempts == 1
    assert payout_idempotency_key(retried) != first_key
