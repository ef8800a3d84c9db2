from decimal import Decimal

import pytest

from app.exceptions import LedgerIntegrityError
from applications.jobs.compensation import (
    COMPENSATION_RATES, Participant, calculate_compensation, compensation_rate,
)
from applications.testing.models import ApplicationStatus as S

FEE = Decimal("0.15")


def participant(n, status):
    return Participant(application_id=f"app-{n}", tester_id=f"TST{n}", email=f"t{n}@example.com", status=status)


def test_one_completed_one_approved():
    breakdown = calculate_compensation(
        [participant(1, S.COMPLETED), participant(2, S.APPROVED)],
        payment_per_tester=Decimal("10"),
        total_budget=Decimal("20"),
        platform_fee=Decimal("3"),
        fee_rate=FEE,
    )

    assert [line.amount for line in breakdown.lines] == [Decimal("10.00"), Decimal("0.00")]
    assert breakdown.total_payout == Decimal("10.00")
    assert breakdown.fee_on_payouts == Decimal("1.50")
    assert breakdown.refund_amount == Decimal("11.50")


def test_rates_never_decrease_with_progress():
    progression = [S.PENDING, S.APPROVED, S.OPTED_IN, S.VERIFIED, S.TESTING, S.COMPLETED]
    rates = [compensation_rate(status) for status in progression]
    assert rates == sorted(rates)
    assert rates[-1] == Decimal("1.00")
    assert COMPENSATION_RATES[S.REJECTED] == Decimal("0")


def test_every_cent_is_accounted_for():
    statuses = [S.COMPLETED, S.TESTING, S.VERIFIED, S.OPTED_IN, S.APPROVED, S.PENDING]
    rate = Decimal("7.33")
    budget = rate * len(statuses)
    fee = (budget * FEE).quantize(Decimal("0.01"))

    breakdown = calculate_compensation(
        [participant(n, s) for n, s in enumerate(statuses)], rate, budget, fee, FEE
    )

    distributed = breakdown.total_payout + breakdown.fee_on_payouts + breakdown.refund_amount
    assert abs(distributed - (budget + fee)) <= Decimal("0.01")
    assert breakdown.line_for("app-1").amount == Decimal("5.50")


def test_no_participants_refunds_everything():
    breakdown = calculate_compensation([], Decimal("10"), Decimal("50"), Decimal("7.50"), FEE)
    assert breakdown.total_payout == Decimal("0.00")
    assert breakdown.refund_amount == Decimal("57.50")


def test_overcommitted_job_does_not_balance():
    with pytest.raises(LedgerIntegrityError):
        calculate_compensation(
            [participant(n, S.COMPLETED) for n in range(3)],
            Decimal("10"), Decimal("20"), Decimal("3"), FEE,
        )
