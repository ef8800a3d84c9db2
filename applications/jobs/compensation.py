"""Cancellation compensation.

Testers are paid for how far they got when a job is cancelled; whatever the
payouts and their platform fee do not consume goes back to the developer.
Pure arithmetic over snapshots, no database access.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from app.exceptions import LedgerIntegrityError
from app.utils.money import CENT, to_money, fee_on
from applications.testing.models import ApplicationStatus

COMPENSATION_RATES: dict[ApplicationStatus, Decimal] = {
    ApplicationStatus.COMPLETED: Decimal("1.00"),
    ApplicationStatus.TESTING: Decimal("0.75"),
    ApplicationStatus.VERIFIED: Decimal("0.50"),
    ApplicationStatus.OPTED_IN: Decimal("0.25"),
    ApplicationStatus.APPROVED: Decimal("0"),
    ApplicationStatus.PENDING: Decimal("0"),
    ApplicationStatus.REJECTED: Decimal("0"),
}


@dataclass(frozen=True)
class Participant:
    application_id: str
    tester_id: str
    email: str
    status: ApplicationStatus


@dataclass
class CompensationLine:
    application_id: str
    tester_id: str
    email: str
    status: str
    rate: Decimal
    amount: Decimal


@dataclass
class CompensationBreakdown:
    lines: list[CompensationLine] = field(default_factory=list)
    total_payout: Decimal = Decimal("0.00")
    fee_on_payouts: Decimal = Decimal("0.00")
    refund_amount: Decimal = Decimal("0.00")

    def line_for(self, application_id: str) -> Optional[CompensationLine]:
        return next((line for line in self.lines if line.application_id == application_id), None)


def compensation_rate(status: ApplicationStatus) -> Decimal:
    return COMPENSATION_RATES.get(status, Decimal("0"))


def calculate_compensation(
    participants: Iterable[Participant],
    payment_per_tester: Decimal,
    total_budget: Decimal,
    platform_fee: Decimal,
    fee_rate: Decimal,
) -> CompensationBreakdown:
    breakdown = CompensationBreakdown()
    for p in participants:
        rate = compensation_rate(p.status)
        breakdown.lines.append(CompensationLine(
            application_id=p.application_id,
            tester_id=p.tester_id,
            email=p.email,
            status=p.status.value,
            rate=rate,
            amount=to_money(payment_per_tester * rate),
        ))

    escrowed = to_money(total_budget + platform_fee)
    breakdown.total_payout = to_money(sum((line.amount for line in breakdown.lines), Decimal("0")))
    breakdown.fee_on_payouts = fee_on(breakdown.total_payout, fee_rate)
    breakdown.refund_amount = max(
        Decimal("0.00"), to_money(escrowed - breakdown.total_payout - breakdown.fee_on_payouts)
    )

    distributed = breakdown.total_payout + breakdown.fee_on_payouts + breakdown.refund_amount
    if abs(distributed - escrowed) > CENT:
        raise LedgerIntegrityError(
            f"Compensation does not balance: {distributed} distributed of {escrowed} escrowed"
        )
    return breakdown
