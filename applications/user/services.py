from dataclasses import dataclass
from decimal import Decimal

from app.exceptions import UserNotFound
from app.utils.money import to_money
from applications.payments.models import Payment
from applications.testing.models import Application, ApplicationStatus
from applications.user.models import User, UserRole


@dataclass
class Reputation:
    total_tests_completed: int
    total_earnings: Decimal
    average_engagement_score: float
    average_rating: float


async def recompute_reputation(tester_id: str) -> Reputation:
    """Rebuild a tester's aggregates from all of their COMPLETED applications."""
    tester = await User.get_or_none(id=tester_id, role=UserRole.TESTER)
    if not tester:
        raise UserNotFound("Tester not found")

    completed = await Application.filter(tester_id=tester_id, status=ApplicationStatus.COMPLETED)
    payments = {
        p.application_id: p
        for p in await Payment.filter(application_id__in=[a.id for a in completed])
    } if completed else {}

    total = len(completed)
    earnings = sum((payments[a.id].amount for a in completed if a.id in payments), Decimal("0"))
    engagement = sum(a.engagement_score or 0 for a in completed) / total if total else 0
    rated = [a.rating for a in completed if a.rating]
    rating = sum(rated) / len(rated) if rated else 0

    reputation = Reputation(
        total_tests_completed=total,
        total_earnings=to_money(earnings),
        average_engagement_score=round(engagement, 2),
        average_rating=round(rating, 2),
    )
    await User.filter(id=tester_id).update(
        total_tests_completed=reputation.total_tests_completed,
        total_earnings=reputation.total_earnings,
        average_engagement_score=reputation.average_engagement_score,
        average_rating=reputation.average_rating,
    )
    return reputation
