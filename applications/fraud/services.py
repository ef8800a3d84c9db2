from datetime import timedelta
from typing import Optional

from tortoise import timezone
from tortoise.functions import Count
from tortoise.transactions import in_transaction

from app.exceptions import FraudLogNotFound, UserNotFound
from applications.fraud.models import FraudLog, FraudSeverity, FraudType
from applications.fraud.scoring import MAX_SCORE
from applications.user.models import User


async def get_fraud_stats() -> dict:
    week_ago = timezone.now() - timedelta(days=7)
    top_suspicious = await User.filter(fraud_score__gt=30).order_by("-fraud_score").limit(10).annotate(
        application_count=Count("applications")
    ).values("id", "email", "name", "fraud_score", "flagged", "created_at", "application_count")

    return {
        "total_flagged": await User.filter(flagged=True).count(),
        "unresolved_logs": await FraudLog.filter(resolved=False).count(),
        "recent_high_severity": await FraudLog.filter(
            severity__in=[FraudSeverity.HIGH, FraudSeverity.CRITICAL],
            created_at__gte=week_ago,
        ).count(),
        "top_suspicious_users": top_suspicious,
    }


async def get_fraud_logs(
    resolved: Optional[bool] = None,
    severity: Optional[FraudSeverity] = None,
    limit: int = 50,
) -> list[FraudLog]:
    query = FraudLog.all()
    if resolved is not None:
        query = query.filter(resolved=resolved)
    if severity is not None:
        query = query.filter(severity=severity)
    return await query.order_by("-created_at").limit(limit).prefetch_related("user")


async def resolve_fraud_log(log_id, admin: User) -> FraudLog:
    log = await FraudLog.get_or_none(id=log_id)
    if not log:
        raise FraudLogNotFound()
    if not log.resolved:
        log.resolved = True
        log.resolved_at = timezone.now()
        log.resolved_by = admin.id
        await log.save(update_fields=["resolved", "resolved_at", "resolved_by"])
    return log


async def list_flagged_users() -> list[dict]:
    return await User.filter(flagged=True).order_by("-fraud_score").annotate(
        application_count=Count("applications", distinct=True),
        fraud_log_count=Count("fraud_logs", distinct=True),
    ).values(
        "id", "email", "name", "role", "fraud_score", "created_at",
        "last_ip_address", "signup_ip", "is_suspended", "application_count", "fraud_log_count",
    )


async def clear_user_fraud_flags(user_id: str, admin: User) -> User:
    user = await User.get_or_none(id=user_id)
    if not user:
        raise UserNotFound()

    async with in_transaction():
        await FraudLog.create(
            user_id=user.id,
            type=FraudType.SCORE_RESET,
            severity=FraudSeverity.LOW,
            description=f"Fraud score {user.fraud_score} cleared by {admin.id}",
            points=0,
            metadata={"previous_score": user.fraud_score, "previous_flagged": user.flagged},
            resolved=True,
            resolved_at=timezone.now(),
            resolved_by=admin.id,
        )
        await User.filter(id=user.id).update(fraud_score=0, flagged=False)

    user.fraud_score, user.flagged = 0, False
    return user


async def recompute_fraud_score(user_id: str, persist: bool = False) -> int:
    """Rebuild the cumulative score from log points since the last reset."""
    logs = FraudLog.filter(user_id=user_id).exclude(type=FraudType.SCORE_RESET)
    last_reset = await FraudLog.filter(user_id=user_id, type=FraudType.SCORE_RESET).order_by("-created_at").first()
    if last_reset:
        logs = logs.filter(created_at__gt=last_reset.created_at)

    score = min(MAX_SCORE, sum(await logs.values_list("points", flat=True)))
    if persist:
        await User.filter(id=user_id).update(fraud_score=score)
    return score
