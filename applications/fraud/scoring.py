"""Application-time risk scoring.

Every signal is evaluated on every call so the audit trail is complete even
when the application ends up blocked. Signal gathering reads the database;
`evaluate_signals` and `assess` are pure over a `RiskContext`.

    account younger than 1 hour                        +20
    more than 5 applications in the trailing hour      +30
    same IP as another applicant to the job            +40
    3 or more applications to the same developer       +25
    same device as another applicant to the job        +35
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from tortoise import timezone
from tortoise.transactions import in_transaction

from app.config import settings
from applications.fraud.models import FraudLog, FraudType, FraudSeverity
from applications.jobs.models import TestingJob
from applications.testing.models import Application
from applications.user.models import User, DeviceInfo

logger = logging.getLogger(__name__)

MAX_SCORE = 100
NEW_ACCOUNT_AGE = timedelta(hours=1)
RAPID_WINDOW = timedelta(hours=1)
RAPID_APPLICATION_LIMIT = 5
SAME_DEVELOPER_LIMIT = 3

POINTS = {
    FraudType.NEW_ACCOUNT_SPAM: 20,
    FraudType.RAPID_APPLICATIONS: 30,
    FraudType.DUPLICATE_IP: 40,
    FraudType.COLLUSION_SUSPECTED: 25,
    FraudType.SAME_DEVICE: 35,
}


@dataclass(frozen=True)
class RiskContext:
    tester_id: str
    job_id: str
    job_name: str
    developer_id: str
    developer_email: str
    account_age: timedelta
    recent_application_count: int
    ip_address: Optional[str] = None
    same_ip_tester_ids: tuple[str, ...] = ()
    same_developer_job_ids: tuple[str, ...] = ()
    device_model: Optional[str] = None
    same_device_user_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class RiskSignal:
    type: FraudType
    severity: FraudSeverity
    points: int
    reason: str
    description: str
    metadata: dict = field(default_factory=dict)


@dataclass
class RiskAssessment:
    score: int
    reasons: list[str]
    signals: list[RiskSignal] = field(default_factory=list)
    is_suspicious: bool = False
    blocked: bool = False
    cumulative_score: Optional[int] = None
    flagged: Optional[bool] = None


def evaluate_signals(ctx: RiskContext) -> list[RiskSignal]:
    signals = []

    if ctx.account_age < NEW_ACCOUNT_AGE:
        signals.append(RiskSignal(
            type=FraudType.NEW_ACCOUNT_SPAM,
            severity=FraudSeverity.LOW,
            points=POINTS[FraudType.NEW_ACCOUNT_SPAM],
            reason="Account created less than 1 hour ago",
            description=f"Account applied to {ctx.job_name} within an hour of signing up",
            metadata={"job_id": ctx.job_id, "account_age_seconds": int(ctx.account_age.total_seconds())},
        ))

    if ctx.recent_application_count > RAPID_APPLICATION_LIMIT:
        signals.append(RiskSignal(
            type=FraudType.RAPID_APPLICATIONS,
            severity=FraudSeverity.MEDIUM,
            points=POINTS[FraudType.RAPID_APPLICATIONS],
            reason=f"{ctx.recent_application_count} applications in the last hour",
            description=f"{ctx.recent_application_count} applications in the last hour",
            metadata={"job_id": ctx.job_id, "count": ctx.recent_application_count},
        ))

    if ctx.ip_address and ctx.same_ip_tester_ids:
        signals.append(RiskSignal(
            type=FraudType.DUPLICATE_IP,
            severity=FraudSeverity.HIGH,
            points=POINTS[FraudType.DUPLICATE_IP],
            reason="Same IP address used by another applicant for this job",
            description=(
                f"Same IP ({ctx.ip_address}) used by {len(ctx.same_ip_tester_ids) + 1} "
                f"testers for job {ctx.job_name}"
            ),
            metadata={"job_id": ctx.job_id, "other_testers": list(ctx.same_ip_tester_ids)},
        ))

    if len(ctx.same_developer_job_ids) >= SAME_DEVELOPER_LIMIT:
        count = len(ctx.same_developer_job_ids)
        signals.append(RiskSignal(
            type=FraudType.COLLUSION_SUSPECTED,
            severity=FraudSeverity.MEDIUM,
            points=POINTS[FraudType.COLLUSION_SUSPECTED],
            reason=f"Applied to {count} jobs from the same developer",
            description=f"Tester applied to {count} jobs from developer {ctx.developer_email}",
            metadata={"developer_id": ctx.developer_id, "job_ids": list(ctx.same_developer_job_ids)},
        ))

    if ctx.device_model and ctx.same_device_user_ids:
        signals.append(RiskSignal(
            type=FraudType.SAME_DEVICE,
            severity=FraudSeverity.HIGH,
            points=POINTS[FraudType.SAME_DEVICE],
            reason="Same device info as another applicant",
            description=f"Same device ({ctx.device_model}) used by multiple testers for job {ctx.job_name}",
            metadata={"device": ctx.device_model, "other_users": list(ctx.same_device_user_ids)},
        ))

    return signals


def assess(ctx: RiskContext) -> RiskAssessment:
    signals = evaluate_signals(ctx)
    score = min(MAX_SCORE, sum(s.points for s in signals))
    return RiskAssessment(
        score=score,
        reasons=[s.reason for s in signals],
        signals=signals,
        is_suspicious=score >= settings.FRAUD_SUSPICIOUS_SCORE,
        blocked=score >= settings.FRAUD_BLOCK_SCORE,
    )


def accumulate(previous: int, score: int) -> tuple[int, bool]:
    cumulative = min(MAX_SCORE, previous + score)
    return cumulative, cumulative >= settings.FRAUD_FLAG_SCORE


async def gather_risk_context(
    tester: User, job: TestingJob, ip_address: Optional[str], now: datetime
) -> RiskContext:
    recent = await Application.filter(tester_id=tester.id, created_at__gt=now - RAPID_WINDOW).count()

    same_ip = []
    if ip_address:
        same_ip = await Application.filter(job_id=job.id, ip_address=ip_address).exclude(
            tester_id=tester.id
        ).values_list("tester_id", flat=True)

    same_developer = await Application.filter(
        tester_id=tester.id, job__developer_id=job.developer_id
    ).values_list("job_id", flat=True)

    device = await DeviceInfo.get_or_none(user_id=tester.id)
    same_device = []
    if device:
        lookalikes = await DeviceInfo.filter(
            device_model=device.device_model, os_version=device.os_version
        ).exclude(user_id=tester.id).values_list("user_id", flat=True)
        if lookalikes:
            same_device = await Application.filter(
                job_id=job.id, tester_id__in=list(lookalikes)
            ).values_list("tester_id", flat=True)

    return RiskContext(
        tester_id=tester.id,
        job_id=str(job.id),
        job_name=job.app_name,
        developer_id=job.developer_id,
        developer_email=job.developer.email,
        account_age=now - tester.created_at,
        recent_application_count=recent,
        ip_address=ip_address,
        same_ip_tester_ids=tuple(sorted({str(t) for t in same_ip})),
        same_developer_job_ids=tuple(str(j) for j in same_developer),
        device_model=device.device_model if device else None,
        same_device_user_ids=tuple(sorted({str(u) for u in same_device})),
    )


async def check_application_risk(
    tester_id: str, job_id, ip_address: Optional[str], now: Optional[datetime] = None
) -> RiskAssessment:
    """Score an application attempt and persist the outcome.

    Writes one FraudLog per fired signal and adds the score to the tester's
    cumulative fraud_score. Blocking is left to the caller.
    """
    now = now or timezone.now()
    tester = await User.get_or_none(id=tester_id)
    job = await TestingJob.get_or_none(id=job_id).prefetch_related("developer")
    if not tester or not job:
        return RiskAssessment(score=0, reasons=[])

    assessment = assess(await gather_risk_context(tester, job, ip_address, now))

    async with in_transaction():
        for signal in assessment.signals:
            await FraudLog.create(
                user_id=tester.id,
                type=signal.type,
                severity=signal.severity,
                description=signal.description,
                ip_address=ip_address,
                points=signal.points,
                metadata=signal.metadata,
            )

        cumulative, flag = accumulate(tester.fraud_score, assessment.score)
        updates = {"last_ip_address": ip_address} if ip_address else {}
        if assessment.score > 0:
            updates.update(fraud_score=cumulative, flagged=tester.flagged or flag)
        if updates:
            await User.filter(id=tester.id).update(**updates)

    assessment.cumulative_score = cumulative if assessment.score > 0 else tester.fraud_score
    assessment.flagged = tester.flagged or (flag and assessment.score > 0)

    if assessment.score:
        logger.info(
            "Risk score %s for tester %s on job %s (cumulative %s): %s",
            assessment.score, tester.id, job.id, assessment.cumulative_score, "; ".join(assessment.reasons),
        )
    return assessment
