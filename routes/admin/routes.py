from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.auth import role_required
from applications.fraud.models import FraudSeverity
from applications.fraud.services import (
    get_fraud_stats, get_fraud_logs, resolve_fraud_log, list_flagged_users, clear_user_fraud_flags,
    recompute_fraud_score,
)
from applications.jobs.services import list_failed_refunds, retry_compensation, retry_refund
from applications.payments.gateway import get_payment_gateway
from applications.payments.models import PaymentStatus
from applications.payments.services import list_failed_payments, retry_payment, process_pending_payouts
from applications.user.models import User, UserRole
from applications.user.services import recompute_reputation

router = APIRouter(tags=["Admin"])

admin_required = role_required(UserRole.ADMIN)


#===============================================================
#                   Fraud review
#===============================================================
@router.get("/fraud/stats/")
async def fraud_stats(user: User = Depends(admin_required)):
    return await get_fraud_stats()


@router.get("/fraud/logs/")
async def fraud_logs(
    resolved: Optional[bool] = Query(None),
    severity: Optional[FraudSeverity] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    user: User = Depends(admin_required),
):
    logs = await get_fraud_logs(resolved=resolved, severity=severity, limit=limit)
    return {
        "logs": [
            {
                "id": str(log.id),
                "user_id": log.user_id,
                "user_email": log.user.email if log.user else None,
                "type": log.type,
                "severity": log.severity,
                "description": log.description,
                "ip_address": log.ip_address,
                "points": log.points,
                "metadata": log.metadata,
                "resolved": log.resolved,
                "resolved_at": log.resolved_at,
                "resolved_by": log.resolved_by,
                "created_at": log.created_at,
            }
            for log in logs
        ]
    }


@router.post("/fraud/logs/{log_id}/resolve/")
async def resolve_log(log_id: UUID, user: User = Depends(admin_required)):
    log = await resolve_fraud_log(log_id, user)
    return {"status": "success", "id": str(log.id), "resolved_at": log.resolved_at}


@router.get("/fraud/users/flagged/")
async def flagged_users(user: User = Depends(admin_required)):
    return {"users": await list_flagged_users()}


@router.post("/users/{user_id}/clear-flags/")
async def clear_flags(user_id: str, user: User = Depends(admin_required)):
    cleared = await clear_user_fraud_flags(user_id, user)
    return {"status": "success", "user_id": cleared.id, "fraud_score": cleared.fraud_score}


@router.get("/users/{user_id}/fraud-score/")
async def audit_fraud_score(user_id: str, user: User = Depends(admin_required)):
    target = await User.get_or_none(id=user_id)
    recomputed = await recompute_fraud_score(user_id)
    return {
        "user_id": user_id,
        "stored": target.fraud_score if target else None,
        "recomputed": recomputed,
    }


#===============================================================
#                   Payments
#===============================================================
@router.get("/payments/failed/")
async def failed_payments(limit: int = Query(100, ge=1, le=500), user: User = Depends(admin_required)):
    payments = await list_failed_payments(limit)
    refunds = await list_failed_refunds(limit)
    return {
        "payments": [
            {
                "id": str(p.id),
                "kind": "compensation" if p.status == PaymentStatus.REFUNDED else "payout",
                "application_id": str(p.application_id),
                "tester_id": p.application.tester_id,
                "tester_email": p.application.tester.email,
                "app_name": p.job.app_name,
                "amount": p.amount,
                "failure_reason": p.failure_reason,
                "payout_attempts": p.payout_attempts,
                "failed_at": p.compensation_failed_at or p.failed_at,
            }
            for p in payments
        ],
        "refunds": [
            {
                "job_id": str(job.id),
                "developer_id": job.developer_id,
                "app_name": job.app_name,
                "amount": job.refund_amount,
                "failure_reason": job.refund_failure_reason,
                "failed_at": job.refund_failed_at,
            }
            for job in refunds
        ],
    }


@router.post("/payments/{payment_id}/retry/")
async def retry_failed_payment(payment_id: UUID, user: User = Depends(admin_required)):
    payment = await retry_payment(payment_id)
    return {"status": "success", "payment_id": str(payment.id), "payment_status": payment.status}


@router.post("/payments/{payment_id}/retry-compensation/")
async def retry_failed_compensation(
    payment_id: UUID,
    user: User = Depends(admin_required),
    gateway=Depends(get_payment_gateway),
):
    return {"payment_id": str(payment_id), "leg": await retry_compensation(payment_id, gateway)}


@router.post("/jobs/{job_id}/retry-refund/")
async def retry_failed_refund(
    job_id: UUID,
    user: User = Depends(admin_required),
    gateway=Depends(get_payment_gateway),
):
    return {"job_id": str(job_id), "leg": await retry_refund(job_id, gateway)}


@router.post("/payouts/process/")
async def process_payouts(user: User = Depends(admin_required), gateway=Depends(get_payment_gateway)):
    results = await process_pending_payouts(gateway)
    return {
        "processed": len(results),
        "success": sum(1 for r in results if r.status == "success"),
        "failed": sum(1 for r in results if r.status == "failed"),
        "results": results,
    }


@router.post("/testers/{tester_id}/reputation/")
async def refresh_reputation(tester_id: str, user: User = Depends(admin_required)):
    return await recompute_reputation(tester_id)
