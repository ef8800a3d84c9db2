import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request

from app.auth import role_required
from app.config import settings
from applications.jobs.services import activate_job
from applications.payments.gateway import PaymentGatewayError, get_payment_gateway
from applications.payments.services import record_transfer_webhook
from applications.user.models import User, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Payments"])


@router.post("/tester/stripe/create-account/")
async def create_tester_stripe_account(
    user: User = Depends(role_required(UserRole.TESTER)),
    gateway=Depends(get_payment_gateway),
):
    if user.stripe_account_id:
        return {"account_id": user.stripe_account_id}

    try:
        user.stripe_account_id = await gateway.create_connected_account(user.email)
    except PaymentGatewayError as e:
        raise HTTPException(502, str(e))
    await user.save(update_fields=["stripe_account_id"])
    return {"account_id": user.stripe_account_id}


@router.post("/tester/stripe/onboarding-link/")
async def get_onboarding_link(
    user: User = Depends(role_required(UserRole.TESTER)),
    gateway=Depends(get_payment_gateway),
):
    if not user.stripe_account_id:
        raise HTTPException(400, "Stripe account not created")

    try:
        url = await gateway.onboarding_link(
            user.stripe_account_id,
            refresh_url=f"{settings.BASE_URL}stripe/refresh",
            return_url=f"{settings.BASE_URL}stripe/success",
        )
    except PaymentGatewayError as e:
        raise HTTPException(502, str(e))
    return {"url": url}


@router.get("/tester/stripe/account-is-ready/")
async def account_ready(
    user: User = Depends(role_required(UserRole.TESTER)),
    gateway=Depends(get_payment_gateway),
):
    if not user.stripe_account_id:
        return {"ready": False}
    try:
        return {"ready": await gateway.payouts_enabled(user.stripe_account_id)}
    except PaymentGatewayError as e:
        raise HTTPException(502, str(e))


@router.post("/stripe/webhook/")
async def stripe_webhook(request: Request):
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("Rejected Stripe webhook: %s", e)
        raise HTTPException(400, "Invalid webhook")

    obj = event["data"]["object"]
    metadata = obj.get("metadata") or {}

    if event["type"] == "payment_intent.succeeded":
        if metadata.get("type") == "job_payment" and metadata.get("job_id"):
            await activate_job(metadata["job_id"], obj["id"])

    elif event["type"] == "transfer.created":
        if metadata.get("application_id") and metadata.get("type") != "cancellation_compensation":
            await record_transfer_webhook(metadata["application_id"], obj["id"])

    return {"status": "success"}
