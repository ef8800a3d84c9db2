from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status

from app.auth import role_required, login_required
from applications.payments.gateway import get_payment_gateway
from applications.testing.schemas import (
    ApplyIn, CommandIn, SubmitVerificationIn, ApplicationOut, PaymentSummary, TransitionOut,
)
from applications.testing.services import apply_to_job, execute_command, submit_verification, TransitionResult
from applications.user.models import User, UserRole

router = APIRouter(tags=["Applications"])


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def to_out(result: TransitionResult) -> TransitionOut:
    return TransitionOut(
        application=ApplicationOut.model_validate(result.application),
        previous_status=result.previous_status,
        payment=PaymentSummary.model_validate(result.payment) if result.payment else None,
        payout_status=result.payout.status if result.payout else None,
        payout_error=result.payout.error if result.payout else None,
    )


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=ApplicationOut)
async def apply(
    data: ApplyIn,
    request: Request,
    user: User = Depends(role_required(UserRole.TESTER)),
):
    application = await apply_to_job(
        data.job_id,
        user,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return ApplicationOut.model_validate(application)


@router.patch("/{application_id}/", response_model=TransitionOut)
async def update_application(
    application_id: UUID,
    command: CommandIn,
    user: User = Depends(login_required),
    gateway=Depends(get_payment_gateway),
):
    result = await execute_command(application_id, command.root, user, gateway)
    return to_out(result)


@router.post("/{application_id}/verification/", response_model=TransitionOut)
async def submit_verification_image(
    application_id: UUID,
    data: SubmitVerificationIn,
    user: User = Depends(role_required(UserRole.TESTER)),
):
    result = await submit_verification(application_id, user, str(data.verification_image))
    return to_out(result)
