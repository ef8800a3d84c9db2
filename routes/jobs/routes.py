from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from app.auth import role_required
from app.exceptions import NotAuthorized
from applications.jobs.models import JobStatus
from applications.jobs.services import create_job, create_checkout, cancel_job, get_job
from applications.payments.gateway import PaymentGatewayError, get_payment_gateway
from applications.user.models import User, UserRole

router = APIRouter(tags=["Jobs"])


class JobCreate(BaseModel):
    app_name: str = Field(..., max_length=120)
    app_description: Optional[str] = None
    google_play_link: Optional[str] = Field(default=None, max_length=500)
    payment_per_tester: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    testers_needed: int = Field(..., gt=0, le=1000)
    test_duration: Optional[int] = Field(default=None, gt=0, le=90)


class JobOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    developer_id: str
    app_name: str
    payment_per_tester: Decimal
    testers_needed: int
    test_duration: int
    total_budget: Decimal
    platform_fee: Decimal
    status: JobStatus


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=JobOut)
async def create_testing_job(
    data: JobCreate,
    user: User = Depends(role_required(UserRole.DEVELOPER)),
):
    job = await create_job(user, **data.model_dump())
    return JobOut.model_validate(job)


@router.get("/{job_id}/", response_model=JobOut)
async def job_detail(job_id: UUID, user: User = Depends(role_required(UserRole.DEVELOPER, allow_admin=True))):
    job = await get_job(job_id)
    if user.role != UserRole.ADMIN and job.developer_id != user.id:
        raise NotAuthorized()
    return JobOut.model_validate(job)


@router.post("/{job_id}/checkout/")
async def job_checkout(
    job_id: UUID,
    user: User = Depends(role_required(UserRole.DEVELOPER)),
    gateway=Depends(get_payment_gateway),
):
    try:
        job, intent = await create_checkout(job_id, user, gateway)
    except PaymentGatewayError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    return {
        "job_id": str(job.id),
        "amount": job.escrowed_total,
        "payment_intent": intent.reference,
        "client_secret": intent.client_secret,
    }


@router.post("/{job_id}/cancel/")
async def cancel_testing_job(
    job_id: UUID,
    user: User = Depends(role_required(UserRole.DEVELOPER)),
    gateway=Depends(get_payment_gateway),
):
    result = await cancel_job(job_id, user, gateway)
    return {"status": "success", "result": result}
