"""Shared fixtures: a fresh in-memory database per test, model factories and
a payment gateway double that records every call."""
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Optional

import pytest
from tortoise import Tortoise, timezone

from app.utils.auto_routing import get_model_modules
from applications.jobs.models import TestingJob, JobStatus
from applications.jobs.services import create_job
from applications.payments.gateway import PaymentGatewayError, EscrowIntent
from applications.payments.models import PaymentStatus
from applications.payments.services import create_payment
from applications.testing.models import Application, ApplicationStatus
from applications.user.models import User, UserRole, DeviceInfo


@pytest.fixture(autouse=True)
async def db():
    await Tortoise.init(
        db_url="sqlite://:memory:",
        modules={"models": get_model_modules("applications")},
        use_tz=True,
        timezone="UTC",
    )
    await Tortoise.generate_schemas()
    yield
    await Tortoise._drop_databases()


class FakeGateway:
    def __init__(self, fail_transfers: bool = False, fail_refunds: bool = False):
        self.fail_transfers = fail_transfers
        self.fail_refunds = fail_refunds
        self.transfers = []
        self.refunds = []
        self.intents = []

    async def create_escrow_intent(self, amount, *, job_id, developer_id, idempotency_key):
        self.intents.append({"amount": amount, "job_id": job_id, "idempotency_key": idempotency_key})
        return EscrowIntent(reference=f"pi_{len(self.intents)}", client_secret="secret")

    async def transfer(self, amount, destination, *, idempotency_key, transfer_group=None, metadata=None):
        if self.fail_transfers:
            raise PaymentGatewayError("Your card was declined")
        self.transfers.append({
            "amount": amount,
            "destination": destination,
            "idempotency_key": idempotency_key,
            "metadata": metadata,
        })
        return f"tr_{len(self.transfers)}"

    async def refund(self, payment_intent_id, amount, *, idempotency_key):
        if self.fail_refunds:
            raise PaymentGatewayError("Refund rejected")
        self.refunds.append({
            "payment_intent": payment_intent_id,
            "amount": amount,
            "idempotency_key": idempotency_key,
        })
        return f"re_{len(self.refunds)}"


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def make_user():
    async def _make(
        role: UserRole = UserRole.TESTER,
        age: timedelta = timedelta(days=30),
        device: Optional[tuple[str, str]] = None,
        **fields,
    ) -> User:
        fields.setdefault("email", f"{uuid.uuid4().hex[:10]}@example.com")
        fields.setdefault("name", fields["email"].split("@")[0])
        if role == UserRole.TESTER:
            fields.setdefault("stripe_account_id", f"acct_{uuid.uuid4().hex[:8]}")
        user = await User.create(password="secret", role=role, **fields)

        # auto_now_add ignores a passed value, so age the row afterwards
        created_at = timezone.now() - age
        await User.filter(id=user.id).update(created_at=created_at)
        user.created_at = created_at

        if device:
            await DeviceInfo.create(user=user, device_model=device[0], os_version=device[1])
        return user
    return _make


@pytest.fixture
async def developer(make_user):
    return await make_user(UserRole.DEVELOPER)


@pytest.fixture
async def admin(make_user):
    return await make_user(UserRole.ADMIN)


@pytest.fixture
def make_job():
    async def _make(
        developer: User,
        rate: Decimal = Decimal("10.00"),
        testers: int = 2,
        status: JobStatus = JobStatus.ACTIVE,
        duration: int = 14,
    ) -> TestingJob:
        job = await create_job(developer, "Budget Buddy", rate, testers, test_duration=duration)
        if status != JobStatus.DRAFT:
            await TestingJob.filter(id=job.id).update(status=status, stripe_payment_intent=f"pi_{job.id.hex[:8]}")
        return await TestingJob.get(id=job.id)
    return _make


@pytest.fixture
def make_application():
    """Place an application directly in a lifecycle state, with its ledger row."""
    async def _make(
        job: TestingJob,
        tester: User,
        status: ApplicationStatus = ApplicationStatus.PENDING,
        payment_status: Optional[PaymentStatus] = PaymentStatus.PENDING,
        **fields,
    ) -> Application:
        application = await Application.create(job=job, tester=tester, status=status, **fields)
        if payment_status is not None:
            await create_payment(application, job, status=payment_status)
        return application
    return _make


@pytest.fixture
def expired():
    """A testing window that closed yesterday."""
    now = timezone.now()
    return {
        "testing_start_date": now - timedelta(days=15),
        "testing_end_date": now - timedelta(days=1),
    }
