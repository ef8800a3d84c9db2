from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
from fastapi import FastAPI

from app.config import settings
from app.exceptions import register_exception_handlers
from app.token import get_current_user
from applications.payments.gateway import get_payment_gateway
from applications.payments.models import PaymentStatus
from applications.testing.models import ApplicationStatus
from applications.user.models import UserRole
from routes.applications.routes import router as applications_router
from routes.cron.routes import router as cron_router
from routes.jobs.routes import router as jobs_router


class Actor:
    user = None


@pytest.fixture
def actor():
    return Actor()


@pytest.fixture
async def client(actor, gateway):
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(applications_router, prefix="/applications")
    app.include_router(jobs_router, prefix="/jobs")
    app.include_router(cron_router, prefix="/cron")
    app.dependency_overrides[get_current_user] = lambda: actor.user
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def test_cron_fails_closed_without_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", "")
    response = await client.post("/cron/settlement/", headers={"Authorization": "Bearer anything"})
    assert response.status_code == 503


async def test_cron_rejects_wrong_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
    assert (await client.post("/cron/settlement/")).status_code == 401
    assert (await client.get("/cron/settlement/", headers={"Authorization": "Bearer nope"})).status_code == 401


async def test_cron_runs_the_sweep(client, monkeypatch, developer, make_user, make_job, make_application, expired):
    monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
    job = await make_job(developer)
    await make_application(
        job, await make_user(), status=ApplicationStatus.TESTING, payment_status=PaymentStatus.PROCESSING, **expired
    )

    response = await client.post("/cron/settlement/", headers={"Authorization": "Bearer s3cret"})

    assert response.status_code == 200
    body = response.json()
    assert body["locked"] is False
    assert (body["processed"], body["success"]) == (1, 1)
    assert body["items"][0]["status"] == "success"


async def test_apply_and_approve_over_http(client, actor, developer, make_user, make_job):
    job = await make_job(developer)
    actor.user = await make_user()

    response = await client.post("/applications/", json={"job_id": str(job.id)})
    assert response.status_code == 201
    application_id = response.json()["id"]
    assert response.json()["status"] == "PENDING"

    actor.user = developer
    response = await client.patch(f"/applications/{application_id}/", json={"action": "approve"})
    assert response.status_code == 200
    body = response.json()
    assert body["previous_status"] == "PENDING"
    assert body["application"]["status"] == "APPROVED"
    assert body["payment"]["status"] == "ESCROWED"
    assert Decimal(str(body["payment"]["amount"])) == Decimal("10.00")

    response = await client.patch(f"/applications/{application_id}/", json={"action": "approve"})
    assert response.status_code == 409


async def test_unknown_command_is_rejected(client, actor, developer, make_user, make_job, make_application):
    job = await make_job(developer)
    application = await make_application(job, await make_user())
    actor.user = developer

    response = await client.patch(f"/applications/{application.id}/", json={"action": "promote"})
    assert response.status_code == 422


async def test_blocked_application_gets_generic_message(client, actor, developer, make_user, make_job):
    job = await make_job(developer, testers=5)
    device = ("Pixel 8", "14")
    headers = {"X-Forwarded-For": "198.51.100.23"}

    actor.user = await make_user(device=device)
    assert (await client.post("/applications/", json={"job_id": str(job.id)}, headers=headers)).status_code == 201

    actor.user = await make_user(age=timedelta(minutes=5), device=device)
    response = await client.post("/applications/", json={"job_id": str(job.id)}, headers=headers)

    assert response.status_code == 403
    assert response.json() == {"detail": "Unable to process application. Please contact support."}


async def test_developer_creates_funds_and_cancels(client, actor, developer, gateway):
    actor.user = developer

    response = await client.post(
        "/jobs/", json={"app_name": "Trail Maps", "payment_per_tester": "7.50", "testers_needed": 4}
    )
    assert response.status_code == 201
    job = response.json()
    assert Decimal(str(job["total_budget"])) == Decimal("30.00")
    assert Decimal(str(job["platform_fee"])) == Decimal("4.50")
    assert job["status"] == "DRAFT"

    response = await client.post(f"/jobs/{job['id']}/checkout/")
    assert response.status_code == 200
    assert response.json()["client_secret"] == "secret"
    assert gateway.intents[0]["amount"] == Decimal("34.50")

    response = await client.post(f"/jobs/{job['id']}/cancel/")
    assert response.status_code == 200
    legs = response.json()["result"]["legs"]
    assert legs == [{
        "kind": "refund", "recipient": developer.id, "amount": 34.5,
        "status": "skipped", "reference": None, "error": "job was never funded",
    }]


async def test_testers_cannot_create_jobs(client, actor, make_user):
    actor.user = await make_user()
    response = await client.post(
        "/jobs/", json={"app_name": "X", "payment_per_tester": "5", "testers_needed": 1}
    )
    assert response.status_code == 403


async def test_job_detail_is_owner_or_admin_only(client, actor, developer, admin, make_user, make_job):
    job = await make_job(developer)

    actor.user = await make_user(UserRole.DEVELOPER)
    response = await client.get(f"/jobs/{job.id}/")
    assert response.status_code == 403
    assert response.json() == {"detail": "Not authorized"}

    actor.user = admin
    assert (await client.get(f"/jobs/{job.id}/")).json()["id"] == str(job.id)
