from decimal import Decimal

from tortoise import timezone

from applications.jobs.models import TestingJob, JobStatus
from applications.jobs.services import create_job
from applications.user.models import User, UserRole

JOBS = [
    {"app_name": "Budget Buddy", "payment_per_tester": Decimal("10.00"), "testers_needed": 12},
    {"app_name": "Trail Maps", "payment_per_tester": Decimal("7.50"), "testers_needed": 20, "test_duration": 7},
]


async def seed_jobs():
    developer = await User.filter(role=UserRole.DEVELOPER).first()
    if not developer:
        print("❌ No developer found, seed users first")
        return

    for data in JOBS:
        if await TestingJob.exists(developer_id=developer.id, app_name=data["app_name"]):
            print(f"⚠️ Job exists: {data['app_name']}")
            continue
        job = await create_job(developer, **data)
        # seeded jobs skip checkout and are published straight away
        await TestingJob.filter(id=job.id).update(status=JobStatus.ACTIVE, published_at=timezone.now())
        print(f"✅ Created job: {job.app_name} ({job.id})")
