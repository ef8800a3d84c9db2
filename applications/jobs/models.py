import uuid
from enum import Enum
from tortoise import fields, models


class JobStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TestingJob(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    developer = fields.ForeignKeyField("models.User", related_name="jobs")
    app_name = fields.CharField(max_length=120)
    app_description = fields.TextField(null=True)
    google_play_link = fields.CharField(max_length=500, null=True)

    payment_per_tester = fields.DecimalField(max_digits=12, decimal_places=2)
    testers_needed = fields.IntField()
    test_duration = fields.IntField(default=14)  # days
    total_budget = fields.DecimalField(max_digits=12, decimal_places=2)
    platform_fee = fields.DecimalField(max_digits=12, decimal_places=2)

    status = fields.CharEnumField(JobStatus, default=JobStatus.DRAFT)
    stripe_payment_intent = fields.CharField(max_length=100, null=True)

    # developer refund owed after cancellation
    refund_amount = fields.DecimalField(max_digits=12, decimal_places=2, null=True)
    refund_id = fields.CharField(max_length=100, null=True)
    refund_failure_reason = fields.TextField(null=True)
    refund_failed_at = fields.DatetimeField(null=True)

    published_at = fields.DatetimeField(null=True)
    cancelled_at = fields.DatetimeField(null=True)
    completed_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "testing_jobs"

    def __str__(self):
        return f"{self.app_name} ({self.status})"

    @property
    def escrowed_total(self):
        return self.total_budget + self.platform_fee
