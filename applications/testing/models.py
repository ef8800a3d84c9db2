import uuid
from enum import Enum
from tortoise import fields, models
from tortoise.validators import MinValueValidator, MaxValueValidator


class ApplicationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    OPTED_IN = "OPTED_IN"
    VERIFIED = "VERIFIED"
    TESTING = "TESTING"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


TERMINAL_STATUSES = {ApplicationStatus.COMPLETED, ApplicationStatus.REJECTED}


class Application(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    job = fields.ForeignKeyField("models.TestingJob", related_name="applications", on_delete=fields.CASCADE)
    tester = fields.ForeignKeyField("models.User", related_name="applications", on_delete=fields.CASCADE)
    status = fields.CharEnumField(ApplicationStatus, default=ApplicationStatus.PENDING)

    # request metadata kept for fraud review
    ip_address = fields.CharField(max_length=64, null=True)
    user_agent = fields.TextField(null=True)

    verification_image = fields.CharField(max_length=500, null=True)
    opt_in_verified = fields.BooleanField(default=False)
    verified_at = fields.DatetimeField(null=True)
    testing_start_date = fields.DatetimeField(null=True)
    testing_end_date = fields.DatetimeField(null=True)
    completed_at = fields.DatetimeField(null=True)
    rejection_reason = fields.TextField(null=True)

    engagement_score = fields.FloatField(null=True)
    rating = fields.IntField(validators=[MinValueValidator(1), MaxValueValidator(5)], null=True)
    feedback = fields.TextField(null=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "applications"
        unique_together = ("job", "tester")

    def __str__(self):
        return f"Application {self.id} ({self.status})"
