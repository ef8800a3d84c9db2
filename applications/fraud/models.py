import uuid
from enum import Enum
from tortoise import fields, models


class FraudType(str, Enum):
    DUPLICATE_IP = "duplicate_ip"
    SAME_DEVICE = "same_device"
    RAPID_APPLICATIONS = "rapid_applications"
    SUSPICIOUS_PATTERN = "suspicious_pattern"
    NEW_ACCOUNT_SPAM = "new_account_spam"
    COLLUSION_SUSPECTED = "collusion_suspected"
    SCORE_RESET = "score_reset"


class FraudSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FraudLog(models.Model):
    """Append-only risk audit trail.

    Only the resolution fields are ever updated. `points` is the score the
    event contributed, so a user's cumulative score can be rebuilt from logs.
    """

    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    user = fields.ForeignKeyField("models.User", related_name="fraud_logs", null=True, on_delete=fields.SET_NULL)
    type = fields.CharEnumField(FraudType, max_length=40)
    severity = fields.CharEnumField(FraudSeverity, max_length=16)
    description = fields.TextField()
    ip_address = fields.CharField(max_length=64, null=True)
    points = fields.IntField(default=0)
    metadata = fields.JSONField(null=True)

    resolved = fields.BooleanField(default=False)
    resolved_at = fields.DatetimeField(null=True)
    resolved_by = fields.CharField(max_length=60, null=True)

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "fraud_logs"
        ordering = ["-created_at"]
