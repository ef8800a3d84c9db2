import uuid
from enum import Enum
from tortoise import models, fields


class NotificationChannel(str, Enum):
    EMAIL = "email"
    PUSH = "push"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationOutbox(models.Model):
    """Outbound notification waiting for delivery by tasks/notify.py."""

    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    user = fields.ForeignKeyField("models.User", related_name="outbox_messages", on_delete=fields.CASCADE)
    channel = fields.CharEnumField(NotificationChannel, max_length=16)
    event = fields.CharField(max_length=50)
    subject = fields.CharField(max_length=255)
    body = fields.TextField()
    url = fields.CharField(max_length=500, null=True)

    status = fields.CharEnumField(OutboxStatus, max_length=16, default=OutboxStatus.PENDING)
    attempts = fields.IntField(default=0)
    next_attempt_at = fields.DatetimeField(null=True)
    last_error = fields.TextField(null=True)

    sent_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "notification_outbox"
