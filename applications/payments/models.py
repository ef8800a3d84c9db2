import uuid
from enum import Enum
from tortoise import fields, models

from app.exceptions import LedgerIntegrityError


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    ESCROWED = "ESCROWED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class Payment(models.Model):
    """Escrow ledger row, one per Application.

    `amount` is the tester share, `platform_fee` the platform share and
    `total_amount` their sum; the sum is checked on every save.
    """

    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    application = fields.OneToOneField("models.Application", related_name="payment", on_delete=fields.CASCADE)
    job = fields.ForeignKeyField("models.TestingJob", related_name="payments", on_delete=fields.CASCADE)

    amount = fields.DecimalField(max_digits=12, decimal_places=2)
    platform_fee = fields.DecimalField(max_digits=12, decimal_places=2)
    total_amount = fields.DecimalField(max_digits=12, decimal_places=2)
    currency = fields.CharField(max_length=10, default="usd")
    status = fields.CharEnumField(PaymentStatus, default=PaymentStatus.PENDING)

    # external references
    transfer_id = fields.CharField(max_length=100, null=True)
    refund_id = fields.CharField(max_length=100, null=True)
    failure_reason = fields.TextField(null=True)
    payout_attempts = fields.IntField(default=0)

    escrowed_at = fields.DatetimeField(null=True)
    completed_at = fields.DatetimeField(null=True)
    failed_at = fields.DatetimeField(null=True)
    refunded_at = fields.DatetimeField(null=True)
    # set while a cancellation compensation transfer is owed but failed
    compensation_failed_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "payments"

    def __str__(self):
        return f"Payment {self.id} {self.total_amount} ({self.status})"

    def check_totals(self):
        if self.amount + self.platform_fee != self.total_amount:
            raise LedgerIntegrityError(
                f"Payment {self.id}: {self.amount} + {self.platform_fee} != {self.total_amount}"
            )

    async def save(self, *args, **kwargs):
        self.check_totals()
        await super().save(*args, **kwargs)
