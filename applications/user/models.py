from tortoise import fields, models
from passlib.hash import bcrypt
from app.utils.generate_unique import generate_unique
from enum import Enum


class UserRole(str, Enum):
    DEVELOPER = "DEVELOPER"
    TESTER = "TESTER"
    ADMIN = "ADMIN"


ID_PREFIXES = {
    UserRole.DEVELOPER: "DEV",
    UserRole.TESTER: "TST",
    UserRole.ADMIN: "ADM",
}


class User(models.Model):
    id = fields.CharField(pk=True, max_length=60)
    name = fields.CharField(max_length=50, null=True, default="Unknown User")
    email = fields.CharField(max_length=100, unique=True)
    password = fields.CharField(max_length=128)

    role = fields.CharEnumField(UserRole)

    is_active = fields.BooleanField(default=True)
    is_suspended = fields.BooleanField(default=False)

    # payout destination
    stripe_account_id = fields.CharField(max_length=100, null=True)

    # risk state, see applications.fraud
    fraud_score = fields.IntField(default=0)
    flagged = fields.BooleanField(default=False)
    signup_ip = fields.CharField(max_length=64, null=True)
    last_ip_address = fields.CharField(max_length=64, null=True)

    # reputation aggregates, recomputed by applications.user.services
    total_tests_completed = fields.IntField(default=0)
    total_earnings = fields.DecimalField(max_digits=12, decimal_places=2, default=0)
    average_engagement_score = fields.FloatField(default=0)
    average_rating = fields.FloatField(default=0)

    last_login_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    @classmethod
    def set_password(cls, password: str) -> str:
        return bcrypt.hash(password)

    def verify_password(self, password: str) -> bool:
        return bcrypt.verify(password, self.password)

    class Meta:
        table = "users"

    def __str__(self):
        return f"{self.name} ({self.email})"

    async def save(self, *args, **kwargs):
        if not self.id:
            prefix = ID_PREFIXES.get(self.role, "USR")
            self.id = (await generate_unique(User, text=prefix, max_length=9)).upper()
        if self.password and not self.password.startswith("$2b$"):
            self.password = self.set_password(self.password)

        await super().save(*args, **kwargs)


class DeviceInfo(models.Model):
    id = fields.IntField(pk=True)
    user = fields.OneToOneField("models.User", related_name="device_info", on_delete=fields.CASCADE)
    device_model = fields.CharField(max_length=120)
    os_version = fields.CharField(max_length=32)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "device_info"


class DeviceToken(models.Model):
    id = fields.IntField(pk=True)
    user = fields.ForeignKeyField("models.User", related_name="device_tokens", on_delete=fields.CASCADE)
    token = fields.CharField(max_length=256)
    platform = fields.CharField(max_length=32)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "device_tokens"
        unique_together = ("user", "platform")
