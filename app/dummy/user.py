from tortoise.transactions import in_transaction

from applications.communication.notifications import NotificationSetting
from applications.user.models import User, UserRole, DeviceInfo

# ==================================================
# USERS
# ==================================================

USERS = [
    {
        "email": "admin@gmail.com",
        "name": "Admin User",
        "password": "admin",
        "role": UserRole.ADMIN,
    },
    {
        "email": "developer@gmail.com",
        "name": "Developer One",
        "password": "developer",
        "role": UserRole.DEVELOPER,
    },
    {
        "email": "tester1@gmail.com",
        "name": "Tester One",
        "password": "tester",
        "role": UserRole.TESTER,
        "stripe_account_id": "acct_test_tester1",
        "device": ("Pixel 8", "14"),
    },
    {
        "email": "tester2@gmail.com",
        "name": "Tester Two",
        "password": "tester",
        "role": UserRole.TESTER,
        "device": ("Galaxy S23", "14"),
    },
]


async def seed_users():
    async with in_transaction():
        for data in USERS:
            data = dict(data)
            device = data.pop("device", None)

            user = await User.get_or_none(email=data["email"])
            if user:
                print(f"⚠️ User exists: {user.email}")
                continue

            user = await User.create(**data)  # password hashed in save()
            await NotificationSetting.create(user=user)
            if device:
                await DeviceInfo.create(user=user, device_model=device[0], os_version=device[1])
            print(f"✅ Created {user.role.value.lower()}: {user.email} ({user.id})")
