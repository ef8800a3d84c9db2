import asyncio

from applications.user.models import User, DeviceToken
from applications.communication.notifications import PushNotification
from app.utils.firebase_push import send_push


async def push_notify(user: User, title: str, body: str, url: str | None = None) -> PushNotification:
    notification = await PushNotification.create(user=user, title=title, body=body, url=url)
    for device in await DeviceToken.filter(user_id=user.id):
        await asyncio.to_thread(send_push, device.token, title, body, url)
    return notification
