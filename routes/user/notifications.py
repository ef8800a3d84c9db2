from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from applications.communication.notifications import PushNotification, NotificationSetting
from applications.user.models import User, DeviceToken, DeviceInfo
from app.token import get_current_user

router = APIRouter(tags=["Notifications"])


class DeviceTokenIn(BaseModel):
    token: str = Field(..., max_length=256)
    platform: str = Field(..., max_length=32)


class DeviceInfoIn(BaseModel):
    device_model: str = Field(..., max_length=120)
    os_version: str = Field(..., max_length=32)


class NotificationSettingIn(BaseModel):
    push_notification: Optional[bool] = None
    email_notification: Optional[bool] = None


@router.post("/save_token/")
async def save_device_token(data: DeviceTokenIn, user: User = Depends(get_current_user)):
    await DeviceToken.update_or_create(
        user_id=user.id, platform=data.platform, defaults={"token": data.token}
    )
    return {"status": "success"}


@router.post("/device-info/")
async def save_device_info(data: DeviceInfoIn, user: User = Depends(get_current_user)):
    """The device fingerprint the risk checks compare between applicants."""
    await DeviceInfo.update_or_create(user_id=user.id, defaults=data.model_dump())
    return {"status": "success"}


@router.get("/notification-settings/")
async def get_notification_settings(user: User = Depends(get_current_user)):
    setting, _ = await NotificationSetting.get_or_create(user_id=user.id)
    return {
        "push_notification": setting.push_notification,
        "email_notification": setting.email_notification,
    }


@router.patch("/notification-settings/")
async def update_notification_settings(data: NotificationSettingIn, user: User = Depends(get_current_user)):
    setting, _ = await NotificationSetting.get_or_create(user_id=user.id)
    for key, value in data.model_dump(exclude_none=True).items():
        setattr(setting, key, value)
    await setting.save()
    return {
        "push_notification": setting.push_notification,
        "email_notification": setting.email_notification,
    }


@router.get("/notifications/")
async def get_notifications(limit: int = 50, user: User = Depends(get_current_user)):
    notifications = await PushNotification.filter(user_id=user.id).order_by("-created_at").limit(limit)
    return [
        {
            "id": str(n.id),
            "title": n.title,
            "body": n.body,
            "url": n.url,
            "is_read": n.is_read,
            "created_at": n.created_at,
        }
        for n in notifications
    ]


@router.post("/notifications/{ntf_id}/read/")
async def mark_notification_read(ntf_id: str, user: User = Depends(get_current_user)):
    updated = await PushNotification.filter(id=ntf_id, user_id=user.id).update(is_read=True)
    if not updated:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"status": "success"}
