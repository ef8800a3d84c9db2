"""Notification outbox.

Transitions queue notifications here instead of sending them inline; the
dispatcher in tasks/notify.py delivers them with exponential backoff. Queueing
never raises into the caller.
"""
import logging
from datetime import timedelta
from typing import Iterable, Optional

from tortoise import timezone

from app.config import settings
from app.utils.notify.email_notify import email_notify
from app.utils.notify.push_notify import push_notify
from applications.communication.models import NotificationOutbox, NotificationChannel, OutboxStatus
from applications.communication.notifications import NotificationSetting
from applications.user.models import User, UserRole

logger = logging.getLogger(__name__)

DEFAULT_CHANNELS = (NotificationChannel.EMAIL, NotificationChannel.PUSH)


async def enqueue_notification(
    user_id: str,
    event: str,
    subject: str,
    body: str,
    url: Optional[str] = None,
    channels: Iterable[NotificationChannel] = DEFAULT_CHANNELS,
) -> int:
    queued = 0
    try:
        for channel in channels:
            await NotificationOutbox.create(
                user_id=user_id,
                channel=channel,
                event=event,
                subject=subject,
                body=body,
                url=url,
                next_attempt_at=timezone.now(),
            )
            queued += 1
    except Exception:
        logger.exception("Failed to queue %s notification for %s", event, user_id)
    return queued


async def notify_admins(event: str, subject: str, body: str) -> int:
    queued = 0
    for admin_id in await User.filter(role=UserRole.ADMIN, is_active=True).values_list("id", flat=True):
        queued += await enqueue_notification(admin_id, event, subject, body, channels=(NotificationChannel.EMAIL,))
    return queued


def retry_delay(attempts: int) -> timedelta:
    return timedelta(seconds=settings.NOTIFY_RETRY_BASE_SECONDS * (2 ** max(attempts - 1, 0)))


async def _deliver(message: NotificationOutbox):
    user = await User.get(id=message.user_id)
    preference = await NotificationSetting.get_or_none(user_id=user.id)

    if message.channel == NotificationChannel.EMAIL:
        if preference and not preference.email_notification:
            return
        await email_notify(user.email, message.subject, message.body)
    else:
        if preference and not preference.push_notification:
            return
        await push_notify(user, message.subject, message.body, message.url)


async def dispatch_pending(limit: Optional[int] = None) -> dict:
    now = timezone.now()
    batch = await NotificationOutbox.filter(
        status=OutboxStatus.PENDING,
        next_attempt_at__lte=now,
    ).order_by("created_at").limit(limit or settings.NOTIFY_BATCH_SIZE)

    sent = failed = 0
    for message in batch:
        message.attempts += 1
        try:
            await _deliver(message)
        except Exception as e:
            logger.warning("Notification %s attempt %s failed: %s", message.id, message.attempts, e)
            message.last_error = str(e)
            if message.attempts >= settings.NOTIFY_MAX_ATTEMPTS:
                message.status = OutboxStatus.FAILED
                failed += 1
            else:
                message.next_attempt_at = now + retry_delay(message.attempts)
        else:
            message.status = OutboxStatus.SENT
            message.sent_at = timezone.now()
            sent += 1
        await message.save()

    return {"picked": len(batch), "sent": sent, "failed": failed}
