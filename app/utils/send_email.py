import asyncio
import logging
from fastapi_mail import FastMail, MessageSchema, ConnectionConfig
from pydantic import EmailStr
from typing import Optional, List, Union

from app.config import settings

logger = logging.getLogger(__name__)

# ==================================================
# MAIL CONFIG
# ==================================================
_fast_mail: Optional[FastMail] = None


def get_mailer() -> FastMail:
    global _fast_mail
    if _fast_mail is None:
        conf = ConnectionConfig(
            MAIL_USERNAME=settings.EMAIL_HOST_USER,
            MAIL_PASSWORD=settings.EMAIL_HOST_PASSWORD,
            MAIL_FROM=settings.DEFAULT_FROM_EMAIL or settings.EMAIL_HOST_USER,
            MAIL_PORT=settings.EMAIL_PORT,
            MAIL_SERVER=settings.EMAIL_HOST,
            MAIL_STARTTLS=True,
            MAIL_SSL_TLS=False,
            USE_CREDENTIALS=True,
        )
        _fast_mail = FastMail(conf)
    return _fast_mail


# ==================================================
# SEND EMAIL FUNCTION
# ==================================================
async def send_email(
    *,
    subject: str,
    to: Union[EmailStr, List[EmailStr]],
    message: Optional[str] = None,
    html_message: Optional[str] = None,

    # retry
    retries: int = 0,
    delay: int = 2,
) -> bool:
    body = html_message or message
    if not body:
        raise ValueError("Either message or html_message must be provided")
    subtype = "html" if html_message else "plain"

    recipients = [to] if isinstance(to, str) else list(to)

    msg = MessageSchema(
        subject=subject,
        recipients=recipients,
        body=body,
        subtype=subtype,
    )

    fast_mail = get_mailer()

    for attempt in range(1, retries + 2):
        try:
            await fast_mail.send_message(msg)
            logger.info("Email sent to %s: %s", recipients, subject)
            return True

        except Exception as e:
            logger.warning("Email failed (attempt %s/%s): %s", attempt, retries + 1, e)
            if attempt <= retries:
                await asyncio.sleep(delay)
            else:
                raise
