from app.utils.send_email import send_email


async def email_notify(to: str, subject: str, message: str):
    await send_email(
        subject=subject,
        to=to,
        message=message,
        html_message=f"<p>{message}</p>",
    )
