import json
import base64
import logging
from app.config import settings

import firebase_admin
from firebase_admin import credentials, messaging

logger = logging.getLogger(__name__)


def get_firebase_app():
    """Initialise firebase on first use; None when no key is configured."""
    if not settings.FIREBASE_KEY_BASE64:
        return None
    try:
        return firebase_admin.get_app()
    except ValueError:
        firebase_key = settings.FIREBASE_KEY_BASE64.replace("\n", "").replace("\r", "")
        firebase_json = json.loads(base64.b64decode(firebase_key))
        app = firebase_admin.initialize_app(credentials.Certificate(firebase_json))
        logger.info("Firebase initialized %s", app.name)
        return app


def send_push(token: str, title: str, body: str, url: str | None = None) -> str | None:
    app = get_firebase_app()
    if app is None:
        logger.debug("Firebase not configured, skipping push to %s", token[:8])
        return None

    message = messaging.Message(
        notification=messaging.Notification(title=title, body=body),
        data={"url": url} if url else None,
        token=token,
    )
    return messaging.send(message, app=app)
