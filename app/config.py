import logging
from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings
from tortoise import Tortoise
from app.utils.auto_routing import get_single_app_structure


class Settings(BaseSettings):
    DEBUG: bool = True
    APP_NAME: str = "TestForPay"
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    EMAIL_HOST: str = "smtp.gmail.com"
    EMAIL_PORT: int = 587
    EMAIL_HOST_USER: str = ""
    EMAIL_HOST_PASSWORD: str = ""
    DEFAULT_FROM_EMAIL: str = ""

    DB_HOST: str = "localhost"
    DB_NAME: str = "db.sqlite3"
    DB_USER: str = ""
    DB_PASSWORD: str = ""
    DB_PORT: int = 5432
    DB_ENGINE: str = "postgres"

    DATABASE_URL: Optional[str] = None
    SECRET_KEY: str = "change-me"
    REFRESH_SECRET_KEY: str = "change-me-too"
    BASE_URL: str = "http://localhost:8000/"
    REDIS_URL: str = "redis://redis:6379/0"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 10
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30

    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    PAYMENT_GATEWAY_TIMEOUT: float = 20.0
    CURRENCY: str = "usd"

    FIREBASE_KEY_BASE64: str = ""

    # shared secret for the scheduled settlement endpoint
    CRON_SECRET: str = ""
    SETTLEMENT_LOCK_TTL: int = 900

    PLATFORM_FEE_PERCENTAGE: Decimal = Decimal("0.15")
    DEFAULT_TEST_DURATION_DAYS: int = 14

    FRAUD_BLOCK_SCORE: int = 70
    FRAUD_FLAG_SCORE: int = 50
    FRAUD_SUSPICIOUS_SCORE: int = 30

    NOTIFY_MAX_ATTEMPTS: int = 5
    NOTIFY_RETRY_BASE_SECONDS: int = 60
    NOTIFY_BATCH_SIZE: int = 50

    def model_post_init(self, __context):
        if self.DATABASE_URL:
            return
        if self.DB_ENGINE == "sqlite":
            self.DATABASE_URL = f"sqlite://{self.DB_NAME}"
        else:
            self.DATABASE_URL = (
                f"{self.DB_ENGINE}://{self.DB_USER}:{self.DB_PASSWORD}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
logger = logging.getLogger(__name__)


TORTOISE_ORM = {
    "connections": {
        "default": settings.DATABASE_URL,
    },
    "apps": get_single_app_structure("applications"),
    "use_tz": True,
    "timezone": "UTC",
}


async def init_db():
    await Tortoise.init(config=TORTOISE_ORM)
    if settings.ENV != "production":
        await Tortoise.generate_schemas()
    else:
        logger.info("Skipping schema generation in production.")
