import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from applications.payments.gateway import get_payment_gateway
from tasks.settlement import run_scheduled_settlement
from app.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Cron"])


async def cron_auth(authorization: Optional[str] = Header(default=None)):
    if not settings.CRON_SECRET:
        logger.error("CRON_SECRET is not configured, refusing cron call")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cron is not configured")
    expected = f"Bearer {settings.CRON_SECRET}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.api_route("/settlement/", methods=["GET", "POST"], dependencies=[Depends(cron_auth)])
async def settlement(gateway=Depends(get_payment_gateway)):
    return {"status": "success", **await run_scheduled_settlement(gateway=gateway)}
