"""Stripe-backed payment gateway client.

Every call returns the external reference id or raises PaymentGatewayError.
The stripe SDK is blocking, so calls run in a worker thread under a timeout;
a stuck call surfaces as an error instead of holding up a payout loop.
"""
import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import stripe

from app.config import settings
from app.utils.money import to_cents

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """An external money-movement call failed; always safe to retry."""


@dataclass(frozen=True)
class EscrowIntent:
    reference: str
    client_secret: Optional[str]


class StripeGateway:
    def __init__(self, api_key: str, timeout: float, currency: str = "usd"):
        self.api_key = api_key
        self.timeout = timeout
        self.currency = currency

    async def _call(self, fn, **kwargs):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, api_key=self.api_key, **kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise PaymentGatewayError(f"Payment gateway timed out after {self.timeout}s")
        except stripe.StripeError as e:
            raise PaymentGatewayError(e.user_message or str(e)) from e

    async def create_escrow_intent(
        self, amount: Decimal, *, job_id: str, developer_id: str, idempotency_key: str
    ) -> EscrowIntent:
        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=to_cents(amount),
            currency=self.currency,
            automatic_payment_methods={"enabled": True},
            metadata={"job_id": job_id, "developer_id": developer_id, "type": "job_payment"},
            idempotency_key=idempotency_key,
        )
        return EscrowIntent(reference=intent.id, client_secret=intent.client_secret)

    async def transfer(
        self,
        amount: Decimal,
        destination: str,
        *,
        idempotency_key: str,
        transfer_group: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> str:
        params = dict(
            amount=to_cents(amount),
            currency=self.currency,
            destination=destination,
            metadata=metadata or {},
            idempotency_key=idempotency_key,
        )
        if transfer_group:
            params["transfer_group"] = transfer_group
        transfer = await self._call(stripe.Transfer.create, **params)
        logger.info("Transfer %s of %s to %s", transfer.id, amount, destination)
        return transfer.id

    async def refund(self, payment_intent_id: str, amount: Decimal, *, idempotency_key: str) -> str:
        refund = await self._call(
            stripe.Refund.create,
            payment_intent=payment_intent_id,
            amount=to_cents(amount),
            reason="requested_by_customer",
            idempotency_key=idempotency_key,
        )
        logger.info("Refund %s of %s on %s", refund.id, amount, payment_intent_id)
        return refund.id

    async def create_connected_account(self, email: str) -> str:
        account = await self._call(
            stripe.Account.create,
            type="express",
            email=email,
            capabilities={"transfers": {"requested": True}},
        )
        return account.id

    async def onboarding_link(self, account_id: str, refresh_url: str, return_url: str) -> str:
        link = await self._call(
            stripe.AccountLink.create,
            account=account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type="account_onboarding",
        )
        return link.url

    async def payouts_enabled(self, account_id: str) -> bool:
        account = await self._call(stripe.Account.retrieve, id=account_id)
        return bool(account.payouts_enabled)


_gateway: Optional[StripeGateway] = None


def get_payment_gateway() -> StripeGateway:
    global _gateway
    if _gateway is None:
        _gateway = StripeGateway(
            settings.STRIPE_SECRET_KEY,
            timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
            currency=settings.CURRENCY,
        )
    return _gateway
