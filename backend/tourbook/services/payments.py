"""
Thin async wrapper over the Stripe SDK.

The SDK is synchronous, so every call is pushed to the threadpool.
Gateway failures become HTTP errors carrying Stripe's user message.
"""

import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import HTTPException, status
from starlette.concurrency import run_in_threadpool

from tourbook.core.settings import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

PAYMENT_METHOD_TYPES = ["card"]


def to_minor_units(amount: float) -> int:
    """Stripe wants LKR in cents"""
    return int(round(amount * 100))


def from_minor_units(amount: int) -> float:
    return amount / 100


def _gateway_error(exc: stripe.StripeError) -> HTTPException:
    message = getattr(exc, "user_message", None) or "Payment processing failed"
    if isinstance(exc, stripe.CardError):
        return HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=message)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=message)


async def create_payment_intent(amount: float, metadata: Dict[str, str],
                                currency: Optional[str] = None) -> Any:
    """Create a card payment intent for ``amount`` in major units"""
    params = {
        "amount": to_minor_units(amount),
        "currency": currency or settings.PAYMENT_CURRENCY,
        "payment_method_types": PAYMENT_METHOD_TYPES,
        "capture_method": "automatic",
        "metadata": metadata,
        "description": f"Tour booking payment for {metadata.get('participants', '1')} participant(s)",
        "api_key": settings.STRIPE_SECRET_KEY,
    }
    try:
        intent = await run_in_threadpool(stripe.PaymentIntent.create, **params)
        logger.info(f"Created payment intent {intent.id} for {params['amount']} {params['currency']}")
        return intent
    except stripe.StripeError as e:
        logger.error(f"Stripe error creating payment intent: {e}")
        raise _gateway_error(e)


async def retrieve_payment_intent(payment_intent_id: str) -> Any:
    try:
        return await run_in_threadpool(
            stripe.PaymentIntent.retrieve, payment_intent_id, api_key=settings.STRIPE_SECRET_KEY
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe error retrieving payment intent {payment_intent_id}: {e}")
        raise _gateway_error(e)


def construct_webhook_event(payload: bytes, signature: str, secret: str) -> Any:
    """Verify a webhook delivery; raises ValueError or SignatureVerificationError"""
    return stripe.Webhook.construct_event(payload, signature, secret)
