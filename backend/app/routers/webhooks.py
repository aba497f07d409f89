"""
Webhooks Router - Stripe webhook handling

Handles incoming webhook events from Stripe for:
- Subscription checkout and credit top-ups
- Subscription renewals
- Subscription cancellation

Every event is signature-verified before anything is read from it, and each
event id is applied at most once.
"""

import json
import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, Header, Request

from app.config import Settings, get_settings
from app.services.subscription_service import SubscriptionService, get_subscription_service
from app.utils.errors import AppError, ConfigurationError, SignatureError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stripe", tags=["webhooks"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    settings: Settings = Depends(get_settings),
    subscription_service: SubscriptionService = Depends(get_subscription_service)
):
    """
    Handle Stripe webhook events

    Events handled:
    - checkout.session.completed
    - invoice.payment_succeeded
    - customer.subscription.deleted
    """
    if not settings.stripe_secret_key or not settings.stripe_webhook_secret:
        logger.error("[Webhook] Missing Stripe configuration")
        raise ConfigurationError("Stripe not configured", "Stripe webhook secrets are not configured.")

    # Get raw body
    payload = await request.body()

    if not stripe_signature:
        logger.error("[Webhook] Missing Stripe-Signature header")
        raise SignatureError("Webhook Error", "Missing Stripe-Signature header")

    # Verify webhook signature
    try:
        stripe.Webhook.construct_event(payload, stripe_signature, settings.stripe_webhook_secret)
    except stripe.SignatureVerificationError as e:
        logger.error(f"[Webhook] Signature verification failed: {e}")
        raise SignatureError("Webhook Error", "Invalid signature")
    except ValueError as e:
        logger.error(f"[Webhook] Invalid payload: {e}")
        raise SignatureError("Webhook Error", "Invalid payload")

    # Verified; work with the plain JSON from here on
    event = json.loads(payload)
    event_id = event.get("id")
    event_type = event.get("type")

    logger.info(f"[Webhook] Event: {event_type} ({event_id})")

    # Claim before processing; nothing has been applied if the claim fails
    try:
        claimed = await subscription_service.claim_event(event)
    except Exception as e:
        logger.error(f"[Webhook] Could not claim {event_type} ({event_id}): {e}", exc_info=True)
        raise AppError("Webhook processing failed", str(e) or "Webhook processing failed")

    if not claimed:
        logger.info(f"[Webhook] Event {event_id} already processed, skipping")
        return {"received": True, "duplicate": True}

    try:
        await subscription_service.handle_event(event)
    except Exception as e:
        logger.error(f"[Webhook] Processing error for {event_type} ({event_id}): {e}", exc_info=True)
        await subscription_service.release_event(event_id)
        raise AppError("Webhook processing failed", str(e) or "Webhook processing failed")

    return {"received": True}
