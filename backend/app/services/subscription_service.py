"""
Subscription Service

Applies verified Stripe webhook events to organization entitlements and the
credit ledger.

Event flow:
- checkout.session.completed -> activate entitlement, add purchased credits
- invoice.payment_succeeded  -> keep entitlement active, add renewal credits
- customer.subscription.deleted -> deactivate entitlement

Event ids are claimed in stripe_webhook_events before processing, so a
redelivered or concurrently delivered event is acknowledged without touching
balances. A claim is released again when processing fails.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from supabase import Client

from app.database import get_supabase_service
from app.services.checkout_service import plan_credits
from app.services.credit_service import CreditService, get_credit_service, is_unique_violation

logger = logging.getLogger(__name__)

# The first invoice of a subscription is credited by checkout.session.completed
INITIAL_INVOICE_REASON = "subscription_create"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _id_of(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("id")
    return value


def _metadata_credits(metadata: Dict[str, Any]) -> int:
    """Credits from Stripe metadata (always a string there); 0 when absent or malformed."""
    raw = metadata.get("credits")
    if raw in (None, ""):
        return 0
    try:
        return max(int(raw), 0)
    except (TypeError, ValueError):
        logger.warning(f"[Webhook] Ignoring malformed credits metadata: {raw!r}")
        return 0


class SubscriptionService:
    """Entitlement and ledger updates driven by Stripe events"""

    def __init__(
        self,
        supabase: Optional[Client] = None,
        credit_service: Optional[CreditService] = None,
    ):
        self.supabase = supabase or get_supabase_service()
        self._credit_service = credit_service

    @property
    def credit_service(self) -> CreditService:
        if self._credit_service is None:
            self._credit_service = get_credit_service()
        return self._credit_service

    # ==========================================
    # IDEMPOTENCY
    # ==========================================

    async def claim_event(self, event: Dict[str, Any]) -> bool:
        """
        Record the event id before processing it.

        Returns False when the id is already recorded, either from an earlier
        delivery or from one being processed concurrently.
        """
        try:
            self.supabase.table("stripe_webhook_events").insert({
                "id": event.get("id"),
                "event_type": event.get("type"),
                "payload": json.loads(json.dumps(event, default=str)),
                "processed_at": _now(),
            }).execute()
        except Exception as e:
            if not is_unique_violation(e):
                raise
            return False
        return True

    async def release_event(self, event_id: str) -> None:
        """Drop the claim of a failed event so Stripe's retry can process it."""
        try:
            self.supabase.table("stripe_webhook_events").delete().eq("id", event_id).execute()
        except Exception as e:
            logger.error(
                f"[Webhook] Failed to release event {event_id}, retries will be treated as duplicates: {e}"
            )

    # ==========================================
    # DISPATCH
    # ==========================================

    async def handle_event(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}

        if event_type == "checkout.session.completed":
            await self.handle_checkout_completed(obj)
        elif event_type == "invoice.payment_succeeded":
            await self.handle_invoice_payment_succeeded(obj)
        elif event_type == "customer.subscription.deleted":
            await self.handle_subscription_deleted(obj)
        else:
            logger.info(f"[Webhook] Unhandled event type: {event_type}")

    # ==========================================
    # HANDLERS
    # ==========================================

    async def handle_checkout_completed(self, session: Dict[str, Any]) -> None:
        """Activate the entitlement and credit the purchase."""
        metadata = session.get("metadata") or {}
        organization_id = metadata.get("organizationId")

        if not organization_id:
            logger.warning(f"[Webhook] Checkout session {session.get('id')} has no organizationId, skipping")
            return

        plan_tier = metadata.get("planId") or metadata.get("plan_name")
        credits = _metadata_credits(metadata)

        update: Dict[str, Any] = {
            "organization_id": organization_id,
            "subscription_active": True,
            "updated_at": _now(),
        }
        if plan_tier:
            update["plan_tier"] = plan_tier
        customer_id = _id_of(session.get("customer"))
        if customer_id:
            update["stripe_customer_id"] = customer_id
        subscription_id = _id_of(session.get("subscription"))
        if subscription_id:
            update["stripe_subscription_id"] = subscription_id

        self.supabase.table("organization_entitlements").upsert(
            update, on_conflict="organization_id"
        ).execute()
        self.credit_service.invalidate_cached_reads(organization_id)

        logger.info(
            f"[Webhook] Entitlement activated for org {organization_id} "
            f"(plan: {plan_tier}, customer: {customer_id})"
        )

        if credits > 0:
            source = "subscription" if session.get("mode") == "subscription" else "purchase"
            result = await self.credit_service.add_credits_to_organization(
                organization_id,
                credits,
                source,
                metadata={"checkout_session_id": session.get("id")},
            )
            logger.info(
                f"[Webhook] Credited {credits} to org {organization_id}: "
                f"{result.previous_balance} -> {result.balance}"
            )

    async def handle_invoice_payment_succeeded(self, invoice: Dict[str, Any]) -> None:
        """Renew the subscription and add the plan's monthly credits."""
        if invoice.get("billing_reason") == INITIAL_INVOICE_REASON:
            logger.info(f"[Webhook] Invoice {invoice.get('id')} is the initial subscription invoice, skipping")
            return

        customer_id = _id_of(invoice.get("customer"))
        if not customer_id:
            logger.warning(f"[Webhook] Invoice {invoice.get('id')} has no customer, skipping")
            return

        response = self.supabase.table("organization_entitlements").select(
            "organization_id, plan_tier"
        ).eq("stripe_customer_id", customer_id).limit(1).execute()

        rows = response.data or []
        if not rows:
            logger.warning(f"[Webhook] No entitlement for Stripe customer {customer_id}")
            return

        entitlement = rows[0]
        organization_id = entitlement["organization_id"]

        self.supabase.table("organization_entitlements").update({
            "subscription_active": True,
            "updated_at": _now(),
        }).eq("organization_id", organization_id).execute()
        self.credit_service.invalidate_cached_reads(organization_id)

        credits = await self.get_renewal_credits(entitlement.get("plan_tier"))
        if credits > 0:
            await self.credit_service.add_credits_to_organization(
                organization_id,
                credits,
                "renewal",
                metadata={"invoice_id": invoice.get("id")},
            )
            logger.info(f"[Webhook] Renewal: {credits} credits for org {organization_id}")
        else:
            logger.info(f"[Webhook] No renewal credits for plan {entitlement.get('plan_tier')}")

    async def handle_subscription_deleted(self, subscription: Dict[str, Any]) -> None:
        subscription_id = subscription.get("id")
        if not subscription_id:
            return

        response = self.supabase.table("organization_entitlements").update({
            "subscription_active": False,
            "updated_at": _now(),
        }).eq("stripe_subscription_id", subscription_id).execute()

        for row in response.data or []:
            self.credit_service.invalidate_cached_reads(row["organization_id"])

        logger.info(f"[Webhook] Subscription {subscription_id} canceled, entitlement deactivated")

    async def get_renewal_credits(self, plan_tier: Optional[str]) -> int:
        """Monthly credits for a plan: subscription_plans first, then the built-in catalog."""
        if not plan_tier:
            return 0

        response = self.supabase.table("subscription_plans").select("credits").eq(
            "name", plan_tier
        ).limit(1).execute()

        rows = response.data or []
        if rows and rows[0].get("credits") is not None:
            return int(rows[0]["credits"])

        return plan_credits(plan_tier)


# Singleton instance
_subscription_service: Optional[SubscriptionService] = None


def get_subscription_service() -> SubscriptionService:
    """Get or create subscription service instance"""
    global _subscription_service
    if _subscription_service is None:
        _subscription_service = SubscriptionService()
    return _subscription_service
