"""
Checkout Service

Builds Stripe Checkout sessions for Armonyco plans and credit top-ups, and
verifies session status for the post-redirect confirmation screen.

Plans:
- PRO: 25,000 credits / month
- SCALE: 100,000 credits / month
- ENTERPRISE: 250,000 credits / month
- TOP_UP: 10,000 credits, one-time

Session metadata (organizationId, planId, credits) is the only channel the
webhook uses to attribute a payment to a tenant.
"""

import logging
from typing import Any, Dict, Optional

import stripe

from app.config import Settings, get_settings, stripe_price_for_plan
from app.models.billing import CheckoutMode, CheckoutRequest
from app.services.credit_service import euros_to_credits
from app.services.organization_service import OrganizationService, get_organization_service
from app.utils.errors import ConfigurationError, ValidationFailed

logger = logging.getLogger(__name__)

# Plan catalog
# Price ids come from STRIPE_PRICE_<PLAN>; credits are the monthly allotment
PLAN_CONFIG = {
    "PRO": {
        "name": "Armonyco Pro",
        "credits": 25000,
        "stripe_price_env": "STRIPE_PRICE_PRO",
    },
    "SCALE": {
        "name": "Armonyco Scale",
        "credits": 100000,
        "stripe_price_env": "STRIPE_PRICE_SCALE",
    },
    "ENTERPRISE": {
        "name": "Armonyco Enterprise",
        "credits": 250000,
        "stripe_price_env": "STRIPE_PRICE_ENTERPRISE",
    },
    "TOP_UP": {
        "name": "ArmoCredits Top-up",
        "credits": 10000,
        "stripe_price_env": "STRIPE_PRICE_TOP_UP",
    },
}

CHECKOUT_CURRENCY = "eur"
SUCCESS_PATH = "/app/settings?tab=subscription&payment=success&session_id={CHECKOUT_SESSION_ID}"
CANCEL_PATH = "/app/settings?tab=subscription&payment=canceled"


def plan_credits(plan_tier: Optional[str]) -> int:
    """Monthly credits for a plan tier from the built-in catalog (0 if unknown)."""
    if not plan_tier:
        return 0
    plan = PLAN_CONFIG.get(str(plan_tier).upper())
    return plan["credits"] if plan else 0


def _stripe_metadata(values: Dict[str, Any]) -> Dict[str, str]:
    """Stripe metadata values must be strings."""
    return {str(k): "" if v is None else str(v) for k, v in values.items()}


def _id_of(value: Any) -> Optional[str]:
    """Stripe fields may be an id string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return getattr(value, "id", None)


def _plain(value: Any) -> Optional[Dict[str, Any]]:
    if value is None:
        return None
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return dict(value)


class CheckoutService:
    """Service for Stripe checkout sessions and payment verification"""

    def __init__(
        self,
        organization_service: Optional[OrganizationService] = None,
        settings: Optional[Settings] = None,
    ):
        self._organization_service = organization_service
        self._settings = settings
        self.stripe = stripe

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    @property
    def organization_service(self) -> OrganizationService:
        if self._organization_service is None:
            self._organization_service = get_organization_service()
        return self._organization_service

    def _require_stripe(self) -> None:
        if not self.settings.stripe_secret_key:
            raise ConfigurationError(
                "Stripe not configured",
                "STRIPE_SECRET_KEY not found in environment variables.",
            )
        self.stripe.api_key = self.settings.stripe_secret_key

    # ==========================================
    # CHECKOUT
    # ==========================================

    async def create_checkout_session(self, request: CheckoutRequest, origin: str) -> Dict[str, Any]:
        """
        Create a Stripe Checkout session.

        Args:
            request: Validated checkout request
            origin: Scheme + host of the calling dashboard, used for default URLs

        Returns:
            {"sessionId": str, "url": str}
        """
        organization_id = request.organization_id

        if not organization_id and request.user_id:
            organization_id = await self.organization_service.resolve_organization_for_user(
                request.user_id,
                email=request.email,
                plan_id=request.plan_id,
            )

        if not request.email or not organization_id:
            raise ValidationFailed(
                "Missing required fields",
                "Email and Organization ID (or User ID for lookup) are required.",
            )

        self._require_stripe()

        customer_id = await self.get_or_create_customer(
            request.email, organization_id, request.user_id
        )

        success_url = request.success_url or f"{origin}{SUCCESS_PATH}"
        cancel_url = request.cancel_url or f"{origin}{CANCEL_PATH}"

        if request.mode == CheckoutMode.PAYMENT:
            params = self._payment_session_params(
                request, organization_id, customer_id, success_url, cancel_url
            )
        else:
            params = self._subscription_session_params(
                request, organization_id, customer_id, success_url, cancel_url
            )

        session = self.stripe.checkout.Session.create(**params)

        logger.info(
            f"[Checkout] Created {request.mode.value} session {session.id} "
            f"for org {organization_id} (plan: {request.plan_id})"
        )

        return {"sessionId": session.id, "url": session.url}

    async def get_or_create_customer(
        self,
        email: str,
        organization_id: str,
        user_id: Optional[str] = None
    ) -> str:
        """Find the Stripe customer by email or create one tagged with the org."""
        existing = self.stripe.Customer.list(email=email, limit=1)
        if existing.data:
            return existing.data[0].id

        customer = self.stripe.Customer.create(
            email=email,
            metadata={"organization_id": organization_id, "user_id": user_id or ""},
        )
        logger.info(f"[Checkout] Created Stripe customer {customer.id} for org {organization_id}")
        return customer.id

    def _payment_session_params(
        self,
        request: CheckoutRequest,
        organization_id: str,
        customer_id: str,
        success_url: str,
        cancel_url: str
    ) -> Dict[str, Any]:
        if request.amount is None:
            raise ValidationFailed("Missing required fields", "Amount (in cents) is required for payment mode.")

        credits = request.credits
        if credits is None:
            credits = euros_to_credits(request.amount / 100)

        product_data: Dict[str, Any] = {"name": request.plan_name or "Credits Top-up"}
        if credits:
            product_data["description"] = f"{credits} Credits"

        return {
            "customer": customer_id,
            "payment_method_types": ["card"],
            "line_items": [{
                "price_data": {
                    "currency": CHECKOUT_CURRENCY,
                    "product_data": product_data,
                    "unit_amount": request.amount,
                },
                "quantity": 1,
            }],
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": _stripe_metadata({
                "organizationId": organization_id,
                "userId": request.user_id or "",
                "credits": credits,
                "type": "credit_purchase",
                **(request.metadata or {}),
            }),
        }

    def _subscription_session_params(
        self,
        request: CheckoutRequest,
        organization_id: str,
        customer_id: str,
        success_url: str,
        cancel_url: str
    ) -> Dict[str, Any]:
        price_id = request.price_id or stripe_price_for_plan(request.plan_id)
        if not price_id:
            raise ValidationFailed(
                "Stripe Price ID not found for plan",
                f"No price configured for plan {request.plan_id!r}. "
                f"Set STRIPE_PRICE_{str(request.plan_id or '').upper()} or pass priceId.",
            )

        # The initial invoice is not credited, so the first period is paid out here
        credits = request.credits if request.credits is not None else plan_credits(request.plan_id)

        return {
            "customer": customer_id,
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "subscription",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "subscription_data": {
                "metadata": _stripe_metadata({
                    "organizationId": organization_id,
                    "planId": request.plan_id or "",
                    "credits": credits,
                    "userId": request.user_id or "",
                }),
            },
            "metadata": _stripe_metadata({
                "organizationId": organization_id,
                "planId": request.plan_id or "",
                "credits": credits,
                **(request.metadata or {}),
            }),
            "allow_promotion_codes": True,
        }

    # ==========================================
    # VERIFICATION
    # ==========================================

    async def verify_payment(self, session_id: str) -> Dict[str, Any]:
        """
        Check whether a checkout session has been paid.

        Read-only; the webhook remains the path that changes balances.
        """
        if not session_id:
            raise ValidationFailed("Session ID required", "Query parameter sessionId is required.")

        self._require_stripe()

        session = self.stripe.checkout.Session.retrieve(
            session_id, expand=["customer", "subscription"]
        )

        if session.payment_status == "paid":
            customer_details = getattr(session, "customer_details", None)
            return {
                "verified": True,
                "status": session.status,
                "customerEmail": getattr(customer_details, "email", None) if customer_details else None,
                "metadata": _plain(session.metadata),
                "customerId": _id_of(session.customer),
                "subscriptionId": _id_of(session.subscription),
            }

        logger.info(f"[Checkout] Session {session_id} not paid (status: {session.payment_status})")
        return {
            "verified": False,
            "paymentStatus": session.payment_status,
            "message": "Payment not completed",
        }


# Singleton instance
_checkout_service: Optional[CheckoutService] = None


def get_checkout_service() -> CheckoutService:
    """Get or create checkout service instance"""
    global _checkout_service
    if _checkout_service is None:
        _checkout_service = CheckoutService()
    return _checkout_service
