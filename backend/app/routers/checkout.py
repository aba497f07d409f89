"""
Checkout Router - Stripe checkout sessions and payment verification

Endpoints:
- POST /stripe/create-checkout - Start a hosted checkout for a plan or top-up
- GET  /stripe/verify-payment  - Confirm a session after the redirect back
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from app.models.billing import CheckoutRequest, CheckoutResponse, VerifyPaymentResponse
from app.services.checkout_service import CheckoutService, get_checkout_service
from app.utils.errors import handle_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stripe", tags=["stripe"])


def request_origin(request: Request) -> str:
    """Origin header, else scheme from x-forwarded-proto plus the Host header."""
    origin = request.headers.get("origin")
    if origin:
        return origin.rstrip("/")
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme or "https"
    host = request.headers.get("host") or request.url.netloc
    return f"{proto}://{host}"


@router.post("/create-checkout", response_model=CheckoutResponse)
async def create_checkout(
    body: CheckoutRequest,
    request: Request,
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """
    Create a Stripe Checkout session.

    Subscription mode charges a recurring plan price; payment mode charges a
    one-time credit top-up. When only userId is known the organization is
    looked up, and created on first purchase.
    """
    try:
        result = await checkout_service.create_checkout_session(body, request_origin(request))
        return CheckoutResponse(session_id=result["sessionId"], url=result["url"])
    except Exception as e:
        raise handle_exception(
            e,
            "create_checkout",
            fallback_error="Failed to create checkout session",
            user_id=body.user_id,
            organization_id=body.organization_id,
        )


@router.get(
    "/verify-payment",
    response_model=VerifyPaymentResponse,
    response_model_exclude_none=True,
)
async def verify_payment(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """Report whether a checkout session has been paid. Never changes balances."""
    try:
        result = await checkout_service.verify_payment(session_id)
        return VerifyPaymentResponse(
            verified=result["verified"],
            status=result.get("status"),
            customer_email=result.get("customerEmail"),
            metadata=result.get("metadata"),
            customer_id=result.get("customerId"),
            subscription_id=result.get("subscriptionId"),
            payment_status=result.get("paymentStatus"),
            message=result.get("message"),
        )
    except Exception as e:
        raise handle_exception(
            e,
            "verify_payment",
            fallback_error="Payment verification failed",
            resource_id=session_id,
        )
