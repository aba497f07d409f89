"""
Billing Models

Pydantic models for checkout, payment verification, credits, email and
organization requests. The dashboard speaks camelCase, so every model
serializes with camelCase aliases while Python code uses snake_case.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model with camelCase aliases on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CheckoutMode(str, Enum):
    PAYMENT = "payment"
    SUBSCRIPTION = "subscription"


# ============================================================
# CHECKOUT
# ============================================================

class CheckoutRequest(CamelModel):
    """Create a Stripe Checkout session for a plan or a credit top-up."""
    plan_id: Optional[str] = None
    plan_name: Optional[str] = None
    price_id: Optional[str] = None
    amount: Optional[int] = Field(None, ge=0, description="Price in cents (payment mode)")
    credits: Optional[int] = Field(None, ge=0)
    email: Optional[str] = None
    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
    mode: CheckoutMode = CheckoutMode.SUBSCRIPTION


class CheckoutResponse(CamelModel):
    session_id: str
    url: Optional[str] = None


class VerifyPaymentResponse(CamelModel):
    verified: bool
    status: Optional[str] = None
    customer_email: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    payment_status: Optional[str] = None
    message: Optional[str] = None


# ============================================================
# CREDITS
# ============================================================

class CreditBalanceResponse(CamelModel):
    organization_id: str
    credits_balance: int
    subscription_active: bool
    plan_tier: Optional[str] = None
    auto_topup_enabled: bool = False
    updated_at: Optional[str] = None


class CreditTransactionResponse(CamelModel):
    id: Optional[str] = None
    organization_id: str
    credits_before: int
    credits_used: int
    credits_after: int
    transaction_type: str
    created_at: Optional[str] = None


class CreditHistoryResponse(CamelModel):
    transactions: List[CreditTransactionResponse]


class AutoTopupRequest(CamelModel):
    organization_id: str
    enabled: bool
    threshold: int = Field(0, ge=0)
    amount: int = Field(0, ge=0)


# ============================================================
# EMAIL & ORGANIZATION
# ============================================================

class WelcomeEmailData(CamelModel):
    first_name: Optional[str] = None
    plan_name: Optional[str] = None
    credits: Optional[int] = None
    dashboard_url: Optional[str] = None


class WelcomeEmailRequest(CamelModel):
    to: Optional[str] = None
    subject: Optional[str] = None
    data: Optional[WelcomeEmailData] = None


class InviteCollaboratorRequest(CamelModel):
    email: Optional[str] = None
    organization_id: Optional[str] = None
    role: str = "member"


class SuccessResponse(CamelModel):
    success: bool
    message: str
