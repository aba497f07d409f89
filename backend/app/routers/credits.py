"""
Credits Router - Credit balance and ledger history

Balances are served through the response cache; any credit addition or
settings change for the organization invalidates its cached reads.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.models.billing import (
    AutoTopupRequest,
    CreditBalanceResponse,
    CreditHistoryResponse,
    CreditTransactionResponse,
    SuccessResponse,
)
from app.services.credit_service import CreditService, get_credit_service
from app.services.response_cache import MISS, CacheKeys, ResponseCache, get_response_cache
from app.utils.errors import handle_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/balance", response_model=CreditBalanceResponse)
async def get_credit_balance(
    organization_id: str = Query(..., alias="organizationId"),
    credit_service: CreditService = Depends(get_credit_service),
    cache: ResponseCache = Depends(get_response_cache)
):
    """Get current credit balance and subscription status for the organization."""
    key = CacheKeys.credits(organization_id)
    cached = cache.get(key)
    if cached is not MISS:
        return cached

    try:
        balance = await credit_service.get_balance(organization_id)
    except Exception as e:
        raise handle_exception(
            e,
            "get_credit_balance",
            fallback_error="Failed to fetch credit balance",
            organization_id=organization_id,
        )

    response = CreditBalanceResponse(**balance)
    cache.set(key, response)
    return response


@router.get("/transactions", response_model=CreditHistoryResponse)
async def get_credit_transactions(
    organization_id: str = Query(..., alias="organizationId"),
    limit: int = Query(50, ge=1, le=200),
    transaction_type: Optional[str] = Query(None, alias="type"),
    credit_service: CreditService = Depends(get_credit_service)
):
    """
    Get credit transaction history.

    Audit rows only; the balance endpoint is authoritative.
    """
    try:
        transactions = await credit_service.get_transactions(
            organization_id, limit=limit, transaction_type=transaction_type
        )
    except Exception as e:
        raise handle_exception(
            e,
            "get_credit_transactions",
            fallback_error="Failed to fetch credit transactions",
            organization_id=organization_id,
        )

    return CreditHistoryResponse(
        transactions=[
            CreditTransactionResponse(
                id=str(t["id"]) if t.get("id") is not None else None,
                organization_id=t.get("organization_id", organization_id),
                credits_before=int(t.get("credits_before") or 0),
                credits_used=int(t.get("credits_used") or 0),
                credits_after=int(t.get("credits_after") or 0),
                transaction_type=t.get("transaction_type", ""),
                created_at=str(t["created_at"]) if t.get("created_at") else None,
            )
            for t in transactions
        ]
    )


@router.post("/auto-topup", response_model=SuccessResponse)
async def update_auto_topup(
    body: AutoTopupRequest,
    credit_service: CreditService = Depends(get_credit_service)
):
    """Save auto top-up preferences (threshold and amount in credits)."""
    try:
        await credit_service.update_auto_topup(
            body.organization_id,
            enabled=body.enabled,
            threshold=body.threshold,
            amount=body.amount,
        )
    except Exception as e:
        raise handle_exception(
            e,
            "update_auto_topup",
            fallback_error="Failed to update auto top-up settings",
            organization_id=body.organization_id,
        )

    return SuccessResponse(success=True, message="Auto top-up settings updated")
