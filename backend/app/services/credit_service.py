"""
Credit Service

Ledger accessor for Armo Credits.
Credits are the universal currency for automation usage:
- 1 Credit = 1,000 AI tokens
- 1 Credit = €0.01

Key principles:
- organization_entitlements.credits_balance is the single source of truth
- credits_transactions is an append-only audit trail, never read for balances
- Conversion rates stay server-side and are never returned to clients
- Balance additions are compare-and-swap updates, so concurrent additions
  never lose a delta
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Dict, Any, List

from supabase import Client

from app.database import get_supabase_service
from app.services.response_cache import CacheKeys, ResponseCache, get_response_cache
from app.utils.errors import LedgerConflictError, NotFoundError, ValidationFailed

logger = logging.getLogger(__name__)


# =============================================================================
# CONVERSION RATES (backend only - never expose to the frontend)
# =============================================================================

CREDITS_CONFIG = {
    "TOKENS_PER_CREDIT": 1000,
    "EUROS_PER_CREDIT": Decimal("0.01"),
}

CREDIT_SOURCES = ("subscription", "purchase", "renewal", "adjustment")

TRANSACTION_TYPES = ("purchase", "renewal", "adjustment", "execution", "refund")

# Paid sources are all recorded as purchases in the ledger
_SOURCE_TRANSACTION_TYPE = {
    "subscription": "purchase",
    "purchase": "purchase",
    "renewal": "purchase",
    "adjustment": "adjustment",
}

MAX_LEDGER_ATTEMPTS = 5


def tokens_to_credits(tokens: int) -> int:
    """Convert AI tokens to Armo Credits (rounded up)."""
    return math.ceil(tokens / CREDITS_CONFIG["TOKENS_PER_CREDIT"])


def euros_to_credits(euros: float) -> int:
    """Convert euros to Armo Credits (half-up rounding)."""
    credits = Decimal(str(euros)) / CREDITS_CONFIG["EUROS_PER_CREDIT"]
    return int(credits.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def credits_to_euros(credits: int) -> float:
    """Convert Armo Credits to euros (internal calculations only)."""
    return float(Decimal(credits) * CREDITS_CONFIG["EUROS_PER_CREDIT"])


def format_credits(credits: int) -> str:
    """Format credits for display, e.g. "1,000 Credits"."""
    return f"{credits:,} Credits"


def is_unique_violation(error: Exception) -> bool:
    """True for Postgres unique_violation (23505) surfaced by PostgREST."""
    return str(getattr(error, "code", "")) == "23505"


@dataclass
class CreditAdditionResult:
    success: bool
    balance: int
    previous_balance: int


class CreditService:
    """
    Central credit ledger service.

    Usage:
        credit_service = get_credit_service()

        # After a verified Stripe event
        result = await credit_service.add_credits_to_organization(org_id, 25000, "renewal")
        logger.info(f"{result.previous_balance} -> {result.balance}")
    """

    def __init__(
        self,
        supabase: Optional[Client] = None,
        cache: Optional[ResponseCache] = None,
        max_attempts: int = MAX_LEDGER_ATTEMPTS,
    ):
        self.supabase = supabase or get_supabase_service()
        self.cache = cache
        self.max_attempts = max_attempts

    # ==========================================
    # BALANCE READS
    # ==========================================

    async def get_entitlement(self, organization_id: str) -> Optional[Dict[str, Any]]:
        response = self.supabase.table("organization_entitlements").select("*").eq(
            "organization_id", organization_id
        ).limit(1).execute()

        rows = response.data or []
        return rows[0] if rows else None

    async def get_balance(self, organization_id: str) -> Dict[str, Any]:
        """
        Get the current credit balance for an organization.

        Returns:
            {
                "organization_id": str,
                "credits_balance": int,
                "subscription_active": bool,
                "plan_tier": str | None,
                "auto_topup_enabled": bool,
                "updated_at": str | None
            }
        """
        entitlement = await self.get_entitlement(organization_id)
        if not entitlement:
            raise NotFoundError(
                "Entitlement not found",
                f"No entitlement exists for organization {organization_id}",
            )

        return {
            "organization_id": organization_id,
            "credits_balance": int(entitlement.get("credits_balance") or 0),
            "subscription_active": bool(entitlement.get("subscription_active")),
            "plan_tier": entitlement.get("plan_tier"),
            "auto_topup_enabled": bool(entitlement.get("auto_topup_enabled")),
            "updated_at": entitlement.get("updated_at"),
        }

    async def get_transactions(
        self,
        organization_id: str,
        limit: int = 50,
        transaction_type: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Get recent credit transactions, newest first, optionally of one type."""
        if transaction_type is not None and transaction_type not in TRANSACTION_TYPES:
            raise ValidationFailed(
                "Invalid transaction type",
                f"Transaction type must be one of: {', '.join(TRANSACTION_TYPES)}",
            )

        query = self.supabase.table("credits_transactions").select("*").eq(
            "organization_id", organization_id
        )
        if transaction_type:
            query = query.eq("transaction_type", transaction_type)

        response = query.order("created_at", desc=True).limit(limit).execute()

        return response.data or []

    # ==========================================
    # CREDIT ADDITION
    # ==========================================

    async def add_credits_to_organization(
        self,
        organization_id: str,
        credits: int,
        source: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> CreditAdditionResult:
        """
        Add credits to an organization's balance and log the transaction.

        The balance update is a compare-and-swap on credits_balance: when a
        concurrent writer changes the row between read and write, the update
        matches zero rows and the read is repeated.

        Args:
            organization_id: Organization UUID
            credits: Non-negative number of credits to add
            source: One of subscription, purchase, renewal, adjustment
            metadata: Optional context, logged only

        Returns:
            CreditAdditionResult with the new and previous balance
        """
        if isinstance(credits, bool) or not isinstance(credits, int) or credits < 0:
            raise ValidationFailed("Invalid credit amount", f"Credits must be a non-negative integer, got {credits!r}")
        if source not in CREDIT_SOURCES:
            raise ValidationFailed("Invalid credit source", f"Unknown credit source: {source}")

        logger.info(
            f"[Credits] Adding {credits} credits to organization {organization_id} "
            f"(source: {source}, metadata: {metadata or {}})"
        )

        for attempt in range(1, self.max_attempts + 1):
            previous = await self._read_balance(organization_id)
            new_balance = (previous or 0) + credits

            if previous is None:
                applied = self._insert_balance(organization_id, new_balance)
            else:
                applied = self._swap_balance(organization_id, previous, new_balance)

            if applied:
                previous_balance = previous or 0
                await self._log_transaction(
                    organization_id=organization_id,
                    credits_before=previous_balance,
                    credits_delta=credits,
                    credits_after=new_balance,
                    transaction_type=_SOURCE_TRANSACTION_TYPE[source],
                )
                self.invalidate_cached_reads(organization_id)
                return CreditAdditionResult(
                    success=True,
                    balance=new_balance,
                    previous_balance=previous_balance,
                )

            logger.warning(
                f"[Credits] Concurrent balance change for {organization_id}, "
                f"retrying (attempt {attempt}/{self.max_attempts})"
            )

        raise LedgerConflictError(
            "Credit balance update conflict",
            f"Could not update balance for organization {organization_id} after {self.max_attempts} attempts",
        )

    async def _read_balance(self, organization_id: str) -> Optional[int]:
        response = self.supabase.table("organization_entitlements").select(
            "credits_balance"
        ).eq("organization_id", organization_id).limit(1).execute()

        rows = response.data or []
        if not rows:
            return None
        return int(rows[0].get("credits_balance") or 0)

    def _insert_balance(self, organization_id: str, balance: int) -> bool:
        try:
            self.supabase.table("organization_entitlements").insert({
                "organization_id": organization_id,
                "credits_balance": balance,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }).execute()
            return True
        except Exception as e:
            # Another writer created the row first
            if is_unique_violation(e):
                return False
            raise

    def _swap_balance(self, organization_id: str, expected: int, balance: int) -> bool:
        response = self.supabase.table("organization_entitlements").update({
            "credits_balance": balance,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }).eq(
            "organization_id", organization_id
        ).eq(
            "credits_balance", expected
        ).execute()

        return bool(response.data)

    # ==========================================
    # AUTO TOP-UP SETTINGS
    # ==========================================

    async def update_auto_topup(
        self,
        organization_id: str,
        enabled: bool,
        threshold: int,
        amount: int
    ) -> Dict[str, Any]:
        """Store auto top-up preferences on the entitlement row."""
        if threshold < 0 or amount < 0:
            raise ValidationFailed("Invalid auto top-up settings", "Threshold and amount must be non-negative")

        response = self.supabase.table("organization_entitlements").update({
            "auto_topup_enabled": enabled,
            "auto_topup_threshold": threshold,
            "auto_topup_amount": amount,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }).eq("organization_id", organization_id).execute()

        if not response.data:
            raise NotFoundError(
                "Entitlement not found",
                f"No entitlement exists for organization {organization_id}",
            )

        self.invalidate_cached_reads(organization_id)
        logger.info(
            f"[Credits] Auto top-up for {organization_id}: enabled={enabled}, "
            f"threshold={threshold}, amount={amount}"
        )
        return response.data[0]

    # ==========================================
    # HELPERS
    # ==========================================

    async def _log_transaction(
        self,
        organization_id: str,
        credits_before: int,
        credits_delta: int,
        credits_after: int,
        transaction_type: str
    ) -> None:
        """Append an audit row. Failures are logged and never undo the balance update."""
        try:
            self.supabase.table("credits_transactions").insert({
                "organization_id": organization_id,
                "credits_before": credits_before,
                "credits_used": credits_delta,  # delta column
                "credits_after": credits_after,
                "transaction_type": transaction_type,
            }).execute()
        except Exception as e:
            logger.error(f"[Credits] Failed to log transaction for {organization_id}: {e}")

    def invalidate_cached_reads(self, organization_id: str) -> None:
        if self.cache is not None:
            self.cache.invalidate_pattern(CacheKeys.organization_pattern(organization_id))


# Singleton instance
_credit_service: Optional[CreditService] = None


def get_credit_service() -> CreditService:
    """Get or create credit service instance."""
    global _credit_service
    if _credit_service is None:
        _credit_service = CreditService(cache=get_response_cache())
    return _credit_service
