"""Tests for the credit ledger accessor."""

import pytest

from app.services.credit_service import (
    CreditService,
    credits_to_euros,
    euros_to_credits,
    format_credits,
    tokens_to_credits,
)
from app.services.response_cache import MISS, CacheKeys
from app.utils.errors import LedgerConflictError, NotFoundError, ValidationFailed

ORG = "org-1"


class TestConversions:
    """Server-side conversion helpers."""

    def test_tokens_round_up(self):
        assert tokens_to_credits(1000) == 1
        assert tokens_to_credits(1001) == 2
        assert tokens_to_credits(0) == 0

    def test_euros_to_credits(self):
        assert euros_to_credits(10) == 1000
        assert euros_to_credits(0.015) == 2
        assert euros_to_credits(99.99) == 9999

    def test_credits_to_euros(self):
        assert credits_to_euros(2500) == 25.0

    def test_format_credits(self):
        assert format_credits(1000) == "1,000 Credits"
        assert format_credits(250000) == "250,000 Credits"


class TestAddCredits:
    """Balance additions and the audit trail."""

    @pytest.mark.asyncio
    async def test_adds_to_existing_balance(self, db, credit_service):
        db.seed("organization_entitlements", {"organization_id": ORG, "credits_balance": 500})

        result = await credit_service.add_credits_to_organization(ORG, 250, "purchase")

        assert result.success is True
        assert result.previous_balance == 500
        assert result.balance == 750
        assert db.rows("organization_entitlements")[0]["credits_balance"] == 750

    @pytest.mark.asyncio
    async def test_logs_exactly_one_transaction(self, db, credit_service):
        db.seed("organization_entitlements", {"organization_id": ORG, "credits_balance": 100})

        await credit_service.add_credits_to_organization(ORG, 25000, "renewal")

        transactions = db.rows("credits_transactions")
        assert len(transactions) == 1
        row = transactions[0]
        assert row["organization_id"] == ORG
        assert row["credits_before"] == 100
        assert row["credits_used"] == 25000
        assert row["credits_after"] == 25100
        assert row["transaction_type"] == "purchase"

    @pytest.mark.asyncio
    async def test_adjustment_source_is_logged_as_adjustment(self, db, credit_service):
        db.seed("organization_entitlements", {"organization_id": ORG, "credits_balance": 0})

        await credit_service.add_credits_to_organization(ORG, 10, "adjustment")

        assert db.rows("credits_transactions")[0]["transaction_type"] == "adjustment"

    @pytest.mark.asyncio
    async def test_creates_entitlement_when_missing(self, db, credit_service):
        result = await credit_service.add_credits_to_organization(ORG, 1000, "subscription")

        assert result.previous_balance == 0
        assert result.balance == 1000
        rows = db.rows("organization_entitlements")
        assert len(rows) == 1
        assert rows[0]["credits_balance"] == 1000

    @pytest.mark.asyncio
    async def test_zero_credits_is_allowed(self, db, credit_service):
        db.seed("organization_entitlements", {"organization_id": ORG, "credits_balance": 42})

        result = await credit_service.add_credits_to_organization(ORG, 0, "adjustment")

        assert result.balance == 42

    @pytest.mark.asyncio
    @pytest.mark.parametrize("credits", [-1, 1.5, "100", True])
    async def test_rejects_invalid_amounts(self, db, credit_service, credits):
        db.seed("organization_entitlements", {"organization_id": ORG, "credits_balance": 42})

        with pytest.raises(ValidationFailed):
            await credit_service.add_credits_to_organization(ORG, credits, "purchase")

        assert db.rows("organization_entitlements")[0]["credits_balance"] == 42
        assert db.rows("credits_transactions") == []

    @pytest.mark.asyncio
    async def test_rejects_unknown_source(self, credit_service):
        with pytest.raises(ValidationFailed):
            await credit_service.add_credits_to_organization(ORG, 10, "gift")

    @pytest.mark.asyncio
    async def test_audit_failure_keeps_balance(self, db, credit_service):
        db.seed("organization_entitlements", {"organization_id": ORG, "credits_balance": 10})
        db.fail("credits_transactions", "insert")

        result = await credit_service.add_credits_to_organization(ORG, 5, "purchase")

        assert result.balance == 15
        assert db.rows("organization_entitlements")[0]["credits_balance"] == 15
        assert db.rows("credits_transactions") == []

    @pytest.mark.asyncio
    async def test_invalidates_cached_reads(self, db, cache, credit_service):
        db.seed("organization_entitlements", {"organization_id": ORG, "credits_balance": 10})
        cache.set(CacheKeys.credits(ORG), {"credits_balance": 10})
        cache.set(CacheKeys.dashboard(ORG), {"kpis": []})
        cache.set(CacheKeys.credits("org-2"), {"credits_balance": 99})

        await credit_service.add_credits_to_organization(ORG, 5, "purchase")

        assert cache.get(CacheKeys.credits(ORG)) is MISS
        assert cache.get(CacheKeys.dashboard(ORG)) is MISS
        assert cache.get(CacheKeys.credits("org-2")) == {"credits_balance": 99}


class TestConcurrentAdditions:
    """Compare-and-swap retries when another writer changes the balance."""

    @pytest.mark.asyncio
    async def test_retries_after_concurrent_write(self, db, credit_service):
        db.seed("organization_entitlements", {"organization_id": ORG, "credits_balance": 500})
        state = {"raced": False}

        def concurrent_writer(query):
            if (
                query.table_name == "organization_entitlements"
                and query.op == "update"
                and not state["raced"]
            ):
                state["raced"] = True
                db.rows("organization_entitlements")[0]["credits_balance"] += 7

        db.before_execute(concurrent_writer)

        result = await credit_service.add_credits_to_organization(ORG, 100, "purchase")

        assert result.previous_balance == 507
        assert result.balance == 607
        assert db.rows("organization_entitlements")[0]["credits_balance"] == 607
        assert db.count_calls("organization_entitlements", "update") == 2
        assert len(db.rows("credits_transactions")) == 1

    @pytest.mark.asyncio
    async def test_raises_conflict_when_attempts_exhausted(self, db, cache):
        service = CreditService(supabase=db, cache=cache, max_attempts=3)
        db.seed("organization_entitlements", {"organization_id": ORG, "credits_balance": 0})

        def always_race(query):
            if query.table_name == "organization_entitlements" and query.op == "update":
                db.rows("organization_entitlements")[0]["credits_balance"] += 1

        db.before_execute(always_race)

        with pytest.raises(LedgerConflictError) as exc_info:
            await service.add_credits_to_organization(ORG, 100, "purchase")

        assert exc_info.value.status_code == 409
        assert db.count_calls("organization_entitlements", "update") == 3
        assert db.rows("credits_transactions") == []

    @pytest.mark.asyncio
    async def test_concurrent_insert_falls_back_to_update(self, db, credit_service):
        def other_writer_creates_row(query):
            if (
                query.table_name == "organization_entitlements"
                and query.op == "insert"
                and not db.rows("organization_entitlements")
            ):
                db.seed("organization_entitlements", {"organization_id": ORG, "credits_balance": 300})

        db.before_execute(other_writer_creates_row)

        result = await credit_service.add_credits_to_organization(ORG, 200, "purchase")

        assert result.previous_balance == 300
        assert result.balance == 500
        assert len(db.rows("organization_entitlements")) == 1


class TestReads:
    """Balance, history and auto top-up settings."""

    @pytest.mark.asyncio
    async def test_get_balance(self, db, credit_service):
        db.seed("organization_entitlements", {
            "organization_id": ORG,
            "credits_balance": 1234,
            "subscription_active": True,
            "plan_tier": "PRO",
        })

        balance = await credit_service.get_balance(ORG)

        assert balance["credits_balance"] == 1234
        assert balance["subscription_active"] is True
        assert balance["plan_tier"] == "PRO"

    @pytest.mark.asyncio
    async def test_get_balance_missing_entitlement(self, credit_service):
        with pytest.raises(NotFoundError):
            await credit_service.get_balance("missing-org")

    @pytest.mark.asyncio
    async def test_transactions_newest_first(self, db, credit_service):
        db.seed("organization_entitlements", {"organization_id": ORG, "credits_balance": 0})
        await credit_service.add_credits_to_organization(ORG, 1, "purchase")
        await credit_service.add_credits_to_organization(ORG, 2, "purchase")
        await credit_service.add_credits_to_organization(ORG, 3, "purchase")

        transactions = await credit_service.get_transactions(ORG, limit=2)

        assert [t["credits_used"] for t in transactions] == [3, 2]

    @pytest.mark.asyncio
    async def test_transactions_filtered_by_type(self, db, credit_service):
        db.seed("organization_entitlements", {"organization_id": ORG, "credits_balance": 0})
        await credit_service.add_credits_to_organization(ORG, 2, "purchase")
        await credit_service.add_credits_to_organization(ORG, 5, "adjustment")

        transactions = await credit_service.get_transactions(ORG, transaction_type="adjustment")

        assert [t["credits_used"] for t in transactions] == [5]

    @pytest.mark.asyncio
    async def test_transactions_reject_unknown_type(self, credit_service):
        with pytest.raises(ValidationFailed):
            await credit_service.get_transactions(ORG, transaction_type="bonus")

    @pytest.mark.asyncio
    async def test_update_auto_topup(self, db, credit_service):
        db.seed("organization_entitlements", {"organization_id": ORG, "credits_balance": 0})

        await credit_service.update_auto_topup(ORG, enabled=True, threshold=500, amount=10000)

        row = db.rows("organization_entitlements")[0]
        assert row["auto_topup_enabled"] is True
        assert row["auto_topup_threshold"] == 500
        assert row["auto_topup_amount"] == 10000

    @pytest.mark.asyncio
    async def test_update_auto_topup_unknown_org(self, credit_service):
        with pytest.raises(NotFoundError):
            await credit_service.update_auto_topup("missing-org", enabled=True, threshold=1, amount=1)
