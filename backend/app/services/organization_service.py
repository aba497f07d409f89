"""
Organization Service

Resolves the organization that pays for a checkout and bootstraps a new
tenant on first purchase.

Bootstrap runs as a saga: organization -> owner membership -> inactive
entitlement -> profile. When a step fails, the completed steps are undone in
reverse order so no half-provisioned tenant is left behind. A compensation
that fails is logged and reported in the error details.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from supabase import Client

from app.database import get_supabase_service
from app.services.credit_service import is_unique_violation
from app.utils.errors import ProvisioningError, ValidationFailed
from app.utils.retry import BackoffPolicy, SleepFn, retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_PLAN_TIER = "starter"

# Membership lookups can race the signup trigger that writes organization_members
MEMBERSHIP_LOOKUP_POLICY = BackoffPolicy(max_attempts=5, base_delay=1.0, factor=2.0, max_delay=8.0)


# ==========================================
# SAGA
# ==========================================

StepAction = Callable[[Dict[str, Any]], Awaitable[Any]]
StepCompensation = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass
class SagaStep:
    name: str
    action: StepAction
    compensate: Optional[StepCompensation] = None


@dataclass
class ProvisioningSaga:
    """Ordered steps; each step sees the results of the steps before it."""
    label: str
    steps: List[SagaStep] = field(default_factory=list)

    def add_step(
        self,
        name: str,
        action: StepAction,
        compensate: Optional[StepCompensation] = None
    ) -> "ProvisioningSaga":
        self.steps.append(SagaStep(name=name, action=action, compensate=compensate))
        return self

    async def run(self) -> Dict[str, Any]:
        results: Dict[str, Any] = {}
        completed: List[SagaStep] = []

        for step in self.steps:
            try:
                results[step.name] = await step.action(results)
                completed.append(step)
                logger.info(f"[Provisioning] {self.label}: step '{step.name}' done")
            except Exception as e:
                logger.error(f"[Provisioning] {self.label}: step '{step.name}' failed: {e}")
                leftovers = await self._compensate(completed, results)
                raise ProvisioningError(
                    "Organization creation failed",
                    "Could not create organization for new user.",
                    details={
                        "failed_step": step.name,
                        "reason": str(e),
                        "uncompensated_steps": leftovers,
                    },
                ) from e

        return results

    async def _compensate(self, completed: List[SagaStep], results: Dict[str, Any]) -> List[str]:
        leftovers = []
        for step in reversed(completed):
            if step.compensate is None:
                continue
            try:
                await step.compensate(results)
                logger.info(f"[Provisioning] {self.label}: compensated '{step.name}'")
            except Exception as e:
                leftovers.append(step.name)
                logger.error(f"[Provisioning] {self.label}: compensation for '{step.name}' failed: {e}")
        return leftovers


# ==========================================
# SERVICE
# ==========================================

@dataclass
class InviteResult:
    success: bool
    message: str
    user_added: bool


def organization_name_for(user_metadata: Dict[str, Any]) -> str:
    """Company name if known, else "<first name>'s Organization"."""
    company_name = user_metadata.get("company_name")
    if company_name:
        return company_name
    return f"{user_metadata.get('first_name') or 'User'}'s Organization"


class OrganizationService:
    """Organization lookup, provisioning and membership management."""

    def __init__(
        self,
        supabase: Optional[Client] = None,
        lookup_policy: BackoffPolicy = MEMBERSHIP_LOOKUP_POLICY,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.supabase = supabase or get_supabase_service()
        self.lookup_policy = lookup_policy
        self.sleep = sleep

    # ==========================================
    # LOOKUP
    # ==========================================

    async def find_membership_organization(self, user_id: str) -> Optional[str]:
        """Most recent organization the user belongs to, or None."""

        async def lookup() -> Optional[str]:
            response = self.supabase.table("organization_members").select(
                "organization_id"
            ).eq(
                "user_id", user_id
            ).order(
                "created_at", desc=True
            ).limit(1).execute()

            rows = response.data or []
            return rows[0]["organization_id"] if rows else None

        return await retry_with_backoff(
            lookup,
            self.lookup_policy,
            sleep=self.sleep,
            label=f"membership lookup for {user_id}",
        )

    async def get_auth_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Fetch the Supabase Auth user as a plain dict."""
        try:
            response = self.supabase.auth.admin.get_user_by_id(user_id)
        except Exception as e:
            logger.error(f"[Provisioning] Failed to get auth user {user_id}: {e}")
            return None

        user = getattr(response, "user", None)
        if not user:
            return None
        return {
            "id": user.id,
            "email": getattr(user, "email", None),
            "user_metadata": getattr(user, "user_metadata", None) or {},
        }

    async def resolve_organization_for_user(
        self,
        user_id: str,
        email: Optional[str] = None,
        plan_id: Optional[str] = None
    ) -> str:
        """
        Return the user's organization, provisioning one if none exists.

        Raises:
            ValidationFailed: the auth user does not exist
            ProvisioningError: a bootstrap step failed (already compensated)
        """
        logger.info(f"[Provisioning] Missing organizationId for user {user_id}, attempting lookup...")

        organization_id = await self.find_membership_organization(user_id)
        if organization_id:
            logger.info(f"[Provisioning] Organization found: {organization_id}")
            return organization_id

        auth_user = await self.get_auth_user(user_id)
        if not auth_user:
            raise ValidationFailed(
                "User not found",
                "Could not retrieve user information for organization creation.",
            )

        return await self.provision_organization(auth_user, email=email, plan_id=plan_id)

    # ==========================================
    # PROVISIONING
    # ==========================================

    async def provision_organization(
        self,
        auth_user: Dict[str, Any],
        email: Optional[str] = None,
        plan_id: Optional[str] = None
    ) -> str:
        """Create organization, owner membership, entitlement and profile for a user."""
        user_id = auth_user["id"]
        user_meta = auth_user.get("user_metadata") or {}
        name = organization_name_for(user_meta)

        logger.info(f"[Provisioning] No organization found, creating '{name}' for user {user_id}...")

        async def create_organization(results: Dict[str, Any]) -> str:
            response = self.supabase.table("organizations").insert({
                "name": name,
                "owner_id": user_id,
            }).execute()
            if not response.data:
                raise RuntimeError("organization insert returned no row")
            return response.data[0]["id"]

        async def delete_organization(results: Dict[str, Any]) -> None:
            self.supabase.table("organizations").delete().eq(
                "id", results["organization"]
            ).execute()

        async def create_membership(results: Dict[str, Any]) -> None:
            self.supabase.table("organization_members").insert({
                "organization_id": results["organization"],
                "user_id": user_id,
                "role": "owner",
            }).execute()

        async def delete_membership(results: Dict[str, Any]) -> None:
            self.supabase.table("organization_members").delete().eq(
                "organization_id", results["organization"]
            ).eq("user_id", user_id).execute()

        async def create_entitlement(results: Dict[str, Any]) -> None:
            self.supabase.table("organization_entitlements").insert({
                "organization_id": results["organization"],
                "subscription_active": False,
                "credits_balance": 0,
                "plan_tier": plan_id or DEFAULT_PLAN_TIER,
            }).execute()

        async def delete_entitlement(results: Dict[str, Any]) -> None:
            self.supabase.table("organization_entitlements").delete().eq(
                "organization_id", results["organization"]
            ).execute()

        async def upsert_profile(results: Dict[str, Any]) -> None:
            full_name = " ".join(
                part for part in (user_meta.get("first_name"), user_meta.get("last_name")) if part
            ) or email
            self.supabase.table("profiles").upsert({
                "id": user_id,
                "email": auth_user.get("email") or email,
                "full_name": full_name,
                "phone": user_meta.get("phone"),
                "language": "en",
                "ai_tone": "professional",
            }, on_conflict="id").execute()

        saga = ProvisioningSaga(label=f"user {user_id}")
        saga.add_step("organization", create_organization, delete_organization)
        saga.add_step("membership", create_membership, delete_membership)
        saga.add_step("entitlement", create_entitlement, delete_entitlement)
        saga.add_step("profile", upsert_profile)

        results = await saga.run()
        organization_id = results["organization"]

        logger.info(f"[Provisioning] Organization setup complete: {organization_id} ({name})")
        return organization_id

    # ==========================================
    # COLLABORATORS
    # ==========================================

    async def invite_collaborator(
        self,
        email: str,
        organization_id: str,
        role: str = "member"
    ) -> InviteResult:
        """
        Add an existing user to an organization.

        Unknown emails are logged as pending invites; the caller still gets a
        success response.
        """
        response = self.supabase.table("profiles").select("id").eq(
            "email", email
        ).limit(1).execute()

        rows = response.data or []
        if not rows:
            logger.info(f"[Invite] User {email} not found, invite left pending for {organization_id}")
            return InviteResult(success=True, message="Invitation sent", user_added=False)

        user_id = rows[0]["id"]
        try:
            self.supabase.table("organization_members").insert({
                "organization_id": organization_id,
                "user_id": user_id,
                "role": role,
            }).execute()
        except Exception as e:
            if not is_unique_violation(e):
                raise
            logger.info(f"[Invite] User {user_id} already in organization {organization_id}")

        logger.info(f"[Invite] Added {email} to organization {organization_id} as {role}")
        return InviteResult(success=True, message="User added to organization", user_added=True)


# Singleton instance
_organization_service: Optional[OrganizationService] = None


def get_organization_service() -> OrganizationService:
    """Get or create organization service instance."""
    global _organization_service
    if _organization_service is None:
        _organization_service = OrganizationService()
    return _organization_service
