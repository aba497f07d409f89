"""
Organization Router - Team membership

Endpoints:
- POST /organization/invite-collaborator - Add a user to an organization
"""

import logging

from fastapi import APIRouter, Depends

from app.models.billing import InviteCollaboratorRequest, SuccessResponse
from app.services.organization_service import OrganizationService, get_organization_service
from app.utils.errors import ValidationFailed, handle_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/organization", tags=["organization"])


@router.post("/invite-collaborator", response_model=SuccessResponse)
async def invite_collaborator(
    body: InviteCollaboratorRequest,
    organization_service: OrganizationService = Depends(get_organization_service)
):
    """
    Invite a collaborator by email.

    Existing users are added to the organization right away. Unknown emails
    get a pending invite and the same success response.
    """
    if not body.email or not body.organization_id:
        raise ValidationFailed("Missing required fields", "Email and Organization ID are required.")

    try:
        result = await organization_service.invite_collaborator(
            body.email,
            body.organization_id,
            role=body.role,
        )
        return SuccessResponse(success=result.success, message=result.message)
    except Exception as e:
        raise handle_exception(
            e,
            "invite_collaborator",
            fallback_error="Failed to process invitation",
            organization_id=body.organization_id,
        )
