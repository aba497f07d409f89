"""
Email Router - Transactional emails

Endpoints:
- POST /email/welcome - Send the post-signup welcome email
"""

import logging

from fastapi import APIRouter, Depends

from app.models.billing import SuccessResponse, WelcomeEmailRequest
from app.services.email_service import EmailService, get_email_service
from app.utils.errors import handle_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/email", tags=["email"])


@router.post("/welcome", response_model=SuccessResponse)
async def send_welcome_email(
    body: WelcomeEmailRequest,
    email_service: EmailService = Depends(get_email_service)
):
    """Send the welcome email. Runs in mock mode when SendGrid is not configured."""
    try:
        result = await email_service.send_welcome_email(
            to=body.to,
            data=body.data.model_dump() if body.data is not None else None,
            subject=body.subject,
        )
        return SuccessResponse(success=result.success, message=result.message)
    except Exception as e:
        raise handle_exception(
            e,
            "send_welcome_email",
            fallback_error="Failed to send email",
            resource_id=body.to,
        )
