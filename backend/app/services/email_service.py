"""
Email Service

Transactional email through the SendGrid v3 API. Without SENDGRID_API_KEY the
service runs in mock mode: nothing is sent and the caller gets a success
message naming the recipient.
"""

import html
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from app.config import Settings, get_settings
from app.utils.errors import UpstreamError, ValidationFailed

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"
DEFAULT_WELCOME_SUBJECT = "Welcome to Armonyco!"
DEFAULT_DASHBOARD_URL = "https://app.armonyco.com"


@dataclass
class EmailResult:
    success: bool
    message: str


def render_welcome_email(data: Dict[str, Any]) -> str:
    """Welcome email HTML. All interpolated values are escaped."""
    first_name = html.escape(str(data.get("first_name") or "there"))
    plan_name = html.escape(str(data.get("plan_name") or "Pro"))
    dashboard_url = html.escape(str(data.get("dashboard_url") or DEFAULT_DASHBOARD_URL), quote=True)
    try:
        credits = f"{int(data.get('credits') or 0):,}"
    except (TypeError, ValueError):
        credits = "0"

    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <style>
        body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
        .header {{ background: #000; color: #ffd700; padding: 30px; text-align: center; }}
        .content {{ background: #f1f5f9; padding: 30px; border-radius: 0 0 8px 8px; }}
        .button {{ display: inline-block; background: #ffd700; color: #000; padding: 12px 30px;
                  text-decoration: none; border-radius: 5px; font-weight: bold; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1 style="margin:0;">Welcome to Armonyco!</h1>
        </div>
        <div class="content">
            <h2 style="margin-top:0;">Hello {first_name},</h2>
            <p>Your account has been successfully created!</p>
            <p><strong>Plan:</strong> {plan_name}</p>
            <p><strong>Credits:</strong> {credits} ArmoCredits</p>
            <center style="margin: 30px 0;">
                <a href="{dashboard_url}" class="button">Go to Dashboard</a>
            </center>
            <p style="margin-top: 30px; border-top: 1px solid #e2e8f0; padding-top: 20px;">
                See you soon,<br>
                <strong>The Armonyco Team</strong>
            </p>
        </div>
    </div>
</body>
</html>"""


class EmailService:
    """SendGrid-backed email sender"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self._settings = settings
        self.transport = transport
        self.timeout = timeout

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    async def send_welcome_email(
        self,
        to: Optional[str],
        data: Optional[Dict[str, Any]],
        subject: Optional[str] = None
    ) -> EmailResult:
        if not to or data is None:
            raise ValidationFailed("Missing required fields", "Both 'to' and 'data' are required.")

        api_key = self.settings.sendgrid_api_key
        if not api_key:
            logger.warning("[Email] SENDGRID_API_KEY not found. Falling back to MOCK mode.")
            return EmailResult(
                success=True,
                message=f"MOCK: Email service not configured. Email would be sent to: {to}",
            )

        await self._send(
            api_key,
            to=to,
            subject=subject or DEFAULT_WELCOME_SUBJECT,
            html_body=render_welcome_email(data),
        )
        logger.info(f"[Email] Welcome email sent to: {to}")
        return EmailResult(success=True, message="Email sent")

    async def _send(self, api_key: str, to: str, subject: str, html_body: str) -> None:
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.settings.from_email},
            "subject": subject,
            "content": [{"type": "text/html", "value": html_body}],
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(
                SENDGRID_SEND_URL,
                json=payload,
                headers={"Authorization": f"Bearer {api_key}"},
            )

        # SendGrid answers 202 Accepted
        if response.status_code >= 400:
            logger.error(f"[Email] SendGrid rejected message to {to}: HTTP {response.status_code} {response.text[:200]}")
            raise UpstreamError(
                "Failed to send email",
                f"SendGrid returned HTTP {response.status_code}",
            )


# Singleton instance
_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """Get or create email service instance"""
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
