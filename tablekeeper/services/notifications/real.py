"""
Real Notification Service

Production implementation using:
- Twilio for SMS
- SendGrid for Email

Both SDKs are blocking, so calls run in a worker thread.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from twilio.rest import Client as TwilioClient
from twilio.base.exceptions import TwilioException

from tablekeeper.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
)
from tablekeeper.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class RealNotificationService(BaseNotificationService):
    """Production notification service using Twilio and SendGrid."""

    def __init__(self):
        # Initialize Twilio
        if settings.twilio_account_sid and settings.twilio_auth_token:
            self.twilio_client = TwilioClient(
                settings.twilio_account_sid,
                settings.twilio_auth_token
            )
            self.twilio_from_number = settings.twilio_phone_number
        else:
            self.twilio_client = None
            logger.warning("Twilio credentials not configured")

        # Initialize SendGrid
        if settings.sendgrid_api_key:
            self.sendgrid_client = SendGridAPIClient(settings.sendgrid_api_key)
            self.sendgrid_from_email = settings.sendgrid_from_email
        else:
            self.sendgrid_client = None
            logger.warning("SendGrid credentials not configured")

        logger.info("RealNotificationService initialized")

    @property
    def provider_name(self) -> str:
        return "real"

    async def send_sms(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Send SMS via Twilio."""
        if not self.twilio_client:
            return NotificationResult(
                success=False,
                error_message="Twilio not configured",
                provider="twilio"
            )

        try:
            result = await asyncio.to_thread(
                self.twilio_client.messages.create,
                body=message,
                from_=self.twilio_from_number,
                to=to_phone,
            )
        except TwilioException as e:
            logger.error(f"Twilio error: {e}")
            return NotificationResult(
                success=False,
                error_message=str(e),
                provider="twilio"
            )

        logger.info(f"SMS sent to {to_phone}: {result.sid}")
        return NotificationResult(
            success=True,
            message_id=result.sid,
            provider="twilio"
        )

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send email via SendGrid."""
        if not self.sendgrid_client:
            return NotificationResult(
                success=False,
                error_message="SendGrid not configured",
                provider="sendgrid"
            )

        message = Mail(
            from_email=self.sendgrid_from_email,
            to_emails=to_email,
            subject=subject,
            html_content=body_html,
            plain_text_content=body_text
        )

        try:
            response = await asyncio.to_thread(self.sendgrid_client.send, message)
        except Exception as e:
            logger.error(f"SendGrid error: {e}")
            return NotificationResult(
                success=False,
                error_message=str(e),
                provider="sendgrid"
            )

        logger.info(f"Email sent to {to_email}: {response.status_code}")
        return NotificationResult(
            success=response.status_code in [200, 201, 202],
            message_id=response.headers.get('X-Message-Id'),
            provider="sendgrid"
        )

    async def health_check(self) -> bool:
        """Configured means healthy; neither SDK offers a cheap ping."""
        return self.sendgrid_client is not None
