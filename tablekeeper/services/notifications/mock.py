"""
Mock Notification Service

Logs messages instead of sending them. A small share of sends fails on
purpose so retry handling gets exercised in development.
"""

import asyncio
import logging
import random
import uuid
from typing import Optional

from tablekeeper.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
)

logger = logging.getLogger(__name__)


class MockNotificationService(BaseNotificationService):
    """
    Development notifier.

    Attributes:
        sent: Results of every successful send, oldest first
    """

    def __init__(self, failure_rate: float = 0.05, latency: tuple[float, float] = (0.1, 0.3)):
        self.failure_rate = failure_rate
        self.latency = latency
        self.sent: list[NotificationResult] = []

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _deliver(self, channel: str, recipient: str, summary: str) -> NotificationResult:
        await asyncio.sleep(random.uniform(*self.latency))

        if random.random() < self.failure_rate:
            logger.warning(f"Mock {channel} to {recipient} dropped")
            return NotificationResult(False, error_message=f"Simulated {channel} failure", provider="mock")

        result = NotificationResult(True, message_id=f"{channel}_mock_{uuid.uuid4().hex[:12]}", provider="mock")
        logger.info(f"Mock {channel} to {recipient} ({result.message_id}): {summary}")
        self.sent.append(result)
        return result

    async def send_sms(self, to_phone: str, message: str) -> NotificationResult:
        return await self._deliver("sms", to_phone, message[:50])

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        return await self._deliver("email", to_email, subject)

    async def health_check(self) -> bool:
        return True
