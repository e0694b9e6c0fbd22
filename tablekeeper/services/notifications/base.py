"""
Notification Service Abstract Base Class

Defines interface for sending SMS and Email notifications.
Supports both Mock (development) and Real (production) implementations.

Confirmations are sent after an order or reservation has been stored;
a failed notification never undoes the write.

Author: Khalil Bannouri
Version: 1.0.0
"""

import html
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Protocol

from tablekeeper.core.config import get_settings
from tablekeeper.schemas import Order, Reservation


@dataclass
class NotificationResult:
    """Result from sending a notification."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"


def order_confirmation_text(order: Order) -> str:
    restaurant = get_settings().restaurant_name
    lines = [f"Hi {order.customer_name}! We received your order #{order.id}."]
    for item in order.items:
        lines.append(f"  {item.quantity} x {item.name}  ${item.line_total:.2f}")
    if order.discount:
        lines.append(f"Discount: -${order.discount:.2f}")
    lines.append(f"Total: ${order.total:.2f}")
    lines.append(f"Thank you for ordering from {restaurant}!")
    return "\n".join(lines)


def reservation_confirmation_text(reservation: Reservation) -> str:
    restaurant = get_settings().restaurant_name
    return (
        f"Hi {reservation.customer_name}! Your table for {reservation.party_size} "
        f"on {reservation.reservation_date.isoformat()} at "
        f"{reservation.reservation_time.strftime('%H:%M')} is requested "
        f"(reservation #{reservation.id}, status: {reservation.status.value}).\n"
        f"See you at {restaurant}!"
    )


class PostCommitNotifier(Protocol):
    """Hands confirmations to the background worker once a record is stored."""

    def order_created(self, order: Order) -> None: ...

    def reservation_created(self, reservation: Reservation) -> None: ...


class BaseNotificationService(ABC):
    """Abstract base class for notification services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def send_sms(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Send an SMS message."""
        pass

    @abstractmethod
    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send an email."""
        pass

    async def send_order_confirmation(self, order: Order) -> NotificationResult:
        """Email the customer a summary of a new order."""
        restaurant = get_settings().restaurant_name
        message = order_confirmation_text(order)
        body_html = "<h1>Order Received</h1>" + "".join(
            f"<p>{html.escape(line)}</p>" for line in message.splitlines()
        )
        return await self.send_email(
            to_email=order.customer_email,
            subject=f"Order #{order.id} - {restaurant}",
            body_html=body_html,
            body_text=message,
        )

    async def send_reservation_confirmation(self, reservation: Reservation) -> NotificationResult:
        """Email the customer, and text them when a phone number was given."""
        restaurant = get_settings().restaurant_name
        message = reservation_confirmation_text(reservation)

        email_result = await self.send_email(
            to_email=reservation.customer_email,
            subject=f"Reservation #{reservation.id} - {restaurant}",
            body_html="<h1>Reservation Requested</h1>" + "".join(
                f"<p>{html.escape(line)}</p>" for line in message.splitlines()
            ),
            body_text=message,
        )

        sms_result = None
        if reservation.customer_phone:
            sms_result = await self.send_sms(reservation.customer_phone, message)

        return NotificationResult(
            success=email_result.success or bool(sms_result and sms_result.success),
            message_id=email_result.message_id or (sms_result.message_id if sms_result else None),
            error_message=email_result.error_message,
            provider=self.provider_name,
        )

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass
