from datetime import date, datetime, time, timezone

from tablekeeper.schemas import Order, OrderItem, Reservation
from tablekeeper.services.notifications import MockNotificationService
from tablekeeper.services.notifications.base import BaseNotificationService, NotificationResult

NOW = datetime.now(timezone.utc)


class OutboxNotifier(BaseNotificationService):
    def __init__(self):
        self.emails = []
        self.texts = []

    @property
    def provider_name(self) -> str:
        return "outbox"

    async def send_sms(self, to_phone, message):
        self.texts.append((to_phone, message))
        return NotificationResult(True, message_id="sms-1", provider="outbox")

    async def send_email(self, to_email, subject, body_html, body_text=None):
        self.emails.append({"to": to_email, "subject": subject, "html": body_html, "text": body_text})
        return NotificationResult(True, message_id="email-1", provider="outbox")

    async def health_check(self) -> bool:
        return True


def _order(name="Ana Borg", dish="Test Dish"):
    return Order(
        id=1,
        created_at=NOW,
        updated_at=NOW,
        items=[OrderItem(menu_item_id=1, name=dish, price=10.0, quantity=2)],
        customer_name=name,
        customer_email="ana@example.com",
        total=20.0,
    )


def _reservation(name="Ana Borg", phone=None):
    return Reservation(
        id=3,
        created_at=NOW,
        updated_at=NOW,
        customer_name=name,
        customer_email="ana@example.com",
        customer_phone=phone,
        party_size=4,
        reservation_date=date(2030, 5, 17),
        reservation_time=time(19, 30),
    )


async def test_order_email_escapes_customer_text():
    outbox = OutboxNotifier()
    await outbox.send_order_confirmation(_order(name="<script>alert(1)</script>", dish="Fish & Chips"))

    email = outbox.emails[0]
    assert "<script>" not in email["html"]
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in email["html"]
    assert "Fish &amp; Chips" in email["html"]
    # The plain-text part is left as typed
    assert "<script>alert(1)</script>" in email["text"]


async def test_reservation_email_escapes_customer_text():
    outbox = OutboxNotifier()
    result = await outbox.send_reservation_confirmation(_reservation(name='<b onclick="x">Ana</b>'))

    assert result.success
    assert "<b onclick" not in outbox.emails[0]["html"]
    assert "&lt;b onclick=&quot;x&quot;&gt;" in outbox.emails[0]["html"]
    assert outbox.texts == []


async def test_reservation_with_phone_is_also_texted():
    outbox = OutboxNotifier()
    await outbox.send_reservation_confirmation(_reservation(phone="+35699123456"))

    assert outbox.texts[0][0] == "+35699123456"
    assert "reservation #3" in outbox.texts[0][1]


async def test_mock_records_successful_sends():
    mock = MockNotificationService(failure_rate=0.0, latency=(0, 0))
    result = await mock.send_order_confirmation(_order())

    assert result.success
    assert result.message_id.startswith("email_mock_")
    assert mock.sent == [result]


async def test_mock_failures_are_not_recorded():
    mock = MockNotificationService(failure_rate=1.0, latency=(0, 0))
    result = await mock.send_sms("+35699123456", "hello")

    assert not result.success
    assert result.error_message == "Simulated sms failure"
    assert mock.sent == []
