"""
Celery Tasks
Background work that never runs on the request path:
- order and reservation confirmations (email/SMS)
- scheduled reconciliation of the two stores
- Excel export of orders
"""

import asyncio
import logging
import time
from datetime import datetime, timezone

from tablekeeper.celery_worker import celery_app
from tablekeeper.container import build_services
from tablekeeper.schemas import Order, Reservation
from tablekeeper.services.notifications import get_notification_service

logger = logging.getLogger(__name__)


class NotificationFailed(Exception):
    """The provider refused a confirmation; the task retries."""


class TaskNotifier:
    """Queues confirmations on the Celery broker once a record is stored."""

    def order_created(self, order: Order) -> None:
        send_order_confirmation.delay(order.model_dump(mode="json"))

    def reservation_created(self, reservation: Reservation) -> None:
        send_reservation_confirmation.delay(reservation.model_dump(mode="json"))


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(NotificationFailed, ConnectionError),
    retry_backoff=True
)
def send_order_confirmation(self, order_data: dict) -> dict:
    """
    Email the order summary to the customer.

    Args:
        order_data: Order as produced by model_dump(mode="json")
    """
    order = Order.model_validate(order_data)
    logger.info(f"Task {self.request.id}: confirming order #{order.id}")

    result = asyncio.run(get_notification_service().send_order_confirmation(order))
    if not result.success:
        raise NotificationFailed(result.error_message or f"Order #{order.id} confirmation failed")

    return {
        'success': True,
        'order_id': order.id,
        'message_id': result.message_id,
        'provider': result.provider,
    }


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(NotificationFailed, ConnectionError),
    retry_backoff=True
)
def send_reservation_confirmation(self, reservation_data: dict) -> dict:
    """Email (and text, when a phone was given) the reservation details."""
    reservation = Reservation.model_validate(reservation_data)
    logger.info(f"Task {self.request.id}: confirming reservation #{reservation.id}")

    result = asyncio.run(get_notification_service().send_reservation_confirmation(reservation))
    if not result.success:
        raise NotificationFailed(
            result.error_message or f"Reservation #{reservation.id} confirmation failed"
        )

    return {
        'success': True,
        'reservation_id': reservation.id,
        'message_id': result.message_id,
        'provider': result.provider,
    }


async def _reconcile() -> dict:
    services = build_services()
    try:
        report = await services.reconciliation.run()
    finally:
        await services.close()
    return report.model_dump(mode="json")


@celery_app.task(bind=True)
def run_reconciliation_task(self) -> dict:
    """
    One reconciliation pass.

    The engine holds a file lock in the data directory for the whole
    pass; a worker that cannot get it within the timeout skips the run.
    """
    start_time = time.time()
    report = asyncio.run(_reconcile())

    elapsed = round(time.time() - start_time, 3)
    if report["skipped"]:
        logger.warning(f"Task {self.request.id}: reconciliation already running, skipped")
        return {'skipped': True, 'reason': 'reconciliation already running'}

    logger.info(f"Task {self.request.id}: reconciliation completed in {elapsed}s")
    report['processing_time_seconds'] = elapsed
    return report


async def _export_orders() -> dict:
    services = build_services()
    try:
        return await services.reports.export_orders()
    finally:
        await services.close()


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    retry_backoff=True
)
def export_orders_to_excel(self) -> dict:
    """Write every order to the Excel workbook in the data directory."""
    start_time = time.time()
    result = asyncio.run(_export_orders())

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = self.request.id
    result['processing_time_seconds'] = elapsed

    if not result['success']:
        logger.warning(f"Task {self.request.id}: export failed - {result['message']}")
        raise self.retry()

    logger.info(f"Task {self.request.id}: {result['message']} in {elapsed}s")
    return result


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now(timezone.utc).isoformat()
    }
