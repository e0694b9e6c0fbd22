"""
Services package.

Core entry points (orders, reservations, availability, client ledger,
reconciliation, reports) and the replaceable collaborators they use
(menu lookup, notifications).
"""

from tablekeeper.services.availability import AvailabilityEngine
from tablekeeper.services.clients import ClientLedger
from tablekeeper.services.orders import OrderService
from tablekeeper.services.reconciliation import ReconciliationEngine
from tablekeeper.services.reports import ReportService
from tablekeeper.services.reservations import ReservationService

__all__ = [
    "AvailabilityEngine",
    "ClientLedger",
    "OrderService",
    "ReconciliationEngine",
    "ReportService",
    "ReservationService",
]
