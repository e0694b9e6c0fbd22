"""
Reservation Service

Books tables through the availability engine and moves reservations
through the same lifecycle as orders. Admission is evaluated once, at
creation; later edits and transitions never re-check capacity.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from typing import Optional, Union

from tablekeeper.core.errors import InvalidStateTransition, NotFound
from tablekeeper.schemas import (
    Reservation,
    ReservationCreate,
    ReservationFilter,
    ReservationStatus,
)
from tablekeeper.services.availability import AvailabilityEngine
from tablekeeper.services.clients import ClientLedger
from tablekeeper.services.lifecycle import check_transition, parse_status
from tablekeeper.services.notifications import PostCommitNotifier
from tablekeeper.storage import DualStoreCoordinator, utcnow

logger = logging.getLogger(__name__)


class ReservationService:
    """Entry points for booking and transitioning reservations."""

    def __init__(
        self,
        store: DualStoreCoordinator[Reservation],
        availability: AvailabilityEngine,
        clients: ClientLedger,
        notifier: Optional[PostCommitNotifier] = None,
    ):
        self.store = store
        self.availability = availability
        self.clients = clients
        self.notifier = notifier

    async def create_reservation(self, data: ReservationCreate) -> Reservation:
        """
        Book a table.

        Raises:
            BlockedDate: The date is closed
            OutsideOperatingHours: The time is outside the date's hours
            CapacityExceeded: The date is fully booked
            StorageUnavailable: Neither store accepted the write
        """
        async with self.availability.hold(data.reservation_date):
            await self.availability.check_admission(data.reservation_date, data.reservation_time)

            now = utcnow()
            reservation = Reservation(
                id=await self.store.allocate_id(),
                customer_name=data.customer_name,
                customer_email=data.customer_email,
                customer_phone=data.customer_phone,
                party_size=data.party_size,
                reservation_date=data.reservation_date,
                reservation_time=data.reservation_time,
                special_requests=data.special_requests,
                marketing_consent=data.marketing_consent,
                status=ReservationStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            reservation = await self.store.create(reservation)

        logger.info(
            f"Reservation #{reservation.id} for {reservation.party_size} on "
            f"{reservation.reservation_date} {reservation.reservation_time}"
        )

        if reservation.marketing_consent:
            try:
                await self.clients.upsert_client(
                    email=reservation.customer_email,
                    name=reservation.customer_name,
                    phone=reservation.customer_phone,
                    reservation_delta=True,
                )
            except Exception:
                logger.exception(f"Client ledger update failed for reservation #{reservation.id}")

        if self.notifier is not None:
            try:
                self.notifier.reservation_created(reservation)
            except Exception:
                logger.exception(f"Could not queue confirmation for reservation #{reservation.id}")

        return reservation

    async def get_reservation(self, reservation_id: int) -> Reservation:
        reservation = await self.store.find_by_id(reservation_id)
        if reservation is None:
            raise NotFound(f"Reservation #{reservation_id} not found", reservation_id=reservation_id)
        return reservation

    async def list_reservations(self, filters: Optional[ReservationFilter] = None) -> list[Reservation]:
        filters = filters or ReservationFilter()
        return await self.store.find_all(filters.to_filters())

    async def transition_reservation(
        self,
        reservation_id: int,
        target_status: Union[str, ReservationStatus],
        table_number: Optional[str] = None,
    ) -> Reservation:
        """
        Move a reservation along an allowed edge, optionally assigning a table.

        Raises:
            InvalidStateTransition: The edge is not allowed; nothing changes
            NotFound: Unknown reservation
        """
        target = parse_status(ReservationStatus, target_status)

        async with self.store.locks.hold(reservation_id):
            reservation = await self.get_reservation(reservation_id)
            check_transition(reservation.status, target)

            patch: dict = {"status": target}
            if table_number is not None:
                patch["table_number"] = table_number

            updated = await self.store.update(
                reservation_id, patch, expected={"status": reservation.status}
            )
            if updated is None:
                current = await self.get_reservation(reservation_id)
                raise InvalidStateTransition(current.status.value, target.value)

        logger.info(f"Reservation #{reservation_id}: {reservation.status.value} -> {target.value}")
        return updated
