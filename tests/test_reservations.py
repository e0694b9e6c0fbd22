import asyncio
from datetime import time, timedelta

import pytest

from tablekeeper.core.errors import (
    BlockedDate,
    CapacityExceeded,
    InvalidStateTransition,
    OutsideOperatingHours,
)
from tablekeeper.schemas import DateConfiguration, ReservationFilter, ReservationStatus

from conftest import make_reservation


async def test_capacity_holds_under_concurrent_bookings(services, booking_day):
    await services.availability.configure_date(booking_day, DateConfiguration(max_reservations=2))

    results = await asyncio.gather(
        *(services.reservations.create_reservation(make_reservation(booking_day)) for _ in range(3)),
        return_exceptions=True,
    )

    booked = [r for r in results if not isinstance(r, Exception)]
    refused = [r for r in results if isinstance(r, Exception)]
    assert len(booked) == 2
    assert all(r.status == ReservationStatus.PENDING for r in booked)
    assert len(refused) == 1 and isinstance(refused[0], CapacityExceeded)
    assert await services.availability.count_booked(booking_day) == 2


async def test_cancelled_reservations_free_capacity(services, booking_day):
    await services.availability.configure_date(booking_day, DateConfiguration(max_reservations=1))
    first = await services.reservations.create_reservation(make_reservation(booking_day))

    with pytest.raises(CapacityExceeded):
        await services.reservations.create_reservation(make_reservation(booking_day))

    await services.reservations.transition_reservation(first.id, "cancelled")
    second = await services.reservations.create_reservation(make_reservation(booking_day))
    assert second.id != first.id


async def test_blocked_date_reports_reason(services, booking_day):
    await services.availability.block_date(booking_day, "holiday")

    with pytest.raises(BlockedDate) as info:
        await services.reservations.create_reservation(make_reservation(booking_day))
    assert info.value.reason == "holiday"
    assert await services.reservations.list_reservations() == []


async def test_unblock_reopens_and_keeps_configuration(services, booking_day):
    await services.availability.configure_date(booking_day, DateConfiguration(max_reservations=3))
    await services.availability.block_date(booking_day, "holiday")

    rule = await services.availability.unblock_date(booking_day)
    assert rule.is_available
    assert rule.blocked_reason is None
    assert rule.max_reservations == 3

    again = await services.availability.unblock_date(booking_day)
    assert again.is_available and again.max_reservations == 3

    reservation = await services.reservations.create_reservation(make_reservation(booking_day))
    assert reservation.status == ReservationStatus.PENDING


async def test_unblocking_an_unknown_date_is_a_no_op(services, booking_day):
    assert await services.availability.unblock_date(booking_day) is None


async def test_operating_hours_are_inclusive(services, booking_day):
    await services.availability.configure_date(
        booking_day,
        DateConfiguration(open_time=time(12, 0), close_time=time(22, 0)),
    )

    await services.reservations.create_reservation(make_reservation(booking_day, at=time(12, 0)))
    await services.reservations.create_reservation(make_reservation(booking_day, at=time(22, 0)))

    for outside in (time(11, 59), time(22, 1)):
        with pytest.raises(OutsideOperatingHours):
            await services.reservations.create_reservation(make_reservation(booking_day, at=outside))


async def test_availability_view(services, booking_day):
    view = await services.availability.get_availability(booking_day)
    assert view.is_available
    assert view.max_reservations == 50
    assert view.remaining == 50

    await services.reservations.create_reservation(make_reservation(booking_day))
    await services.availability.block_date(booking_day, "private event")

    view = await services.availability.get_availability(booking_day)
    assert not view.is_available
    assert view.blocked_reason == "private event"
    assert view.booked == 1
    assert view.remaining == 49


async def test_transition_assigns_table(services, booking_day):
    reservation = await services.reservations.create_reservation(make_reservation(booking_day))

    confirmed = await services.reservations.transition_reservation(
        reservation.id, "confirmed", table_number="T4"
    )
    assert confirmed.status == ReservationStatus.CONFIRMED
    assert confirmed.table_number == "T4"

    await services.reservations.transition_reservation(reservation.id, "completed")
    with pytest.raises(InvalidStateTransition):
        await services.reservations.transition_reservation(reservation.id, "confirmed")


async def test_list_by_date(services, booking_day):
    other_day = booking_day + timedelta(days=1)
    mine = await services.reservations.create_reservation(make_reservation(booking_day))
    await services.reservations.create_reservation(make_reservation(other_day))

    found = await services.reservations.list_reservations(ReservationFilter(reservation_date=booking_day))
    assert [r.id for r in found] == [mine.id]


async def test_reservation_notifies_and_counts_client(services, notifier, booking_day):
    reservation = await services.reservations.create_reservation(
        make_reservation(booking_day, consent=True, customer_phone="+356 9912 3456")
    )

    assert [r.id for r in notifier.reservations] == [reservation.id]
    client = await services.clients.find_client("ana@example.com")
    assert client.total_reservations == 1
    assert client.total_orders == 0
    assert client.phone == "+356 9912 3456"
