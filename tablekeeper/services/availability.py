"""
Availability Engine

Decides whether a reservation may be booked for a date, and owns the
per-date rules (blocks, opening hours, capacity).

Admission checks, in order:
    1. the date is blocked                      -> BlockedDate
    2. the time is outside the opening hours    -> OutsideOperatingHours
    3. the date already holds max_reservations  -> CapacityExceeded
       non-cancelled reservations

A date without a rule is open all day with the default capacity.
Checks and the following write must run inside hold(date), which is
also taken by block/unblock/configure.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, time
from typing import Any, AsyncIterator, Optional

from tablekeeper.core.errors import BlockedDate, CapacityExceeded, NotFound, OutsideOperatingHours
from tablekeeper.schemas import (
    AvailabilityResponse,
    AvailabilityRule,
    DateConfiguration,
    Reservation,
    ReservationStatus,
)
from tablekeeper.storage import DualStoreCoordinator, KeyedLock, utcnow

logger = logging.getLogger(__name__)


class AvailabilityEngine:
    """Admission control and per-date rules."""

    def __init__(
        self,
        rules: DualStoreCoordinator[AvailabilityRule],
        reservations: DualStoreCoordinator[Reservation],
        default_max_reservations: int = 50,
    ):
        self.rules = rules
        self.reservations = reservations
        self.default_max_reservations = default_max_reservations
        self.date_locks = KeyedLock()

    @asynccontextmanager
    async def hold(self, day: date) -> AsyncIterator[None]:
        """Critical section for one calendar date."""
        async with self.date_locks.hold(day):
            yield

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_rule(self, day: date) -> Optional[AvailabilityRule]:
        rules = await self.rules.find_all({"rule_date": day})
        if not rules:
            return None
        return max(rules, key=lambda r: r.updated_at)

    async def count_booked(self, day: date) -> int:
        """Non-cancelled reservations held for a date."""
        booked = await self.reservations.find_all({"reservation_date": day})
        return sum(1 for r in booked if r.status != ReservationStatus.CANCELLED)

    def capacity(self, rule: Optional[AvailabilityRule]) -> int:
        return rule.max_reservations if rule is not None else self.default_max_reservations

    async def check_admission(self, day: date, at: time) -> None:
        """
        Raise if a new reservation for day/at must be refused.

        Must be called inside hold(day).
        """
        rule = await self.get_rule(day)

        if rule is not None and not rule.is_available:
            logger.info(f"Reservation refused, {day} is blocked ({rule.blocked_reason})")
            raise BlockedDate(rule.blocked_reason)

        if rule is not None and rule.open_time is not None and rule.close_time is not None:
            if not (rule.open_time <= at <= rule.close_time):
                raise OutsideOperatingHours(
                    f"{at.strftime('%H:%M')} is outside opening hours "
                    f"{rule.open_time.strftime('%H:%M')}-{rule.close_time.strftime('%H:%M')}",
                    date=day.isoformat(),
                )

        capacity = self.capacity(rule)
        booked = await self.count_booked(day)
        if booked >= capacity:
            logger.info(f"Reservation refused, {day} is full ({booked}/{capacity})")
            raise CapacityExceeded(
                f"No reservations left for {day.isoformat()}",
                date=day.isoformat(),
                max_reservations=capacity,
            )

    async def get_availability(self, day: date) -> AvailabilityResponse:
        rule = await self.get_rule(day)
        capacity = self.capacity(rule)
        booked = await self.count_booked(day)
        return AvailabilityResponse(
            date=day,
            is_available=rule.is_available if rule is not None else True,
            blocked_reason=rule.blocked_reason if rule is not None else None,
            open_time=rule.open_time if rule is not None else None,
            close_time=rule.close_time if rule is not None else None,
            max_reservations=capacity,
            booked=booked,
            remaining=max(0, capacity - booked),
        )

    # =========================================================================
    # RULE CHANGES
    # =========================================================================

    async def _save_rule(self, day: date, changes: dict[str, Any]) -> AvailabilityRule:
        rule = await self.get_rule(day)
        if rule is None:
            now = utcnow()
            fields = {"max_reservations": self.default_max_reservations, **changes}
            rule = AvailabilityRule(
                id=await self.rules.allocate_id(),
                rule_date=day,
                created_at=now,
                updated_at=now,
                **fields,
            )
            return await self.rules.create(rule)

        updated = await self.rules.update(rule.id, changes)
        if updated is None:
            raise NotFound(f"Availability rule for {day} disappeared", date=day.isoformat())
        return updated

    async def block_date(self, day: date, reason: str) -> AvailabilityRule:
        async with self.hold(day):
            rule = await self._save_rule(day, {"is_available": False, "blocked_reason": reason})
        logger.info(f"Date {day} blocked: {reason}")
        return rule

    async def unblock_date(self, day: date) -> Optional[AvailabilityRule]:
        """Reopen a date; hours and capacity are kept. Unblocking an open date is a no-op."""
        async with self.hold(day):
            rule = await self.get_rule(day)
            if rule is None or rule.is_available:
                return rule
            rule = await self._save_rule(day, {"is_available": True, "blocked_reason": None})
        logger.info(f"Date {day} unblocked")
        return rule

    async def configure_date(self, day: date, config: DateConfiguration) -> AvailabilityRule:
        """Set opening hours and/or capacity for a date."""
        changes = config.model_dump(exclude_unset=True)
        if changes.get("max_reservations") is None:
            changes.pop("max_reservations", None)

        async with self.hold(day):
            rule = await self._save_rule(day, changes)
        logger.info(f"Date {day} configured: {changes}")
        return rule
