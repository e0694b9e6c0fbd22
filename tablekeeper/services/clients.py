"""
Client Ledger

Folds marketing-consented customers into one record per email. Every
call represents one real order or reservation, so counts only grow.

Emails are compared as exact strings.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from typing import Optional

from tablekeeper.core.errors import StorageUnavailable
from tablekeeper.schemas import Client
from tablekeeper.storage import DualStoreCoordinator, KeyedLock, utcnow

logger = logging.getLogger(__name__)

# Compare-and-swap retries when another process updates the same client
MAX_ATTEMPTS = 3


class ClientLedger:
    """Sole writer of Client records."""

    def __init__(self, store: DualStoreCoordinator[Client]):
        self.store = store
        self.locks = KeyedLock()

    async def find_client(self, email: str) -> Optional[Client]:
        matches = await self.store.find_all({"email": email})
        if not matches:
            return None
        return max(matches, key=lambda c: c.updated_at)

    async def list_clients(self) -> list[Client]:
        return await self.store.find_all()

    async def upsert_client(
        self,
        email: str,
        name: str,
        phone: Optional[str] = None,
        order_delta: Optional[float] = None,
        reservation_delta: bool = False,
    ) -> Client:
        """
        Create the client or add one event to its totals.

        Args:
            email: Ledger key (exact match)
            name: Latest customer name
            phone: Latest phone, kept when None
            order_delta: Order total to add; counts one order
            reservation_delta: Count one reservation
        """
        async with self.locks.hold(email):
            for _ in range(MAX_ATTEMPTS):
                existing = await self.find_client(email)
                if existing is None:
                    return await self._create(email, name, phone, order_delta, reservation_delta)

                patch: dict = {"name": name}
                if phone:
                    patch["phone"] = phone
                if order_delta is not None:
                    patch["total_orders"] = existing.total_orders + 1
                    patch["total_spent"] = round(existing.total_spent + order_delta, 2)
                if reservation_delta:
                    patch["total_reservations"] = existing.total_reservations + 1

                updated = await self.store.update(
                    existing.id,
                    patch,
                    expected={
                        "total_orders": existing.total_orders,
                        "total_reservations": existing.total_reservations,
                    },
                )
                if updated is not None:
                    logger.debug(f"Client {email} updated (orders={updated.total_orders})")
                    return updated
                logger.info(f"Client {email} changed concurrently, retrying")

        raise StorageUnavailable(f"Could not update client {email}", email=email)

    async def _create(
        self,
        email: str,
        name: str,
        phone: Optional[str],
        order_delta: Optional[float],
        reservation_delta: bool,
    ) -> Client:
        now = utcnow()
        client = Client(
            id=await self.store.allocate_id(),
            email=email,
            name=name,
            phone=phone,
            marketing_consent=True,
            total_orders=1 if order_delta is not None else 0,
            total_spent=round(order_delta or 0.0, 2),
            total_reservations=1 if reservation_delta else 0,
            created_at=now,
            updated_at=now,
        )
        client = await self.store.create(client)
        logger.info(f"New client added to ledger: {email}")
        return client
