"""
Service wiring.

Builds the stores and services once per process (or once per Celery
task run, since an async engine cannot outlive its event loop).

Usage:
    from tablekeeper.container import get_services

    services = get_services()
    order = await services.orders.create_order(data)
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from tablekeeper.core.config import Settings, get_settings
from tablekeeper.database import create_engine_for, create_session_maker, init_db
from tablekeeper.models import AvailabilityRuleRecord, ClientRecord, OrderRecord, ReservationRecord
from tablekeeper.schemas import AvailabilityRule, Client, Order, Reservation
from tablekeeper.services import (
    AvailabilityEngine,
    ClientLedger,
    OrderService,
    ReconciliationEngine,
    ReportService,
    ReservationService,
)
from tablekeeper.services.menu import BaseMenuService, get_menu_service
from tablekeeper.services.notifications import PostCommitNotifier
from tablekeeper.storage import DualStoreCoordinator, FileRepository, SqlRepository
from tablekeeper.storage.primary import UNREACHABLE_ERRORS

logger = logging.getLogger(__name__)

ENTITIES = {
    "orders": (Order, OrderRecord),
    "reservations": (Reservation, ReservationRecord),
    "availability_rules": (AvailabilityRule, AvailabilityRuleRecord),
    "clients": (Client, ClientRecord),
}


@dataclass
class Services:
    engine: AsyncEngine
    stores: dict[str, DualStoreCoordinator]
    orders: OrderService
    reservations: ReservationService
    availability: AvailabilityEngine
    clients: ClientLedger
    reconciliation: ReconciliationEngine
    reports: ReportService
    menu: BaseMenuService

    async def start(self) -> None:
        """Create primary tables; an unreachable primary is not fatal."""
        try:
            await init_db(self.engine)
        except UNREACHABLE_ERRORS as e:
            logger.warning(f"Primary store not initialized, serving from fallback: {e}")

    async def drain(self) -> None:
        for store in self.stores.values():
            await store.drain()

    async def close(self) -> None:
        await self.drain()
        await self.engine.dispose()


def build_services(
    settings: Optional[Settings] = None,
    engine: Optional[AsyncEngine] = None,
    menu: Optional[BaseMenuService] = None,
    notifier: Optional[PostCommitNotifier] = None,
) -> Services:
    """Wire repositories, coordinators and services together."""
    settings = settings or get_settings()
    engine = engine or create_engine_for(
        settings.database_url,
        timeout=settings.primary_timeout_seconds,
        echo=settings.debug,
    )
    session_maker = create_session_maker(engine)
    data_dir = Path(settings.data_directory)

    stores: dict[str, DualStoreCoordinator] = {}
    for name, (entity_cls, model) in ENTITIES.items():
        stores[name] = DualStoreCoordinator(
            primary=SqlRepository(name, entity_cls, model, session_maker),
            fallback=FileRepository(name, entity_cls, data_dir, settings.fallback_lock_timeout),
            timeout=settings.primary_timeout_seconds,
            retry_after=settings.primary_retry_after_seconds,
        )

    menu = menu or get_menu_service()
    clients = ClientLedger(stores["clients"])
    availability = AvailabilityEngine(
        stores["availability_rules"],
        stores["reservations"],
        default_max_reservations=settings.default_max_reservations,
    )

    return Services(
        engine=engine,
        stores=stores,
        orders=OrderService(stores["orders"], menu, clients, notifier),
        reservations=ReservationService(stores["reservations"], availability, clients, notifier),
        availability=availability,
        clients=clients,
        reconciliation=ReconciliationEngine(
            stores,
            lock_path=data_dir / "reconciliation.lock",
            lock_timeout=settings.reconciliation_lock_timeout,
        ),
        reports=ReportService(
            stores["orders"],
            data_dir,
            excel_filename=settings.excel_filename,
            lock_timeout=settings.fallback_lock_timeout,
        ),
        menu=menu,
    )


@lru_cache()
def get_services() -> Services:
    """Process-wide services for the API, queuing notifications through Celery."""
    from tablekeeper.tasks import TaskNotifier

    return build_services(notifier=TaskNotifier())
