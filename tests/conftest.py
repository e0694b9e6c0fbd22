"""
Shared fixtures.

The primary store runs on SQLite through aiosqlite and the fallback
store in a temporary directory. Outages are simulated by wrapping a
repository in SwitchableRepository and turning it off.
"""

import asyncio
from datetime import date, time, timedelta

import pytest

from tablekeeper.container import build_services
from tablekeeper.core.config import Settings
from tablekeeper.core.errors import StoreUnavailable
from tablekeeper.schemas import OrderCreate, OrderItemRequest, ReservationCreate
from tablekeeper.services.menu import MenuItemInfo, StaticMenuService


class SwitchableRepository:
    """Delegates to a repository until switched off."""

    def __init__(self, repo):
        self._repo = repo
        self.online = True
        self.delay = 0.0

    @property
    def inner(self):
        return self._repo

    def __getattr__(self, name):
        attr = getattr(self._repo, name)
        if name.startswith("_") or not callable(attr):
            return attr

        async def guarded(*args, **kwargs):
            if self.delay:
                await asyncio.sleep(self.delay)
            if not self.online:
                if name == "health_check":
                    return False
                raise StoreUnavailable(f"{self._repo.provider_name} store offline")
            return await attr(*args, **kwargs)

        return guarded


class RecordingNotifier:
    def __init__(self):
        self.orders = []
        self.reservations = []

    def order_created(self, order):
        self.orders.append(order)

    def reservation_created(self, reservation):
        self.reservations.append(reservation)


TEST_MENU = [
    MenuItemInfo(id=1, name="Test Dish", price=10.0, category="Mains"),
    MenuItemInfo(id=2, name="Side Salad", price=4.5, category="Sides"),
    MenuItemInfo(id=3, name="Retired Special", price=20.0, active=False),
]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        env_mode="development",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'primary.db'}",
        data_directory=str(tmp_path / "fallback"),
        primary_timeout_seconds=5.0,
        primary_retry_after_seconds=0.0,
        fallback_lock_timeout=5,
        default_max_reservations=50,
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
async def services(settings, notifier):
    svc = build_services(settings, menu=StaticMenuService(TEST_MENU), notifier=notifier)
    for store in svc.stores.values():
        store.primary = SwitchableRepository(store.primary)
        store.fallback = SwitchableRepository(store.fallback)
    await svc.start()
    yield svc
    await svc.close()


@pytest.fixture
async def worker_services(settings, services):
    """A second process on the same database and data directory."""
    svc = build_services(settings, menu=StaticMenuService(TEST_MENU), notifier=RecordingNotifier())
    await svc.start()
    yield svc
    await svc.close()


def set_primary(services, online: bool) -> None:
    for store in services.stores.values():
        store.primary.online = online


def set_fallback(services, online: bool) -> None:
    for store in services.stores.values():
        store.fallback.online = online


@pytest.fixture
def booking_day():
    return date.today() + timedelta(days=7)


def make_order(quantity=2, discount=0.0, email="ana@example.com", consent=False, **extra) -> OrderCreate:
    return OrderCreate(
        items=[OrderItemRequest(menu_item_id=1, quantity=quantity)],
        customer_name="Ana Borg",
        customer_email=email,
        discount=discount,
        marketing_consent=consent,
        **extra,
    )


def make_reservation(day, at=time(19, 30), email="ana@example.com", consent=False, **extra) -> ReservationCreate:
    return ReservationCreate(
        customer_name="Ana Borg",
        customer_email=email,
        party_size=4,
        reservation_date=day,
        reservation_time=at,
        marketing_consent=consent,
        **extra,
    )
