"""
Static Menu Service

In-process catalog used in development and tests.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from typing import Iterable, Optional

from tablekeeper.services.menu.base import BaseMenuService, MenuItemInfo

logger = logging.getLogger(__name__)


DEFAULT_MENU = [
    MenuItemInfo(id=1, name="Classic Burger", price=12.99, category="Burgers"),
    MenuItemInfo(id=2, name="Cheese Burger", price=14.99, category="Burgers"),
    MenuItemInfo(id=3, name="French Fries", price=4.99, category="Sides"),
    MenuItemInfo(id=4, name="Coca Cola", price=2.99, category="Drinks"),
    MenuItemInfo(id=5, name="Chocolate Cake", price=6.99, category="Desserts"),
]


class StaticMenuService(BaseMenuService):
    """Menu lookups against a fixed list of items."""

    def __init__(self, items: Optional[Iterable[MenuItemInfo]] = None):
        self._items = {item.id: item for item in (items if items is not None else DEFAULT_MENU)}
        logger.info(f"StaticMenuService initialized ({len(self._items)} items)")

    @property
    def provider_name(self) -> str:
        return "static"

    async def get_item(self, item_id: int) -> Optional[MenuItemInfo]:
        item = self._items.get(item_id)
        if item is None or not item.active:
            return None
        return item

    async def health_check(self) -> bool:
        return True
