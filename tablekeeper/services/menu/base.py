"""
Menu Service Abstract Base Class

Defines the lookup contract used when an order is placed: menu item id
in, current name and price out. Orders keep a snapshot of both, so the
menu can change freely afterwards.

Author: Khalil Bannouri
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class MenuItemInfo:
    """
    One sellable menu item.

    Attributes:
        id: Menu item id referenced by order lines
        name: Display name (English)
        price: Current unit price
        category: Category name
        active: Inactive items cannot be ordered
    """
    id: int
    name: str
    price: float
    category: Optional[str] = None
    active: bool = True


class BaseMenuService(ABC):
    """Abstract base class for menu lookups."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def get_item(self, item_id: int) -> Optional[MenuItemInfo]:
        """
        Look up one menu item.

        Returns:
            MenuItemInfo, or None if the id is unknown or inactive
        """
        pass

    async def get_items(self, item_ids: list[int]) -> dict[int, MenuItemInfo]:
        """Look up several items; unknown ids are left out."""
        found: dict[int, MenuItemInfo] = {}
        for item_id in dict.fromkeys(item_ids):
            item = await self.get_item(item_id)
            if item is not None:
                found[item_id] = item
        return found

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass
