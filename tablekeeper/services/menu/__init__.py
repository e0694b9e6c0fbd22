"""
Menu Service Factory

Returns the static catalog or the remote menu service based on ENV_MODE.

Usage:
    from tablekeeper.services.menu import get_menu_service

    menu = get_menu_service()
    item = await menu.get_item(1)

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from functools import lru_cache

from tablekeeper.core.config import get_settings
from tablekeeper.services.menu.base import BaseMenuService, MenuItemInfo
from tablekeeper.services.menu.remote import RemoteMenuService
from tablekeeper.services.menu.static import DEFAULT_MENU, StaticMenuService

logger = logging.getLogger(__name__)


@lru_cache()
def get_menu_service() -> BaseMenuService:
    """Get the configured menu service."""
    settings = get_settings()

    if settings.use_real_services and settings.menu_service_url:
        logger.info(f"Menu Service: Using RemoteMenuService ({settings.env_mode.value} mode)")
        return RemoteMenuService()

    logger.info("Menu Service: Using StaticMenuService")
    return StaticMenuService()


def reset_menu_service() -> None:
    """Clear the cached service instance."""
    get_menu_service.cache_clear()


__all__ = [
    "get_menu_service",
    "reset_menu_service",
    "BaseMenuService",
    "MenuItemInfo",
    "StaticMenuService",
    "RemoteMenuService",
    "DEFAULT_MENU",
]
