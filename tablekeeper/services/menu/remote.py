"""
Remote Menu Service

Production implementation: reads items from the menu service over HTTP.

    GET {MENU_SERVICE_URL}/api/menu/items/{id}
    -> {"id": 1, "name": "Classic Burger", "price": 12.99, "active": true, ...}

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from typing import Optional

import httpx

from tablekeeper.core.config import get_settings
from tablekeeper.core.errors import CollaboratorUnavailable
from tablekeeper.services.menu.base import BaseMenuService, MenuItemInfo

logger = logging.getLogger(__name__)
settings = get_settings()


class RemoteMenuService(BaseMenuService):
    """Menu lookups through the menu service HTTP API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.menu_service_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("MENU_SERVICE_URL is required for RemoteMenuService")
        self.timeout = timeout or settings.menu_service_timeout
        self._transport = transport
        logger.info(f"RemoteMenuService initialized ({self.base_url})")

    @property
    def provider_name(self) -> str:
        return "remote"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def get_item(self, item_id: int) -> Optional[MenuItemInfo]:
        try:
            async with self._client() as client:
                response = await client.get(f"/api/menu/items/{item_id}")
        except httpx.HTTPError as e:
            logger.error(f"Menu service request failed for item {item_id}: {e}")
            raise CollaboratorUnavailable("Menu service unavailable", menu_item_id=item_id) from e

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            logger.error(f"Menu service returned {response.status_code} for item {item_id}")
            raise CollaboratorUnavailable("Menu service unavailable", menu_item_id=item_id)

        data = response.json()
        name = data.get("name")
        if isinstance(name, dict):
            name = name.get("en") or next(iter(name.values()), "")

        item = MenuItemInfo(
            id=int(data["id"]),
            name=name,
            price=float(data["price"]),
            category=data.get("category"),
            active=bool(data.get("active", True)),
        )
        return item if item.active else None

    async def health_check(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get("/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False
