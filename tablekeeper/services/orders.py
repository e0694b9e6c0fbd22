"""
Order Service

Places orders and moves them through their lifecycle.

- Line items snapshot the menu name and price at creation
- total = max(0, sum(price x quantity) - discount), recomputed whenever
  items or discount change
- Status changes run under a per-order lock and are written as a
  compare-and-swap on the previous status

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from typing import Optional, Union

from tablekeeper.core.errors import InvalidStateTransition, NotFound, ValidationError
from tablekeeper.schemas import (
    Order,
    OrderCreate,
    OrderFilter,
    OrderItem,
    OrderItemRequest,
    OrderStatus,
    OrderUpdate,
)
from tablekeeper.services.clients import ClientLedger
from tablekeeper.services.lifecycle import check_transition, compute_total, is_terminal, parse_status
from tablekeeper.services.menu import BaseMenuService
from tablekeeper.services.notifications import PostCommitNotifier
from tablekeeper.storage import DualStoreCoordinator, utcnow

logger = logging.getLogger(__name__)


class OrderService:
    """Entry points for creating, editing and transitioning orders."""

    def __init__(
        self,
        store: DualStoreCoordinator[Order],
        menu: BaseMenuService,
        clients: ClientLedger,
        notifier: Optional[PostCommitNotifier] = None,
    ):
        self.store = store
        self.menu = menu
        self.clients = clients
        self.notifier = notifier

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _snapshot_items(self, requested: list[OrderItemRequest]) -> list[OrderItem]:
        """Resolve requested lines against the menu."""
        catalog = await self.menu.get_items([line.menu_item_id for line in requested])

        items = []
        for line in requested:
            info = catalog.get(line.menu_item_id)
            if info is None:
                raise ValidationError(
                    f"Unknown menu item {line.menu_item_id}",
                    menu_item_id=line.menu_item_id,
                )
            items.append(OrderItem(
                menu_item_id=info.id,
                name=info.name,
                price=info.price,
                quantity=line.quantity,
            ))
        return items

    async def _record_client(self, order: Order) -> None:
        try:
            await self.clients.upsert_client(
                email=order.customer_email,
                name=order.customer_name,
                order_delta=order.total,
            )
        except Exception:
            logger.exception(f"Client ledger update failed for order #{order.id}")

    def _notify(self, order: Order) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.order_created(order)
        except Exception:
            logger.exception(f"Could not queue confirmation for order #{order.id}")

    async def _compare_and_swap(self, order: Order, patch: dict, target: str) -> Order:
        updated = await self.store.update(order.id, patch, expected={"status": order.status})
        if updated is None:
            current = await self.get_order(order.id)
            raise InvalidStateTransition(current.status.value, target)
        return updated

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    async def create_order(self, data: OrderCreate) -> Order:
        """
        Place a new order in status pending.

        Raises:
            ValidationError: A line references an unknown menu item
            StorageUnavailable: Neither store accepted the write
        """
        items = await self._snapshot_items(data.items)
        now = utcnow()

        order = Order(
            id=await self.store.allocate_id(),
            items=items,
            customer_name=data.customer_name,
            customer_email=data.customer_email,
            order_type=data.order_type,
            table_number=data.table_number,
            notes=data.notes,
            marketing_consent=data.marketing_consent,
            discount=data.discount,
            total=compute_total(items, data.discount),
            status=OrderStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        order = await self.store.create(order)
        logger.info(f"Order #{order.id} created for {order.customer_name} (${order.total:.2f})")

        if order.marketing_consent:
            await self._record_client(order)
        self._notify(order)
        return order

    async def get_order(self, order_id: int) -> Order:
        order = await self.store.find_by_id(order_id)
        if order is None:
            raise NotFound(f"Order #{order_id} not found", order_id=order_id)
        return order

    async def list_orders(self, filters: Optional[OrderFilter] = None) -> list[Order]:
        filters = filters or OrderFilter()
        orders = await self.store.find_all(filters.to_filters())
        if filters.active_only:
            orders = [o for o in orders if not is_terminal(o.status)]
        return orders

    async def transition_order(
        self,
        order_id: int,
        target_status: Union[str, OrderStatus],
        discount: Optional[float] = None,
    ) -> Order:
        """
        Move an order along an allowed edge.

        Args:
            order_id: Order to change
            target_status: New status
            discount: Replacement discount; the total is recomputed

        Raises:
            InvalidStateTransition: The edge is not allowed; nothing changes
            NotFound: Unknown order
        """
        target = parse_status(OrderStatus, target_status)
        if discount is not None and discount < 0:
            raise ValidationError("Discount must not be negative", discount=discount)

        async with self.store.locks.hold(order_id):
            order = await self.get_order(order_id)
            check_transition(order.status, target)

            patch: dict = {"status": target}
            if discount is not None:
                patch["discount"] = discount
                patch["total"] = compute_total(order.items, discount)

            updated = await self._compare_and_swap(order, patch, target.value)

        logger.info(f"Order #{order_id}: {order.status.value} -> {target.value}")
        return updated

    async def update_order(self, order_id: int, changes: OrderUpdate) -> Order:
        """
        Edit a pending or confirmed order.

        Raises:
            InvalidStateTransition: The order is completed or cancelled
            ValidationError: A new line references an unknown menu item
        """
        async with self.store.locks.hold(order_id):
            order = await self.get_order(order_id)
            if is_terminal(order.status):
                raise InvalidStateTransition(
                    order.status.value,
                    order.status.value,
                    f"Order #{order_id} is {order.status.value} and can no longer be edited",
                )

            patch = changes.model_dump(exclude_none=True, exclude={"items"})
            items = order.items
            if changes.items is not None:
                items = await self._snapshot_items(changes.items)
                patch["items"] = items

            patch["total"] = compute_total(items, patch.get("discount", order.discount))
            updated = await self._compare_and_swap(order, patch, order.status.value)

        logger.info(f"Order #{order_id} edited ({', '.join(sorted(patch))})")
        return updated
