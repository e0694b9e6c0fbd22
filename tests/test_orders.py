import asyncio

import pytest

from tablekeeper.core.errors import InvalidStateTransition, NotFound, ValidationError
from tablekeeper.schemas import OrderCreate, OrderFilter, OrderItemRequest, OrderStatus, OrderUpdate

from conftest import make_order


async def test_create_order_snapshots_menu_and_totals(services):
    order = await services.orders.create_order(make_order(quantity=2, discount=5.0))

    assert order.status == OrderStatus.PENDING
    assert order.total == 15.0
    assert order.items[0].name == "Test Dish"
    assert order.items[0].price == 10.0
    assert order.created_at == order.updated_at
    assert await services.orders.get_order(order.id) == order


async def test_rejected_transition_leaves_order_untouched(services):
    order = await services.orders.create_order(make_order(quantity=2, discount=5.0))
    confirmed = await services.orders.transition_order(order.id, "confirmed")
    assert confirmed.status == OrderStatus.CONFIRMED
    assert confirmed.updated_at > order.updated_at

    with pytest.raises(InvalidStateTransition) as info:
        await services.orders.transition_order(order.id, "pending")
    assert info.value.current == "confirmed"

    current = await services.orders.get_order(order.id)
    assert current.status == OrderStatus.CONFIRMED
    assert current.total == 15.0
    assert current.updated_at == confirmed.updated_at


async def test_full_lifecycle(services):
    order = await services.orders.create_order(make_order())
    await services.orders.transition_order(order.id, OrderStatus.CONFIRMED)
    done = await services.orders.transition_order(order.id, OrderStatus.COMPLETED)
    assert done.status == OrderStatus.COMPLETED

    with pytest.raises(InvalidStateTransition):
        await services.orders.transition_order(order.id, OrderStatus.CANCELLED)


async def test_unknown_status_is_a_validation_error(services):
    order = await services.orders.create_order(make_order())
    with pytest.raises(ValidationError):
        await services.orders.transition_order(order.id, "shipped")


async def test_unknown_and_inactive_items_are_rejected(services):
    for menu_item_id in (99, 3):
        data = OrderCreate(
            items=[OrderItemRequest(menu_item_id=menu_item_id, quantity=1)],
            customer_name="Ana Borg",
            customer_email="ana@example.com",
        )
        with pytest.raises(ValidationError):
            await services.orders.create_order(data)

    assert await services.orders.list_orders() == []


async def test_transition_can_replace_discount(services):
    order = await services.orders.create_order(make_order(quantity=3))
    assert order.total == 30.0

    confirmed = await services.orders.transition_order(order.id, "confirmed", discount=7.5)
    assert confirmed.discount == 7.5
    assert confirmed.total == 22.5


async def test_update_recomputes_total(services):
    order = await services.orders.create_order(make_order(quantity=1))

    updated = await services.orders.update_order(
        order.id,
        OrderUpdate(
            items=[
                OrderItemRequest(menu_item_id=1, quantity=2),
                OrderItemRequest(menu_item_id=2, quantity=2),
            ],
            notes="no onions",
        ),
    )
    assert updated.total == 29.0
    assert updated.notes == "no onions"
    assert updated.status == OrderStatus.PENDING

    discounted = await services.orders.update_order(order.id, OrderUpdate(discount=40.0))
    assert discounted.total == 0.0


async def test_terminal_orders_cannot_be_edited(services):
    order = await services.orders.create_order(make_order())
    await services.orders.transition_order(order.id, "cancelled")

    with pytest.raises(InvalidStateTransition):
        await services.orders.update_order(order.id, OrderUpdate(notes="too late"))


async def test_missing_order(services):
    with pytest.raises(NotFound):
        await services.orders.get_order(12345)
    with pytest.raises(NotFound):
        await services.orders.transition_order(12345, "confirmed")


async def test_list_filters(services):
    first = await services.orders.create_order(make_order())
    second = await services.orders.create_order(make_order(email="bo@example.com"))
    third = await services.orders.create_order(make_order())
    await services.orders.transition_order(second.id, "cancelled")

    active = await services.orders.list_orders(OrderFilter(active_only=True))
    assert [o.id for o in active] == [first.id, third.id]

    cancelled = await services.orders.list_orders(OrderFilter(status=OrderStatus.CANCELLED))
    assert [o.id for o in cancelled] == [second.id]

    by_email = await services.orders.list_orders(OrderFilter(customer_email="bo@example.com"))
    assert [o.id for o in by_email] == [second.id]


async def test_confirmation_is_queued_after_commit(services, notifier):
    order = await services.orders.create_order(make_order())
    assert [o.id for o in notifier.orders] == [order.id]


async def test_notifier_failure_does_not_fail_the_order(services):
    class Broken:
        def order_created(self, order):
            raise ConnectionError("broker down")

    services.orders.notifier = Broken()
    order = await services.orders.create_order(make_order())
    assert (await services.orders.get_order(order.id)).id == order.id


async def test_consenting_customer_lands_in_ledger(services):
    await services.orders.create_order(make_order(quantity=1, consent=True))
    await services.orders.create_order(make_order(quantity=2, consent=True))
    await services.orders.create_order(make_order(email="quiet@example.com"))

    client = await services.clients.find_client("ana@example.com")
    assert client.total_orders == 2
    assert client.total_spent == 30.0
    assert await services.clients.find_client("quiet@example.com") is None


async def _race(first, second):
    results = await asyncio.gather(first, second, return_exceptions=True)
    winners = [r for r in results if not isinstance(r, BaseException)]
    losers = [r for r in results if isinstance(r, BaseException)]
    return winners, losers


async def test_racing_transitions_only_one_wins(services):
    order = await services.orders.create_order(make_order())
    await services.orders.transition_order(order.id, "confirmed")

    winners, losers = await _race(
        services.orders.transition_order(order.id, "completed"),
        services.orders.transition_order(order.id, "cancelled"),
    )

    assert len(winners) == 1
    assert len(losers) == 1 and isinstance(losers[0], InvalidStateTransition)
    assert (await services.orders.get_order(order.id)).status == winners[0].status


async def test_racing_transitions_across_processes_only_one_wins(services, worker_services):
    order = await services.orders.create_order(make_order())
    await services.orders.transition_order(order.id, "confirmed")

    winners, losers = await _race(
        services.orders.transition_order(order.id, "completed"),
        worker_services.orders.transition_order(order.id, "cancelled"),
    )

    assert len(winners) == 1
    assert len(losers) == 1 and isinstance(losers[0], InvalidStateTransition)
    assert losers[0].current == winners[0].status.value
    assert (await worker_services.orders.get_order(order.id)).status == winners[0].status
