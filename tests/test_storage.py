import json
from datetime import datetime, timedelta, timezone

import pytest

from tablekeeper.core.errors import StorageUnavailable
from tablekeeper.schemas import Client, OrderStatus
from tablekeeper.storage import FileRepository, KeyedLock

from conftest import make_order, set_fallback, set_primary


def _client(entity_id, email="ana@example.com", updated_at=None, **extra):
    now = updated_at or datetime.now(timezone.utc)
    return Client(id=entity_id, email=email, name="Ana", created_at=now, updated_at=now, **extra)


@pytest.fixture
def fallback(tmp_path):
    return FileRepository("clients", Client, tmp_path / "data", lock_timeout=5)


# =============================================================================
# FALLBACK STORE
# =============================================================================

async def test_fallback_allocates_increasing_ids(fallback):
    ids = [await fallback.allocate_id() for _ in range(3)]
    assert ids == [1, 2, 3]


async def test_fallback_counter_stays_above_stored_ids(fallback):
    await fallback.upsert(_client(41))
    assert await fallback.allocate_id() == 42


async def test_fallback_round_trip(fallback):
    client = _client(7, phone="+35699123456", total_orders=2, total_spent=31.5)
    await fallback.upsert(client)

    assert await fallback.find_by_id(7) == client
    assert await fallback.find_all({"email": "ana@example.com"}) == [client]
    assert await fallback.find_all({"email": "someone@example.com"}) == []


async def test_fallback_mirror_never_overwrites_newer_copy(fallback):
    now = datetime.now(timezone.utc)
    newer = _client(1, updated_at=now, total_orders=2)
    older = _client(1, updated_at=now - timedelta(seconds=30), total_orders=1)

    await fallback.upsert(newer)
    await fallback.upsert(older, if_newer=True)

    assert (await fallback.find_by_id(1)).total_orders == 2


async def test_fallback_pending_flag_lifecycle(fallback):
    client = _client(3)
    await fallback.upsert(client, pending_sync=True)
    assert [c.id for c in await fallback.pending_records()] == [3]

    # A stale timestamp leaves the flag in place
    assert not await fallback.clear_pending(3, client.updated_at - timedelta(seconds=1))
    assert await fallback.clear_pending(3, client.updated_at)
    assert await fallback.pending_records() == []


async def test_fallback_update_respects_expected_values(fallback):
    await fallback.upsert(_client(5, total_orders=1))

    assert await fallback.update(5, {"total_orders": 2}, expected={"total_orders": 9}) is None
    updated = await fallback.update(5, {"total_orders": 2}, expected={"total_orders": 1})
    assert updated.total_orders == 2


async def test_fallback_only_pending_update_skips_synced_records(fallback):
    await fallback.upsert(_client(5))
    assert await fallback.update(5, {"name": "Other"}, only_pending=True) is None


async def test_fallback_recovers_from_backup(fallback):
    await fallback.upsert(_client(9))
    fallback.path.write_text("{ not json", encoding="utf-8")

    restored = await fallback.find_by_id(9)
    assert restored is not None and restored.id == 9


async def test_fallback_document_layout(fallback):
    await fallback.upsert(_client(2), pending_sync=True)
    doc = json.loads(fallback.path.read_text(encoding="utf-8"))

    assert doc["next_id"] == 3
    assert doc["pending_sync"] == [2]
    assert doc["records"]["2"]["email"] == "ana@example.com"


async def test_fallback_delete(fallback):
    await fallback.upsert(_client(4), pending_sync=True)
    assert await fallback.delete(4)
    assert await fallback.find_by_id(4) is None
    assert await fallback.pending_records() == []
    assert not await fallback.delete(4)


# =============================================================================
# PRIMARY STORE
# =============================================================================

async def test_primary_upsert_replaces_by_id(services):
    repo = services.stores["clients"].primary.inner
    first = _client(1, total_orders=1)
    await repo.upsert(first)
    await repo.upsert(first.model_copy(update={"total_orders": 5}))

    rows = await repo.list_rows(1)
    assert len(rows) == 1
    assert rows[0][1].total_orders == 5
    assert await repo.max_id() == 1


async def test_primary_reads_collapse_duplicates_to_latest(services):
    repo = services.stores["clients"].primary.inner
    now = datetime.now(timezone.utc)
    old = _client(1, updated_at=now - timedelta(minutes=5), total_orders=1)
    new = _client(1, updated_at=now, total_orders=2)

    async with repo.session_maker() as session:
        for entity in (new, old):
            session.add(repo.model(**repo._to_values(entity.model_dump())))
        await session.commit()

    assert (await repo.find_by_id(1)).total_orders == 2
    assert [c.total_orders for c in await repo.find_all()] == [2]
    assert len(await repo.list_rows()) == 2


# =============================================================================
# COORDINATOR
# =============================================================================

async def test_writes_are_mirrored_to_fallback(services):
    order = await services.orders.create_order(make_order())
    await services.drain()

    store = services.stores["orders"]
    assert await store.fallback.find_by_id(order.id) == order
    assert await store.fallback.pending_records() == []


async def test_outage_writes_land_in_fallback_as_pending(services):
    set_primary(services, False)
    order = await services.orders.create_order(make_order())

    store = services.stores["orders"]
    assert [o.id for o in await store.fallback.pending_records()] == [order.id]
    assert await services.orders.get_order(order.id) == order

    set_primary(services, True)
    assert await store.primary.find_by_id(order.id) is None
    # Primary reads still see the record through the pending merge
    assert await services.orders.get_order(order.id) == order
    assert [o.id for o in await services.orders.list_orders()] == [order.id]


async def test_transition_during_outage_updates_fallback(services):
    order = await services.orders.create_order(make_order())
    await services.drain()

    set_primary(services, False)
    confirmed = await services.orders.transition_order(order.id, "confirmed")
    assert confirmed.status == OrderStatus.CONFIRMED

    set_primary(services, True)
    assert (await services.orders.get_order(order.id)).status == OrderStatus.CONFIRMED


async def test_slow_primary_times_out_to_fallback(services):
    store = services.stores["orders"]
    store.timeout = 0.05
    store.primary.delay = 0.5

    order = await services.orders.create_order(make_order())

    assert [o.id for o in await store.fallback.pending_records()] == [order.id]


async def test_both_stores_down_raises_and_writes_nothing(services):
    set_primary(services, False)
    set_fallback(services, False)

    with pytest.raises(StorageUnavailable):
        await services.orders.create_order(make_order())

    set_primary(services, True)
    set_fallback(services, True)
    assert await services.orders.list_orders() == []


async def test_ids_are_unique_across_outage(services):
    first = await services.orders.create_order(make_order())
    set_primary(services, False)
    second = await services.orders.create_order(make_order())
    set_primary(services, True)
    third = await services.orders.create_order(make_order())

    assert len({first.id, second.id, third.id}) == 3


async def test_delete_removes_both_copies(services):
    store = services.stores["orders"]
    order = await services.orders.create_order(make_order())
    await services.drain()

    assert await store.delete(order.id)
    assert await store.primary.find_by_id(order.id) is None
    assert await store.fallback.find_by_id(order.id) is None
    assert not await store.delete(order.id)


async def test_keyed_lock_releases_keys():
    locks = KeyedLock()
    async with locks.hold("a"):
        assert len(locks) == 1
    assert len(locks) == 0


async def test_restarted_process_does_not_reuse_ids_missed_by_fallback(services, worker_services):
    set_fallback(services, False)
    first = await services.orders.create_order(make_order(email="first@example.com"))
    await services.drain()
    set_fallback(services, True)

    # The fallback counter never saw the first id
    second = await worker_services.orders.create_order(make_order(email="second@example.com"))

    assert second.id != first.id
    assert await services.orders.get_order(first.id) == first
    assert await services.orders.get_order(second.id) == second
    assert len(await services.orders.list_orders()) == 2


async def test_create_never_replaces_a_different_record(services):
    store = services.stores["orders"]
    existing = await services.orders.create_order(make_order(email="first@example.com"))
    await services.drain()

    later = existing.created_at + timedelta(seconds=1)
    newcomer = existing.model_copy(update={
        "customer_email": "second@example.com",
        "created_at": later,
        "updated_at": later,
    })
    stored = await store.create(newcomer)
    await services.drain()

    assert stored.id != existing.id
    assert await services.orders.get_order(existing.id) == existing
    assert (await services.orders.get_order(stored.id)).customer_email == "second@example.com"
    assert (await store.fallback.find_by_id(existing.id)) == existing


async def test_create_during_outage_skips_ids_held_in_fallback(services):
    store = services.stores["orders"]
    existing = await services.orders.create_order(make_order())
    await services.drain()

    set_primary(services, False)
    later = existing.created_at + timedelta(seconds=1)
    stored = await store.create(existing.model_copy(update={"created_at": later, "updated_at": later}))

    assert stored.id != existing.id
    assert await store.fallback.find_by_id(existing.id) == existing
    assert [o.id for o in await store.fallback.pending_records()] == [stored.id]


async def test_storing_the_same_record_twice_keeps_its_id(services):
    store = services.stores["orders"]
    order = await services.orders.create_order(make_order())

    assert (await store.create(order)).id == order.id
    assert len(await store.primary.list_rows(order.id)) == 1


async def test_allocation_follows_primary_when_fallback_is_down(services):
    store = services.stores["orders"]
    order = await services.orders.create_order(make_order())
    await services.drain()

    set_fallback(services, False)
    assert await store.allocate_id() == order.id + 1
