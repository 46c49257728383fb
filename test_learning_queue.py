"""Drain ordering, leases, retry and retention."""

from core.learning_queue import LearningQueue


async def test_drain_orders_by_priority_then_age(db, clock):
    queue = LearningQueue(db, clock=clock)
    ids = {}
    for label, priority in (("p3", 3), ("p8-first", 8), ("p8-second", 8), ("p5", 5)):
        ids[label] = await queue.enqueue("src", "other", label, priority=priority)
        clock.advance(seconds=1)

    batch = await queue.drain(batch_size=4)

    assert [i.id for i in batch] == [ids["p8-first"], ids["p8-second"], ids["p5"], ids["p3"]]


async def test_drain_order_stable_for_same_instant(db, clock):
    queue = LearningQueue(db, clock=clock)
    first = await queue.enqueue("src", "other", "one", priority=8)
    second = await queue.enqueue("src", "other", "two", priority=8)

    batch = await queue.drain(batch_size=2)

    assert [i.id for i in batch] == [first, second]


async def test_drain_respects_batch_size(db, clock):
    queue = LearningQueue(db, clock=clock)
    for n in range(5):
        await queue.enqueue("src", "other", f"item {n}")
    assert len(await queue.drain(batch_size=3)) == 3


async def test_concurrent_drains_never_share_items(db, clock):
    queue = LearningQueue(db, clock=clock)
    for n in range(4):
        await queue.enqueue("src", "other", f"item {n}")

    first = await queue.drain(batch_size=3, worker_id="a")
    second = await queue.drain(batch_size=3, worker_id="b")

    assert len(first) == 3
    assert len(second) == 1
    assert not {i.id for i in first} & {i.id for i in second}


async def test_expired_lease_is_drainable_again(db, clock):
    queue = LearningQueue(db, lease_seconds=60, clock=clock)
    item_id = await queue.enqueue("src", "other", "stuck")
    assert [i.id for i in await queue.drain(worker_id="a")] == [item_id]
    assert await queue.drain(worker_id="b") == []

    clock.advance(seconds=61)

    reclaimed = await queue.drain(worker_id="b")
    assert [i.id for i in reclaimed] == [item_id]
    assert reclaimed[0].leased_by == "b"


async def test_failed_item_stays_in_backlog(db, clock):
    queue = LearningQueue(db, clock=clock)
    item_id = await queue.enqueue("src", "documentation", "not json")
    await queue.drain()

    await queue.mark_failed(item_id, "Expecting value")

    item = await queue.get(item_id)
    assert item.processed is False
    assert item.learning_outcome["error"] == "Expecting value"
    assert "failed_at" in item.learning_outcome
    assert item.leased_at is None
    assert [i.id for i in await queue.drain()] == [item_id]


async def test_mark_processed_removes_from_backlog(db, clock):
    queue = LearningQueue(db, clock=clock)
    item_id = await queue.enqueue("src", "other", "done soon")
    await queue.drain()

    await queue.mark_processed(item_id, {"action": "stored"})

    item = await queue.get(item_id)
    assert item.processed is True
    assert item.processed_at == clock()
    assert await queue.backlog_count() == 0
    assert await queue.drain() == []


async def test_retention_sweep_only_deletes_old_processed_items(db, clock):
    queue = LearningQueue(db, clock=clock)
    old_done = await queue.enqueue("src", "other", "old done")
    old_pending = await queue.enqueue("src", "other", "old pending")
    await queue.mark_processed(old_done, {})

    clock.advance(days=8)
    fresh_done = await queue.enqueue("src", "other", "fresh done")
    await queue.mark_processed(fresh_done, {})

    deleted = await queue.retention_sweep(max_age_days=7)

    assert deleted == 1
    assert await queue.get(old_done) is None
    assert await queue.get(old_pending) is not None
    assert await queue.get(fresh_done) is not None
