import asyncio

import pytest

from microlearning.core.change_feed import ChangeFeed
from microlearning.core.exceptions import TrainingError
from microlearning.schemas.change_event import ChangeEvent, ChangeType
from microlearning.schemas.training_item import TrainingItemRecord
from microlearning.services.tree_cache import TrainingTreeCache

OWNER = "user-1"


def record(item_id, parent_id=None, order_index=0):
    return TrainingItemRecord(id=item_id, owner_id=OWNER, parent_id=parent_id, title=item_id, order_index=order_index)


def test_refresh_builds_forest_and_notifies():
    cache = TrainingTreeCache(OWNER, loader=lambda: [record("b", "a"), record("a")])
    seen = []
    cache.subscribe(lambda forest: seen.append([item.id for item in forest.flatten()]))

    forest = cache.refresh()

    assert forest.roots == ["a"]
    assert seen == [["a", "b"]]
    assert cache.version == 1


def test_refresh_without_loader_raises():
    with pytest.raises(TrainingError):
        TrainingTreeCache(OWNER).refresh()


def test_unsubscribe_stops_notifications():
    cache = TrainingTreeCache(OWNER, loader=lambda: [record("a")])
    seen = []
    unsubscribe = cache.subscribe(seen.append)
    unsubscribe()
    cache.refresh()
    assert seen == []


def test_failing_observer_does_not_block_others():
    cache = TrainingTreeCache(OWNER, loader=lambda: [record("a")])
    seen = []

    def broken(forest):
        raise RuntimeError("boom")

    cache.subscribe(broken)
    cache.subscribe(seen.append)
    cache.refresh()
    assert len(seen) == 1


def test_last_initiated_refresh_wins():
    """先发起但后完成的刷新不会覆盖后发起的结果"""
    cache = TrainingTreeCache(OWNER)

    async def scenario():
        slow_release = asyncio.Event()

        async def slow_loader():
            await slow_release.wait()
            return [record("stale")]

        async def fast_loader():
            return [record("fresh")]

        slow = asyncio.create_task(cache.refresh_async(slow_loader))
        await asyncio.sleep(0)
        await cache.refresh_async(fast_loader)
        slow_release.set()
        await slow

    asyncio.run(scenario())
    assert list(cache.forest.nodes) == ["fresh"]
    assert cache.version == 2


def test_refresh_in_thread():
    cache = TrainingTreeCache(OWNER, loader=lambda: [record("a"), record("b", order_index=1)])
    forest = asyncio.run(cache.refresh_in_thread())
    assert forest.roots == ["a", "b"]


def test_change_feed_updates_cache():
    feed = ChangeFeed()
    cache = TrainingTreeCache(OWNER, loader=lambda: [record("a"), record("b", "a")])
    cache.refresh()
    cache.attach(feed)

    feed.publish(ChangeEvent(event_type=ChangeType.INSERT, owner_id=OWNER, item_id="c", record=record("c", "a", 1)))
    assert cache.forest.children["a"] == ["b", "c"]

    feed.publish(ChangeEvent(event_type=ChangeType.DELETE, owner_id=OWNER, item_id="b"))
    assert cache.forest.children["a"] == ["c"]

    # 其他用户的事件被忽略
    feed.publish(ChangeEvent(event_type=ChangeType.INSERT, owner_id="other", item_id="x", record=record("x")))
    assert "x" not in cache.forest

    cache.detach()
    assert len(feed) == 0
