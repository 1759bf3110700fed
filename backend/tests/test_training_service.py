"""
训练条目服务测试

使用内存 SQLite 数据库验证服务层在存储之上的行为：
创建、进度、移动、级联删除、事务回滚和变更事件。
"""
from unittest.mock import patch

import pytest
from sqlalchemy.orm import sessionmaker

from microlearning.core.change_feed import ChangeFeed
from microlearning.core.exceptions import InvalidMoveError, NotFoundError, ValidationError
from microlearning.crud.crud_training_item import training_item as crud_training_item
from microlearning.schemas.change_event import ChangeType
from microlearning.schemas.training_item import TrainingItemCreate, TrainingItemUpdate, TrainingStatus
from microlearning.services.training_service import TrainingService
from microlearning.services.training_store import SqlTrainingItemStore

OWNER = "user-1"


def create(service, item_id, parent_id=None, **kwargs):
    return service.create_item(TrainingItemCreate(
        id=item_id, owner_id=OWNER, parent_id=parent_id, title=f"Item {item_id}", **kwargs
    ))


def seed(service):
    """
    a
    ├── b
    │   ├── d
    │   └── e
    └── c
    f
    """
    for item_id, parent_id in [("a", None), ("b", "a"), ("c", "a"), ("d", "b"), ("e", "b"), ("f", None)]:
        create(service, item_id, parent_id)


def structure(service):
    forest = service.get_forest(OWNER)
    return {
        record.id: (record.parent_id, record.level, record.order_index)
        for record in forest.flatten()
    }


def test_create_item_appends_and_sets_level(service):
    seed(service)
    assert structure(service) == {
        "a": (None, 0, 0),
        "b": ("a", 1, 0),
        "d": ("b", 2, 0),
        "e": ("b", 2, 1),
        "c": ("a", 1, 1),
        "f": (None, 0, 1),
    }


def test_create_item_ignores_client_level(service):
    create(service, "root")
    child = create(service, "child", "root", level=7)
    assert child.level == 1


def test_create_item_at_position_shifts_siblings(service):
    seed(service)
    create(service, "x", "b", order_index=0)

    forest = service.get_forest(OWNER)
    assert forest.children["b"] == ["x", "d", "e"]
    assert [forest.get(i).order_index for i in ("x", "d", "e")] == [0, 1, 2]


def test_create_item_under_missing_parent_raises(service):
    with pytest.raises(NotFoundError):
        create(service, "orphan", "missing")


def test_create_completed_item_is_consistent(service):
    item = create(service, "done", status=TrainingStatus.COMPLETED)
    assert item.progress_percentage == 100
    assert item.completed_at is not None


def test_create_item_with_partial_progress_starts_it(service):
    item = create(service, "half", progress_percentage=40)
    assert item.status == TrainingStatus.IN_PROGRESS
    assert item.progress_percentage == 40
    assert item.last_practiced_at is not None
    assert service.get_item("half").status == TrainingStatus.IN_PROGRESS

    paused = create(service, "paused", progress_percentage=40, status=TrainingStatus.PAUSED)
    assert paused.status == TrainingStatus.PAUSED


def test_update_item_changes_descriptive_fields(service):
    create(service, "a")
    updated = service.update_item("a", TrainingItemUpdate(title="Renamed", estimated_duration_minutes=90))
    assert updated.title == "Renamed"
    assert updated.estimated_duration_minutes == 90


def test_update_progress_persists_state_machine(service):
    create(service, "a")

    started = service.update_progress("a", 40)
    assert started.status == TrainingStatus.IN_PROGRESS
    assert started.last_practiced_at is not None

    done = service.update_progress("a", 250)
    assert done.progress_percentage == 100
    assert done.status == TrainingStatus.COMPLETED
    assert service.get_item("a").completed_at is not None


def test_update_progress_unknown_item_raises(service):
    with pytest.raises(NotFoundError):
        service.update_progress("missing", 10)


def test_set_status_reopens_item(service):
    create(service, "a")
    service.update_progress("a", 100)
    reopened = service.set_status("a", TrainingStatus.IN_PROGRESS)

    assert reopened.status == TrainingStatus.IN_PROGRESS
    assert reopened.completed_at is None
    assert reopened.progress_percentage == 99


def test_move_persists_levels_and_order(service):
    seed(service)
    updated = service.move_item("b", "f", 0)

    assert {record.id for record in updated} == {"b", "c"}
    state = structure(service)
    assert state["b"] == ("f", 1, 0)
    assert state["c"] == ("a", 1, 0)

    service.move_item("f", "c", 0)
    state = structure(service)
    assert state["f"] == ("c", 2, 0)
    assert state["b"] == ("f", 3, 0)
    assert state["d"] == ("b", 4, 0)
    assert state["e"] == ("b", 4, 1)


def test_invalid_move_leaves_store_unchanged(service):
    seed(service)
    before = structure(service)

    with pytest.raises(InvalidMoveError):
        service.move_item("a", "e", 0)

    assert structure(service) == before


def test_failed_move_is_rolled_back(service, store, change_feed):
    seed(service)
    before = structure(service)
    events = []
    change_feed.subscribe(None, events.append)

    original_update = store.update
    calls = []

    def flaky_update(item_id, fields, commit=True):
        calls.append(item_id)
        if len(calls) == 2:
            raise RuntimeError("connection lost")
        return original_update(item_id, fields, commit=commit)

    with patch.object(store, "update", side_effect=flaky_update):
        with pytest.raises(RuntimeError):
            service.move_item("b", "f", 0)

    assert structure(service) == before
    assert events == []


def test_delete_cascades_and_renumbers(service, change_feed):
    seed(service)
    events = []
    change_feed.subscribe(OWNER, events.append)

    renumbered = service.delete_item("b")

    assert [record.id for record in renumbered] == ["c"]
    assert structure(service) == {"a": (None, 0, 0), "c": ("a", 1, 0), "f": (None, 0, 1)}
    deleted = [event.item_id for event in events if event.event_type == ChangeType.DELETE]
    assert sorted(deleted) == ["b", "d", "e"]
    assert deleted[-1] == "b"


def test_delete_without_database_cascade(engine_without_cascade):
    db = sessionmaker(autocommit=False, autoflush=False, bind=engine_without_cascade)()
    try:
        service = TrainingService(SqlTrainingItemStore(db, change_feed=ChangeFeed()))
        seed(service)
        assert not crud_training_item.cascade_enabled(db)

        service.delete_item("a")

        assert structure(service) == {"f": (None, 0, 0)}
        assert crud_training_item.get_count(db, filter_conditions={"owner_id": OWNER}) == 1
    finally:
        db.close()


def test_delete_unknown_item_raises(service):
    with pytest.raises(NotFoundError):
        service.delete_item("missing")


def test_events_are_published_after_commit(service, change_feed):
    events = []
    change_feed.subscribe(OWNER, events.append)
    other = []
    change_feed.subscribe("someone-else", other.append)

    create(service, "a")
    service.update_progress("a", 10)

    assert [event.event_type for event in events] == [ChangeType.INSERT, ChangeType.UPDATE]
    assert events[1].record.progress_percentage == 10
    assert other == []


def test_store_keeps_shared_feed_without_subscribers(db):
    feed = ChangeFeed()
    assert len(feed) == 0

    store = SqlTrainingItemStore(db, change_feed=feed)
    assert store.change_feed is feed

    events = []
    feed.subscribe(OWNER, events.append)
    create(TrainingService(store), "a")
    assert [event.item_id for event in events] == ["a"]


def test_malformed_row_is_rejected_at_store_boundary(db, store):
    crud_training_item.create(db, obj_in={
        "id": "bad",
        "owner_id": OWNER,
        "title": "Broken",
        "progress_percentage": 150,
    })
    with pytest.raises(ValidationError):
        store.select(owner_id=OWNER)


def test_stats_and_search(service):
    seed(service)
    service.update_progress("d", 100)
    service.update_progress("e", 20)

    stats = service.get_user_stats(OWNER)
    assert stats.total_items == 6
    assert stats.completed_items == 1
    assert stats.in_progress_items == 1
    assert stats.completion_rate == pytest.approx(100 / 6)

    assert [record.id for record in service.search(OWNER, "item d")] == ["d"]
    assert service.get_user_stats("nobody").completion_rate == 0


def test_get_item_tree_has_subtree_totals(service):
    seed(service)
    service.update_progress("d", 100)

    node = service.get_item_tree("b")
    assert node.id == "b"
    assert [child.id for child in node.children] == ["d", "e"]
    assert node.total_estimated_minutes == 90
    assert node.overall_progress == pytest.approx(100 / 3)
