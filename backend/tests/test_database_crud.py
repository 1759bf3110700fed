#!/usr/bin/env python3
"""
数据库CRUD操作测试

验证通用 CRUDBase 的创建、读取、更新、删除以及筛选排序，
和训练条目子树删除在两种存储模式下的行为。
"""
from datetime import date

import pytest
from sqlalchemy.orm import Session, sessionmaker

from microlearning.crud import review_period, training_item
from microlearning.crud.base import SortDirection
from microlearning.schemas.review_period import ReviewPeriodUpdate

OWNER = "user-1"


def add_item(db: Session, item_id: str, parent_id=None, order_index=0, owner_id=OWNER):
    return training_item.create(db, obj_in={
        "id": item_id,
        "owner_id": owner_id,
        "parent_id": parent_id,
        "title": f"Item {item_id}",
        "order_index": order_index,
    })


def test_training_item_crud(db: Session):
    """测试TrainingItem模型的CRUD操作"""
    created = add_item(db, "a")
    assert created.created_at is not None
    assert created.status == "not_started"
    assert created.tags == []

    fetched = training_item.get(db, "a")
    assert fetched.title == "Item a"

    updated = training_item.update(db, db_obj=fetched, obj_in={"title": "Renamed", "unknown": 1})
    assert updated.title == "Renamed"

    assert training_item.remove_subtree(db, obj_id="a") == ["a"]
    assert training_item.get(db, "a") is None
    assert training_item.remove_subtree(db, obj_id="a") == []


def test_get_multi_filters_and_sorts(db: Session):
    add_item(db, "b", order_index=1)
    add_item(db, "a", order_index=0)
    add_item(db, "c", order_index=2)
    add_item(db, "other", owner_id="someone-else")

    rows = training_item.get_multi(db, filter_conditions={"owner_id": OWNER}, sort_by="order_index")
    assert [row.id for row in rows] == ["a", "b", "c"]

    rows = training_item.get_multi(
        db,
        filter_conditions={"owner_id": OWNER},
        sort_by=[("order_index", SortDirection.DESC)],
        limit=2,
    )
    assert [row.id for row in rows] == ["c", "b"]
    assert training_item.get_count(db, filter_conditions={"owner_id": OWNER}) == 3

    with pytest.raises(ValueError):
        training_item.get_multi(db, filter_conditions={"not_a_column": 1})


def test_update_requires_object(db: Session):
    with pytest.raises(TypeError):
        training_item.update(db, db_obj=None, obj_in={"title": "x"})


def test_uncommitted_writes_can_be_rolled_back(db: Session):
    training_item.create(db, obj_in={"id": "a", "owner_id": OWNER, "title": "A"}, commit=False)
    assert training_item.get(db, "a") is not None
    db.rollback()
    assert training_item.get(db, "a") is None


def test_collect_subtree_ids_is_level_order(db: Session):
    add_item(db, "root")
    add_item(db, "child", "root")
    add_item(db, "grandchild", "child")
    add_item(db, "sibling", "root", order_index=1)

    ids = training_item.collect_subtree_ids(db, obj_id="root")
    assert ids[0] == "root"
    assert set(ids[1:3]) == {"child", "sibling"}
    assert ids[3] == "grandchild"


@pytest.mark.parametrize("engine_fixture, cascade", [("engine", True), ("engine_without_cascade", False)])
def test_remove_subtree(request, engine_fixture, cascade):
    engine = request.getfixturevalue(engine_fixture)
    db = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        add_item(db, "root")
        add_item(db, "child", "root")
        add_item(db, "grandchild", "child")
        add_item(db, "keep")

        assert training_item.cascade_enabled(db) is cascade
        deleted = training_item.remove_subtree(db, obj_id="root")

        assert deleted == ["root", "child", "grandchild"]
        assert [row.id for row in training_item.get_multi(db, filter_conditions={"owner_id": OWNER})] == ["keep"]
        assert training_item.remove_subtree(db, obj_id="root") == []
    finally:
        db.close()


def test_review_period_crud(db: Session):
    for year, period_number in [(2025, 2), (2024, 1), (2025, 1)]:
        review_period.create(db, obj_in={
            "id": f"{year}-{period_number}",
            "owner_id": OWNER,
            "year": year,
            "period_number": period_number,
            "start_date": date(year, 1, 1),
            "end_date": date(year, 6, 30),
        })

    assert [p.id for p in review_period.get_by_owner(db, owner_id=OWNER)] == ["2024-1", "2025-1", "2025-2"]
    found = review_period.get_by_period(db, owner_id=OWNER, year=2025, period_number=2)
    assert found.id == "2025-2"
    assert review_period.get_by_period(db, owner_id=OWNER, year=2030, period_number=1) is None

    updated = review_period.update(db, db_obj=found, obj_in=ReviewPeriodUpdate(goals=["Mentor a junior"]))
    assert updated.goals == ["Mentor a junior"]
    assert updated.status == "planning"
