"""
训练条目存储

树模型只通过下面这个很窄的接口访问存储：
select / insert / update / delete / subscribe_to_changes。

SqlTrainingItemStore 基于 SQLAlchemy 会话实现该接口。所有行在这里经过
TrainingItemRecord.from_row 转换为强类型记录后才交给上层。
变更事件在事务提交后才发布，回滚的写入不会产生事件。
"""
import logging
import uuid
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Union

from sqlalchemy.orm import Session

from microlearning.core.change_feed import ChangeCallback, ChangeFeed
from microlearning.core.exceptions import NotFoundError
from microlearning.crud.crud_training_item import training_item as crud_training_item
from microlearning.schemas.change_event import ChangeEvent, ChangeType
from microlearning.schemas.training_item import TrainingItemCreate, TrainingItemRecord

logger = logging.getLogger(__name__)


class TrainingItemStore(Protocol):
    def select(self, **filters: Any) -> List[TrainingItemRecord]: ...

    def get(self, item_id: str) -> TrainingItemRecord: ...

    def insert(self, record: Union[TrainingItemCreate, Dict[str, Any]], commit: bool = True) -> TrainingItemRecord: ...

    def update(self, item_id: str, fields: Dict[str, Any], commit: bool = True) -> TrainingItemRecord: ...

    def delete(self, item_id: str, commit: bool = True) -> bool: ...

    def subscribe_to_changes(self, owner_id: Optional[str], on_change: ChangeCallback) -> Callable[[], None]: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


def new_item_id() -> str:
    return uuid.uuid4().hex


def _column_values(fields: Dict[str, Any]) -> Dict[str, Any]:
    # 枚举以字符串值入库
    return {key: value.value if isinstance(value, Enum) else value for key, value in fields.items()}


class SqlTrainingItemStore:
    """基于 SQLAlchemy 会话的训练条目存储"""

    def __init__(self, db: Session, change_feed: Optional[ChangeFeed] = None):
        self.db = db
        self.change_feed = change_feed if change_feed is not None else ChangeFeed()
        self._pending: List[ChangeEvent] = []

    def select(self, **filters: Any) -> List[TrainingItemRecord]:
        rows = crud_training_item.get_multi(self.db, filter_conditions=filters, sort_by="order_index")
        return [TrainingItemRecord.from_row(row) for row in rows]

    def get(self, item_id: str) -> TrainingItemRecord:
        row = crud_training_item.get(self.db, item_id)
        if row is None:
            raise NotFoundError(item_id)
        return TrainingItemRecord.from_row(row)

    def insert(self, record: Union[TrainingItemCreate, Dict[str, Any]], commit: bool = True) -> TrainingItemRecord:
        data = record if isinstance(record, dict) else record.model_dump()
        data = {key: value for key, value in data.items() if value is not None or key == "parent_id"}
        data.setdefault("id", new_item_id())
        data.setdefault("order_index", 0)

        row = crud_training_item.create(self.db, obj_in=_column_values(data), commit=commit)
        created = TrainingItemRecord.from_row(row)
        logger.info(f"Inserted training item {created.id} for owner {created.owner_id}")
        self._emit(ChangeEvent(event_type=ChangeType.INSERT, owner_id=created.owner_id, item_id=created.id, record=created), commit)
        return created

    def update(self, item_id: str, fields: Dict[str, Any], commit: bool = True) -> TrainingItemRecord:
        row = crud_training_item.get(self.db, item_id)
        if row is None:
            raise NotFoundError(item_id)
        row = crud_training_item.update(self.db, db_obj=row, obj_in=_column_values(fields), commit=commit)
        updated = TrainingItemRecord.from_row(row)
        logger.debug(f"Updated training item {item_id}: {sorted(fields)}")
        self._emit(ChangeEvent(event_type=ChangeType.UPDATE, owner_id=updated.owner_id, item_id=item_id, record=updated), commit)
        return updated

    def delete(self, item_id: str, commit: bool = True) -> bool:
        row = crud_training_item.get(self.db, item_id)
        if row is None:
            return False
        owner_id = row.owner_id
        deleted_ids = crud_training_item.remove_subtree(self.db, obj_id=item_id, commit=commit)
        logger.info(f"Deleted training item {item_id} with {len(deleted_ids) - 1} descendant(s)")
        for deleted_id in reversed(deleted_ids):
            self._emit(ChangeEvent(event_type=ChangeType.DELETE, owner_id=owner_id, item_id=deleted_id), commit)
        return True

    def subscribe_to_changes(self, owner_id: Optional[str], on_change: ChangeCallback) -> Callable[[], None]:
        return self.change_feed.subscribe(owner_id, on_change)

    def commit(self) -> None:
        self.db.commit()
        pending, self._pending = self._pending, []
        for event in pending:
            self.change_feed.publish(event)

    def rollback(self) -> None:
        self.db.rollback()
        self._pending = []

    def _emit(self, event: ChangeEvent, committed: bool) -> None:
        if committed:
            self.change_feed.publish(event)
        else:
            self._pending.append(event)
