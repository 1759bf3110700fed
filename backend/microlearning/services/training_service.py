"""
训练条目服务

每个操作都从存储层读取当前用户的最新快照，交给纯函数的树算法计算，
再把发生变化的平铺记录写回存储。涉及多行的写入（移动、删除、导入）
在同一事务中完成，任何一步失败都会整体回滚。
"""
import logging
from typing import Iterable, List, Optional

from microlearning.core.exceptions import NotFoundError
from microlearning.schemas.training_item import (
    ImportResult,
    TrainingItemCreate,
    TrainingItemRecord,
    TrainingItemUpdate,
    TrainingStatus,
    TrainingTreeNode,
    UserStats,
)
from microlearning.services import training_tree
from microlearning.services.training_import import ImportBatch
from microlearning.services.training_store import TrainingItemStore, new_item_id
from microlearning.services.training_tree import TrainingForest, build_tree

logger = logging.getLogger(__name__)

# move/删除后需要写回的结构字段
STRUCTURE_FIELDS = ("parent_id", "level", "order_index")
PROGRESS_FIELDS = ("progress_percentage", "status", "completed_at", "last_practiced_at")


def _fields(record: TrainingItemRecord, names: Iterable[str]) -> dict:
    return {name: getattr(record, name) for name in names}


class TrainingService:
    def __init__(self, store: TrainingItemStore):
        self.store = store

    # ------------------------------------------------------------------
    # 读取
    # ------------------------------------------------------------------
    def get_forest(self, owner_id: str) -> TrainingForest:
        return build_tree(self.store.select(owner_id=owner_id))

    def get_training_tree(self, owner_id: str) -> List[TrainingTreeNode]:
        return self.get_forest(owner_id).to_nested()

    def get_item(self, item_id: str) -> TrainingItemRecord:
        return self.store.get(item_id)

    def get_item_tree(self, item_id: str) -> TrainingTreeNode:
        """单个条目及其子树，附带子树总时长和整体进度"""
        item = self.get_item(item_id)
        forest = self.get_forest(item.owner_id)
        subtree = build_tree(forest.nodes[node_id] for node_id in forest.subtree_ids(item_id))
        return subtree.to_nested()[0]

    def get_user_stats(self, owner_id: str) -> UserStats:
        return training_tree.get_user_stats(self.get_forest(owner_id))

    def search(self, owner_id: str, text: str) -> List[TrainingItemRecord]:
        return training_tree.search(self.get_forest(owner_id), text)

    # ------------------------------------------------------------------
    # 写入
    # ------------------------------------------------------------------
    def create_item(self, item_in: TrainingItemCreate) -> TrainingItemRecord:
        """
        创建条目并追加到父节点（或根列表）末尾；
        指定了 order_index 时再移动到该位置，后面的同级节点依次后移。
        """
        forest = self.get_forest(item_in.owner_id)
        if item_in.parent_id is not None and item_in.parent_id not in forest:
            raise NotFoundError(item_in.parent_id)

        record = TrainingItemRecord(
            **item_in.model_dump(exclude={"id", "order_index"}),
            id=item_in.id or new_item_id(),
        )
        if record.status == TrainingStatus.COMPLETED or record.progress_percentage >= 100:
            record = training_tree.set_status(record, TrainingStatus.COMPLETED)
        elif record.progress_percentage > 0 and record.status == TrainingStatus.NOT_STARTED:
            record = training_tree.update_progress(record, record.progress_percentage)

        node = forest.add_child(item_in.parent_id, record)
        shifted = []
        if item_in.order_index is not None and item_in.order_index < node.order_index:
            shifted = [r for r in forest.move(node.id, item_in.parent_id, item_in.order_index) if r.id != node.id]

        try:
            created = self.store.insert(
                node.model_dump(exclude={"created_at", "updated_at"}),
                commit=False,
            )
            for sibling in shifted:
                self.store.update(sibling.id, {"order_index": sibling.order_index}, commit=False)
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise
        return created

    def update_item(self, item_id: str, item_in: TrainingItemUpdate) -> TrainingItemRecord:
        return self.store.update(item_id, item_in.model_dump(exclude_unset=True))

    def update_progress(self, item_id: str, new_percentage) -> TrainingItemRecord:
        item = self.get_item(item_id)
        updated = training_tree.update_progress(item, new_percentage)
        if updated.status != item.status:
            logger.info(f"Training item {item_id} status {item.status.value} -> {updated.status.value}")
        return self.store.update(item_id, _fields(updated, PROGRESS_FIELDS))

    def set_status(self, item_id: str, status: TrainingStatus) -> TrainingItemRecord:
        item = self.get_item(item_id)
        updated = training_tree.set_status(item, status)
        return self.store.update(item_id, _fields(updated, PROGRESS_FIELDS))

    def move_item(self, item_id: str, new_parent_id: Optional[str], new_order_index: int) -> List[TrainingItemRecord]:
        """
        移动条目。先在快照上完成校验和计算，再在一个事务中写回所有变化的记录。

        Returns:
            List[TrainingItemRecord]: 被更新的记录（被移动节点、后代以及重新编号的同级节点）
        """
        item = self.get_item(item_id)
        forest = self.get_forest(item.owner_id)
        changed = forest.move(item_id, new_parent_id, new_order_index)

        updated = []
        try:
            for record in changed:
                updated.append(self.store.update(record.id, _fields(record, STRUCTURE_FIELDS), commit=False))
            self.store.commit()
        except Exception:
            logger.error(f"Move of {item_id} failed, rolling back {len(changed)} pending update(s)")
            self.store.rollback()
            raise
        logger.info(f"Moved training item {item_id} under {new_parent_id} at {new_order_index}")
        return updated

    def delete_item(self, item_id: str) -> List[TrainingItemRecord]:
        """
        删除条目及其子树，剩余同级节点重新编号。

        Returns:
            List[TrainingItemRecord]: order_index 被重新编号的同级记录
        """
        item = self.get_item(item_id)
        forest = self.get_forest(item.owner_id)
        renumbered = forest.remove(item_id)

        try:
            self.store.delete(item_id, commit=False)
            updated = [
                self.store.update(record.id, {"order_index": record.order_index}, commit=False)
                for record in renumbered
            ]
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise
        return updated

    def import_items(self, owner_id: str, batch: ImportBatch) -> ImportResult:
        """
        批量写入解析后的条目。条目需按父节点在前的顺序排列；
        导入的根节点追加在用户已有根节点之后。解析阶段的错误原样带回结果中。
        """
        if not batch.items:
            return ImportResult(success=False, errors=batch.errors or ["No training items found"])

        offset = len(self.get_forest(owner_id).roots)
        try:
            for item_in in batch.items:
                data = item_in.model_dump()
                data["owner_id"] = owner_id
                if data["parent_id"] is None:
                    data["order_index"] = (data["order_index"] or 0) + offset
                self.store.insert(data, commit=False)
            self.store.commit()
        except Exception:
            logger.error(f"Import of {len(batch.items)} item(s) for {owner_id} failed, rolled back")
            self.store.rollback()
            raise

        logger.info(f"Imported {len(batch.items)} training item(s) for {owner_id}")
        return ImportResult(
            success=True,
            items_imported=len(batch.items),
            errors=batch.errors,
            root_item_id=batch.root_item_id,
        )
