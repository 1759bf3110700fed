import logging
from typing import List

from sqlalchemy import text
from sqlalchemy.orm import Session

from microlearning.crud.base import CRUDBase
from microlearning.models.training_item import TrainingItem
from microlearning.schemas.training_item import TrainingItemCreate, TrainingItemUpdate

logger = logging.getLogger(__name__)


class CRUDTrainingItem(CRUDBase[TrainingItem, TrainingItemCreate, TrainingItemUpdate]):
    def collect_subtree_ids(self, db: Session, *, obj_id: str) -> List[str]:
        """
        按层收集子树ID，返回顺序为从根到最深一层
        """
        collected = [obj_id]
        frontier = [obj_id]
        while frontier:
            rows = db.query(TrainingItem.id).filter(TrainingItem.parent_id.in_(frontier)).all()
            frontier = [row[0] for row in rows]
            collected.extend(frontier)
        return collected

    @staticmethod
    def cascade_enabled(db: Session) -> bool:
        """存储层是否会执行 ON DELETE CASCADE（SQLite 需要打开外键约束）"""
        if db.get_bind().dialect.name == "sqlite":
            return bool(db.execute(text("PRAGMA foreign_keys")).scalar())
        return True

    def remove_subtree(self, db: Session, *, obj_id: str, commit: bool = True) -> List[str]:
        """
        删除条目及其整棵子树。

        存储支持级联删除时只发出一条 DELETE，由数据库删除后代；
        否则在应用层按从深到浅的顺序逐个删除。

        Returns:
            List[str]: 被删除的ID，不存在时为空列表
        """
        if self.get(db, obj_id) is None:
            return []
        subtree_ids = self.collect_subtree_ids(db, obj_id=obj_id)

        if self.cascade_enabled(db):
            db.query(TrainingItem).filter(TrainingItem.id == obj_id).delete(synchronize_session=False)
        else:
            logger.debug(f"Cascade not available, deleting {len(subtree_ids)} rows deepest-first")
            for item_id in reversed(subtree_ids):
                db.query(TrainingItem).filter(TrainingItem.id == item_id).delete(synchronize_session=False)
        # 批量删除绕过了会话，已加载的对象需要失效
        db.expire_all()

        if commit:
            db.commit()
        else:
            db.flush()
        return subtree_ids

# 实例化并暴露给服务层使用
training_item = CRUDTrainingItem(TrainingItem)
