"""
训练条目树模型

在内存中以"arena + ID"的方式表示学习内容森林：
- nodes:    id -> TrainingItemRecord
- children: id -> 有序的子节点ID列表
- roots:    有序的根节点ID列表

节点之间不保存对象引用，父子关系只通过ID表达，因此森林可以直接序列化，
也不存在循环引用。所有算法（构建、遍历、聚合）都是纯同步函数。

不变量：
- level(node) == level(parent) + 1，根节点 level == 0
- 同级节点按 order_index 升序排列；每次修改后受影响的同级列表被重新编号为 0..n-1
- progress_percentage == 100 <=> status == completed <=> completed_at 非空
- 节点永远不会成为自己的祖先
"""
import logging
import math
from datetime import datetime, UTC
from numbers import Real
from typing import Dict, Iterable, Iterator, List, Optional

from microlearning.core.config import settings
from microlearning.core.exceptions import InvalidMoveError, NotFoundError, ValidationError
from microlearning.schemas.training_item import (
    SkillType,
    TrainingItemRecord,
    TrainingStatus,
    TrainingTreeNode,
    UserStats,
)

logger = logging.getLogger(__name__)


class TrainingForest:
    """训练条目森林（零个或多个互不相交的树）"""

    def __init__(self):
        self.nodes: Dict[str, TrainingItemRecord] = {}
        self.children: Dict[str, List[str]] = {}
        self.roots: List[str] = []

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------
    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self.nodes

    def __iter__(self) -> Iterator[TrainingItemRecord]:
        return iter(self.flatten())

    def get(self, item_id: str) -> TrainingItemRecord:
        try:
            return self.nodes[item_id]
        except KeyError:
            raise NotFoundError(item_id) from None

    def parent_id_of(self, item_id: str) -> Optional[str]:
        """有效父节点ID；父节点不在当前快照中时视为根节点"""
        parent_id = self.get(item_id).parent_id
        if parent_id is not None and parent_id in self.nodes:
            return parent_id
        return None

    def children_of(self, item_id: str) -> List[TrainingItemRecord]:
        self.get(item_id)
        return [self.nodes[child_id] for child_id in self.children.get(item_id, [])]

    def root_items(self) -> List[TrainingItemRecord]:
        return [self.nodes[root_id] for root_id in self.roots]

    def ancestors(self, item_id: str) -> List[str]:
        """从父节点一直向上到根节点的ID链"""
        chain = []
        current = self.parent_id_of(item_id)
        while current is not None:
            chain.append(current)
            current = self.parent_id_of(current)
        return chain

    def is_descendant(self, candidate_id: str, ancestor_id: str) -> bool:
        return ancestor_id in self.ancestors(candidate_id)

    def subtree_ids(self, item_id: str) -> List[str]:
        """以 item_id 为根的子树，先序遍历"""
        self.get(item_id)
        return list(self._walk([item_id]))

    def flatten(self) -> List[TrainingItemRecord]:
        """先序遍历整片森林：父节点先于子节点，子节点按同级顺序"""
        return [self.nodes[node_id] for node_id in self._walk(self.roots)]

    def _walk(self, start_ids: Iterable[str]) -> Iterator[str]:
        # 显式栈，避免深树触发递归上限
        stack = list(reversed(list(start_ids)))
        while stack:
            node_id = stack.pop()
            yield node_id
            stack.extend(reversed(self.children.get(node_id, [])))

    def _siblings(self, parent_id: Optional[str]) -> List[str]:
        if parent_id is None:
            return self.roots
        return self.children.setdefault(parent_id, [])

    # ------------------------------------------------------------------
    # 修改
    # ------------------------------------------------------------------
    def _renumber(self, parent_id: Optional[str]) -> List[str]:
        """将同级列表的 order_index 重写为 0..n-1，返回发生变化的节点ID"""
        changed = []
        for index, node_id in enumerate(self._siblings(parent_id)):
            node = self.nodes[node_id]
            if node.order_index != index:
                node.order_index = index
                changed.append(node_id)
        return changed

    def _relevel(self, item_id: str) -> List[str]:
        """根据父节点重新计算 item_id 及其所有后代的 level"""
        changed = []
        for node_id in self._walk([item_id]):
            parent_id = self.parent_id_of(node_id)
            level = 0 if parent_id is None else self.nodes[parent_id].level + 1
            node = self.nodes[node_id]
            if node.level != level:
                node.level = level
                changed.append(node_id)
        return changed

    def move(self, item_id: str, new_parent_id: Optional[str], new_order_index: int) -> List[TrainingItemRecord]:
        """
        将节点移动到新的父节点下（new_parent_id 为空表示提升为根节点）。

        先完成全部校验再修改状态，校验失败时森林保持不变。
        移动后被移动节点及其所有后代的 level 都会重新计算，
        新旧两个同级列表的 order_index 都会重新编号。

        Returns:
            List[TrainingItemRecord]: 持久化字段发生变化的记录，按先序排列
        """
        item = self.get(item_id)
        if new_parent_id is not None:
            self.get(new_parent_id)
            if new_parent_id == item_id or self.is_descendant(new_parent_id, item_id):
                logger.warning(f"Rejected move of {item_id} under {new_parent_id}")
                raise InvalidMoveError(item_id, new_parent_id)

        old_parent_id = self.parent_id_of(item_id)
        self._siblings(old_parent_id).remove(item_id)

        target = self._siblings(new_parent_id)
        position = max(0, min(new_order_index, len(target)))
        target.insert(position, item_id)

        changed = set()
        if item.parent_id != new_parent_id:
            item.parent_id = new_parent_id
            changed.add(item_id)
        changed.update(self._relevel(item_id))
        changed.update(self._renumber(old_parent_id))
        if new_parent_id != old_parent_id:
            changed.update(self._renumber(new_parent_id))

        return [self.nodes[node_id] for node_id in self._walk(self.roots) if node_id in changed]

    def add_child(self, parent_id: Optional[str], child: TrainingItemRecord) -> TrainingItemRecord:
        """
        追加子节点到父节点的子列表末尾（parent_id 为空时追加为根节点）。

        设置 child.parent_id、child.level = parent.level + 1、child.order_index = 子节点数量。
        """
        if parent_id is not None:
            self.get(parent_id)
        if child.id in self.nodes:
            raise ValidationError(f"Duplicate training item id {child.id}")

        node = child.model_copy(deep=True)
        node.parent_id = parent_id
        siblings = self._siblings(parent_id)
        node.order_index = len(siblings)
        self.nodes[node.id] = node
        siblings.append(node.id)
        self._relevel(node.id)
        return node

    def remove_child(self, parent_id: Optional[str], child_id: str) -> List[TrainingItemRecord]:
        """
        从父节点移除子节点（连同整棵子树），剩余同级节点按原相对顺序重新编号为 0..n-1。

        Returns:
            List[TrainingItemRecord]: order_index 发生变化的同级记录
        """
        self.get(child_id)
        if self.parent_id_of(child_id) != parent_id:
            raise NotFoundError(child_id)

        removed = self.subtree_ids(child_id)
        self._siblings(parent_id).remove(child_id)
        for node_id in removed:
            self.nodes.pop(node_id, None)
            self.children.pop(node_id, None)

        return [self.nodes[node_id] for node_id in self._renumber(parent_id)]

    def remove(self, item_id: str) -> List[TrainingItemRecord]:
        return self.remove_child(self.parent_id_of(item_id), item_id)

    def replace(self, record: TrainingItemRecord) -> TrainingItemRecord:
        """用同ID的新记录替换节点（结构字段必须一致）"""
        current = self.get(record.id)
        if record.parent_id != current.parent_id:
            raise ValidationError("replace() cannot change parent_id; use move()")
        self.nodes[record.id] = record
        return record

    # ------------------------------------------------------------------
    # 视图
    # ------------------------------------------------------------------
    def to_nested(self) -> List[TrainingTreeNode]:
        """生成嵌套的树节点视图（附带子树时长和整体进度）"""
        totals = {}
        progress = {}
        views: Dict[str, TrainingTreeNode] = {}
        for node_id in reversed(list(self._walk(self.roots))):
            record = self.nodes[node_id]
            child_ids = self.children.get(node_id, [])
            totals[node_id] = record.estimated_duration_minutes + sum(totals[c] for c in child_ids)
            progress[node_id] = _average_progress(record, [progress[c] for c in child_ids])
            views[node_id] = TrainingTreeNode(
                **record.model_dump(),
                children=[views[c] for c in child_ids],
                total_estimated_minutes=totals[node_id],
                overall_progress=progress[node_id],
            )
        return [views[root_id] for root_id in self.roots]


def build_tree(items: Iterable[TrainingItemRecord]) -> TrainingForest:
    """
    将平铺、无序的训练条目集合组装成森林。

    父节点不在集合中（部分查询的结果）时，该条目成为森林中的根节点。
    每一层的子节点都按 order_index 升序排列，相同 order_index 保持输入顺序。
    输入记录会被复制，调用方的对象不会被修改。
    """
    forest = TrainingForest()
    ordered: List[str] = []
    for item in items:
        if item.id in forest.nodes:
            raise ValidationError(f"Duplicate training item id {item.id}")
        forest.nodes[item.id] = item.model_copy(deep=True)
        ordered.append(item.id)

    for item_id in ordered:
        parent_id = forest.nodes[item_id].parent_id
        if parent_id is not None and parent_id in forest.nodes:
            forest.children.setdefault(parent_id, []).append(item_id)
        else:
            forest.roots.append(item_id)

    def by_order(node_id: str) -> int:
        return forest.nodes[node_id].order_index

    # sorted 是稳定排序，相同 order_index 保持输入顺序
    forest.roots = sorted(forest.roots, key=by_order)
    for parent_id, child_ids in forest.children.items():
        forest.children[parent_id] = sorted(child_ids, key=by_order)
    return forest


def flatten(forest: TrainingForest) -> List[TrainingItemRecord]:
    return forest.flatten()


def move(
    forest: TrainingForest, item_id: str, new_parent_id: Optional[str], new_order_index: int
) -> List[TrainingItemRecord]:
    return forest.move(item_id, new_parent_id, new_order_index)


def add_child(forest: TrainingForest, parent_id: Optional[str], child: TrainingItemRecord) -> TrainingItemRecord:
    return forest.add_child(parent_id, child)


def remove_child(forest: TrainingForest, parent_id: Optional[str], child_id: str) -> List[TrainingItemRecord]:
    return forest.remove_child(parent_id, child_id)


def _clamp_percentage(value) -> int:
    if isinstance(value, bool) or not isinstance(value, Real):
        raise ValidationError(f"progress_percentage must be numeric, got {value!r}")
    if math.isnan(value):
        raise ValidationError("progress_percentage must not be NaN")
    return int(round(max(0, min(100, value))))


def update_progress(
    item: TrainingItemRecord,
    new_percentage,
    now: Optional[datetime] = None,
    preserve_first_completion: Optional[bool] = None,
) -> TrainingItemRecord:
    """
    更新进度并推进状态机，返回新的记录（不修改传入对象）。

    - 进度被截断到 [0,100]
    - last_practiced_at 总是更新为当前时间
    - 达到 100：status=completed，设置 completed_at
      （preserve_first_completion 为真时，已完成条目保留首次完成时间）
    - 大于 0 且状态为 not_started：status=in_progress
    - 其他情况状态不变；进度从100降低不会自动撤销 completed
    """
    percentage = _clamp_percentage(new_percentage)
    now = now or datetime.now(UTC)
    if preserve_first_completion is None:
        preserve_first_completion = settings.PRESERVE_FIRST_COMPLETION

    updated = item.model_copy(deep=True)
    updated.progress_percentage = percentage
    updated.last_practiced_at = now
    updated.updated_at = now

    if percentage >= 100:
        already_completed = item.status == TrainingStatus.COMPLETED and item.completed_at is not None
        if not (preserve_first_completion and already_completed):
            updated.completed_at = now
        updated.status = TrainingStatus.COMPLETED
    elif percentage > 0 and item.status == TrainingStatus.NOT_STARTED:
        updated.status = TrainingStatus.IN_PROGRESS
    return updated


def set_status(item: TrainingItemRecord, status: TrainingStatus, now: Optional[datetime] = None) -> TrainingItemRecord:
    """显式修改状态，同时维护 100% <=> completed <=> completed_at 的对应关系"""
    now = now or datetime.now(UTC)
    updated = item.model_copy(deep=True)
    updated.status = status
    updated.updated_at = now
    if status == TrainingStatus.COMPLETED:
        updated.progress_percentage = 100
        if updated.completed_at is None:
            updated.completed_at = now
    else:
        updated.completed_at = None
        updated.progress_percentage = min(updated.progress_percentage, 99)
    return updated


def get_total_estimated_time(forest: TrainingForest, node_id: str) -> int:
    """子树总预计时长（分钟）：自身时长加上所有后代的自身时长"""
    return sum(forest.nodes[i].estimated_duration_minutes for i in forest.subtree_ids(node_id))


def _average_progress(record: TrainingItemRecord, child_progress: List[float]) -> float:
    if not child_progress:
        return record.progress_percentage
    return (record.progress_percentage + sum(child_progress)) / (1 + len(child_progress))


def get_overall_progress(forest: TrainingForest, node_id: str) -> float:
    """
    整体进度：叶子节点返回自身进度；否则为自身进度与每个直接子节点
    整体进度（递归计算）的简单算术平均，即 (self + Σchild) / (1 + 子节点数)。

    不按时长加权：一个100%的子节点和一个0%的子节点贡献相同，
    与各自子树的大小无关。
    """
    progress: Dict[str, float] = {}
    for current in reversed(forest.subtree_ids(node_id)):
        child_ids = forest.children.get(current, [])
        progress[current] = _average_progress(forest.nodes[current], [progress[c] for c in child_ids])
    return progress[node_id]


def get_user_stats(forest: TrainingForest) -> UserStats:
    """基于整片森林的平铺结果计算统计信息"""
    items = forest.flatten()
    total = len(items)
    completed = sum(1 for item in items if item.is_completed())
    return UserStats(
        total_items=total,
        completed_items=completed,
        in_progress_items=sum(1 for item in items if item.status == TrainingStatus.IN_PROGRESS),
        total_estimated_hours=sum(item.estimated_duration_minutes / 60 for item in items),
        hard_skills_count=sum(1 for item in items if item.skill_type == SkillType.HARD_SKILL),
        soft_skills_count=sum(1 for item in items if item.skill_type == SkillType.SOFT_SKILL),
        completion_rate=(completed / total) * 100 if total > 0 else 0,
    )


def search(forest: TrainingForest, text: str) -> List[TrainingItemRecord]:
    """在标题、描述和标签中做不区分大小写的匹配，按先序返回"""
    needle = text.strip().lower()
    if not needle:
        return []
    results = []
    for item in forest.flatten():
        haystack = [item.title, item.description or ""] + list(item.tags)
        if any(needle in value.lower() for value in haystack):
            results.append(item)
    return results
