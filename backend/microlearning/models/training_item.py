from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey, Index, Text
from datetime import datetime, UTC
from microlearning.db.base_class import Base


def _utcnow():
    return datetime.now(UTC)


class TrainingItem(Base):
    """训练条目模型

    学习内容树中的一个节点。树结构通过 parent_id 自引用表示，
    删除父节点时数据库通过 ON DELETE CASCADE 级联删除整棵子树。

    Attributes:
        id: 不透明的唯一ID
        owner_id: 所属用户ID
        parent_id: 父节点ID，为空表示根节点
        title: 标题
        description: 描述
        category: 技能类别，如 'technical', 'leadership'
        skill_type: 'hard_skill' 或 'soft_skill'
        difficulty_level: 难度，'beginner' 到 'expert'
        estimated_duration_minutes: 自身预计时长（不含子节点）
        status: 学习状态
        progress_percentage: 进度百分比 [0,100]
        completed_at: 完成时间
        last_practiced_at: 最近练习时间
        source: 条目来源，如 'manual', 'imported_csv'
        source_url: 来源链接
        tags: 标签列表
        level: 树深度，根节点为0
        order_index: 同级排序键
    """
    __tablename__ = "training_items"

    id = Column(String, primary_key=True)
    owner_id = Column(String, index=True, nullable=False)
    parent_id = Column(String, ForeignKey("training_items.id", ondelete="CASCADE"), nullable=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=False, default="technical")
    skill_type = Column(String, nullable=False, default="hard_skill")
    difficulty_level = Column(String, nullable=False, default="beginner")
    estimated_duration_minutes = Column(Integer, nullable=False, default=30)

    status = Column(String, nullable=False, default="not_started")
    progress_percentage = Column(Integer, nullable=False, default=0)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    last_practiced_at = Column(DateTime(timezone=True), nullable=True)

    source = Column(String, nullable=False, default="manual")
    source_url = Column(String, nullable=True)
    tags = Column(JSON, nullable=False, default=list)

    level = Column(Integer, nullable=False, default=0)
    order_index = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_training_items_owner_parent", "owner_id", "parent_id"),
    )
