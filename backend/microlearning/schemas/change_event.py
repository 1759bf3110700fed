from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import datetime, UTC
from enum import Enum

from microlearning.schemas.training_item import TrainingItemRecord, TrainingTreeNode


class ChangeType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    """训练条目变更事件

    每次存储层写入后发布，供树缓存刷新和websocket推送使用。

    Attributes:
        event_type: 变更类型
        owner_id: 条目所属用户
        item_id: 条目ID
        record: 变更后的记录，删除事件为空
        timestamp: 事件时间
    """
    event_type: ChangeType
    owner_id: str
    item_id: str
    record: Optional[TrainingItemRecord] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class TreeSnapshot(BaseModel):
    """websocket 连接建立或客户端请求刷新时推送的完整森林

    Attributes:
        event_type: 固定为 snapshot，用于和 ChangeEvent 区分
        owner_id: 用户ID
        version: 树缓存的序号
        tree: 嵌套的森林
    """
    event_type: Literal["snapshot"] = "snapshot"
    owner_id: str
    version: int
    tree: List[TrainingTreeNode] = Field(default_factory=list)
