"""
训练条目相关的异常类型

树算法中的错误（InvalidMoveError）在修改任何状态之前同步抛出；
存储层错误（NotFoundError）由服务层向上传递，不做自动重试。
"""
from typing import Any, List, Optional


class TrainingError(Exception):
    """所有训练条目错误的基类"""


class InvalidMoveError(TrainingError):
    """移动操作会产生环（移动到自身或自身后代之下）"""

    def __init__(self, item_id: str, new_parent_id: Optional[str], message: Optional[str] = None):
        self.item_id = item_id
        self.new_parent_id = new_parent_id
        super().__init__(
            message or f"Cannot move item {item_id} under {new_parent_id}: would create a cycle"
        )


class NotFoundError(TrainingError):
    """引用的ID在当前快照或存储中不存在"""

    def __init__(self, item_id: Any, kind: str = "training item"):
        self.item_id = item_id
        self.kind = kind
        super().__init__(f"{kind} {item_id} not found")


class ValidationError(TrainingError):
    """字段越界或格式错误（例如非数值的进度、无法解析的导入文档）"""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or [message]
        super().__init__(message)


class ExternalSourceError(TrainingError):
    """外部导入源（例如 roadmap.sh 内容仓库）不可用或返回了无法使用的内容"""
