from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from typing import Any, List, Literal, Optional, Union
from datetime import datetime
from enum import Enum

from microlearning.core.config import settings
from microlearning.core.exceptions import ValidationError


class SkillCategory(str, Enum):
    """技能类别"""
    TECHNICAL = "technical"
    LEADERSHIP = "leadership"
    COMMUNICATION = "communication"
    PROBLEM_SOLVING = "problem_solving"
    CREATIVITY = "creativity"
    PROJECT_MANAGEMENT = "project_management"
    COLLABORATION = "collaboration"
    LEARNING = "learning"


class SkillType(str, Enum):
    HARD_SKILL = "hard_skill"
    SOFT_SKILL = "soft_skill"


class DifficultyLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class TrainingStatus(str, Enum):
    """训练条目状态

    not_started -> in_progress -> completed 由进度更新自动推进，
    paused / archived 只能显式设置。
    """
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PAUSED = "paused"
    ARCHIVED = "archived"


class TrainingSource(str, Enum):
    MANUAL = "manual"
    ROADMAP_SH = "roadmap_sh"
    SPECKIT = "speckit"
    IMPORTED_CSV = "imported_csv"
    IMPORTED_JSON = "imported_json"


# 接口通用字段
class TrainingItemBase(BaseModel):
    """训练条目基础模型

    Attributes:
        title: 标题，不能为空
        description: 描述
        category: 技能类别
        skill_type: 硬技能/软技能
        difficulty_level: 难度
        estimated_duration_minutes: 自身预计时长（分钟），不包含子节点
        source: 来源
        source_url: 来源链接
        tags: 标签
    """
    title: str = Field(..., min_length=1, description="标题")
    description: Optional[str] = Field(None, description="描述")
    category: SkillCategory = SkillCategory.TECHNICAL
    skill_type: SkillType = SkillType.HARD_SKILL
    difficulty_level: DifficultyLevel = DifficultyLevel.BEGINNER
    estimated_duration_minutes: int = Field(settings.DEFAULT_DURATION_MINUTES, ge=0, description="自身预计时长（分钟）")
    source: TrainingSource = TrainingSource.MANUAL
    source_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        if not v.strip():
            raise ValueError('title must not be blank')
        return v.strip()


# 用于创建接口的输入模型
class TrainingItemCreate(TrainingItemBase):
    """训练条目创建模型

    id 可以由客户端（例如导入器）预先分配，以便在同一批数据中引用父节点；
    order_index 为空时追加到同级末尾。level 总是由服务端根据父节点重新计算。
    """
    id: Optional[str] = None
    owner_id: str = Field(..., min_length=1)
    parent_id: Optional[str] = None
    order_index: Optional[int] = Field(None, ge=0)
    level: int = Field(0, ge=0)
    status: TrainingStatus = TrainingStatus.NOT_STARTED
    progress_percentage: int = Field(0, ge=0, le=100)


# 用于更新接口的输入模型
class TrainingItemUpdate(BaseModel):
    """训练条目更新模型，只包含可以直接编辑的描述性字段"""
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    category: Optional[SkillCategory] = None
    skill_type: Optional[SkillType] = None
    difficulty_level: Optional[DifficultyLevel] = None
    estimated_duration_minutes: Optional[int] = Field(None, ge=0)
    source_url: Optional[str] = None
    tags: Optional[List[str]] = None

    # description 和 source_url 可以用 null 清空，其余字段在数据库中非空
    @field_validator('title', 'category', 'skill_type', 'difficulty_level', 'estimated_duration_minutes', 'tags')
    @classmethod
    def reject_null(cls, v, info):
        if v is None:
            raise ValueError(f'{info.field_name} cannot be null')
        return v


class TrainingItemRecord(TrainingItemBase):
    """训练条目记录

    存储边界上的强类型记录。所有从存储层读出的行都通过 from_row 转换，
    之后的代码不再接触原始行结构。
    """
    model_config = ConfigDict(from_attributes=True, validate_assignment=False)

    id: str
    owner_id: str
    parent_id: Optional[str] = None
    status: TrainingStatus = TrainingStatus.NOT_STARTED
    progress_percentage: int = Field(0, ge=0, le=100)
    completed_at: Optional[datetime] = None
    last_practiced_at: Optional[datetime] = None
    level: int = Field(0, ge=0)
    order_index: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any) -> "TrainingItemRecord":
        """将ORM对象或字典转换为记录，格式错误时抛出 ValidationError"""
        try:
            return cls.model_validate(row)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Malformed training item row: {e.error_count()} error(s)",
                errors=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
            ) from e

    def is_completed(self) -> bool:
        return self.status == TrainingStatus.COMPLETED or self.progress_percentage >= 100

    def can_start_practicing(self) -> bool:
        return self.status not in (TrainingStatus.COMPLETED, TrainingStatus.ARCHIVED)


class TrainingTreeNode(TrainingItemRecord):
    """嵌套的树节点视图，仅用于API响应

    Attributes:
        children: 按 order_index 排序的子节点
        total_estimated_minutes: 子树总预计时长
        overall_progress: 自身与直接子节点（递归计算）进度的简单平均
    """
    children: List["TrainingTreeNode"] = Field(default_factory=list)
    total_estimated_minutes: int = 0
    overall_progress: float = 0.0


class ProgressUpdateRequest(BaseModel):
    progress_percentage: float = Field(..., description="新的进度百分比，会被截断到[0,100]")


class StatusUpdateRequest(BaseModel):
    status: TrainingStatus


class MoveRequest(BaseModel):
    """移动请求

    Attributes:
        new_parent_id: 新的父节点ID，为空表示提升为根节点
        new_order_index: 在新同级列表中的位置
    """
    new_parent_id: Optional[str] = None
    new_order_index: int = Field(0, ge=0)


class UserStats(BaseModel):
    """用户学习统计

    total_estimated_hours 是所有节点自身时长的平铺求和，不按子树聚合。
    completion_rate 为百分比，空森林时为 0。
    """
    total_items: int = 0
    completed_items: int = 0
    in_progress_items: int = 0
    total_estimated_hours: float = 0.0
    hard_skills_count: int = 0
    soft_skills_count: int = 0
    completion_rate: float = 0.0


class ImportRequest(BaseModel):
    """导入请求

    Attributes:
        format: csv / speckit_csv / speckit_json / roadmap
        content: 文本或 JSON 内容；roadmap 格式可以省略，此时按 roadmap_id 从 roadmap.sh 仓库拉取
        roadmap_id: roadmap.sh 上的路线ID，例如 'frontend'
        title: roadmap 根节点标题，缺省为 '<Id> Roadmap'
    """
    format: Literal["csv", "speckit_csv", "speckit_json", "roadmap"]
    content: Optional[Union[str, dict]] = None
    roadmap_id: Optional[str] = Field(None, pattern=r"^[a-z0-9-]+$")
    title: Optional[str] = None

    @model_validator(mode="after")
    def check_source(self):
        if self.format == "roadmap":
            if not self.roadmap_id:
                raise ValueError("roadmap import requires roadmap_id")
        elif self.content is None:
            raise ValueError(f"{self.format} import requires content")
        return self


class RoadmapInfo(BaseModel):
    id: str
    title: str
    description: str
    url: str


class ImportResult(BaseModel):
    """导入结果

    Attributes:
        success: 是否成功
        items_imported: 写入的条目数
        errors: 逐行错误信息
        root_item_id: 第一个根节点的ID
    """
    success: bool
    items_imported: int = 0
    errors: List[str] = Field(default_factory=list)
    root_item_id: Optional[str] = None


TrainingTreeNode.model_rebuild()
