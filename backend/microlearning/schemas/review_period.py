from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import List, Optional
from datetime import date, datetime
from enum import Enum


class ReviewStatus(str, Enum):
    PLANNING = "planning"
    IN_PROGRESS = "in_progress"
    REVIEW_PENDING = "review_pending"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class ReviewPeriodCreate(BaseModel):
    """复盘周期创建模型

    start_date / end_date 为空时根据 year 和 period_number 计算：
    第1期为 1月1日-6月30日，第2期为 7月1日-12月31日。
    """
    owner_id: str = Field(..., min_length=1)
    year: int = Field(..., ge=1970, le=9999)
    period_number: int = Field(..., ge=1, le=2)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: ReviewStatus = ReviewStatus.PLANNING
    hard_skill_focus: Optional[str] = None
    soft_skill_focus: Optional[str] = None
    goals: List[str] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_dates(self):
        if (self.start_date is None) != (self.end_date is None):
            raise ValueError('start_date and end_date must be given together')
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError('start_date must not be after end_date')
        return self


class ReviewPeriodUpdate(BaseModel):
    status: Optional[ReviewStatus] = None
    hard_skill_focus: Optional[str] = None
    soft_skill_focus: Optional[str] = None
    goals: Optional[List[str]] = None
    actual_minutes_spent: Optional[int] = Field(None, ge=0)
    self_assessment_score: Optional[int] = Field(None, ge=1, le=10)
    team_lead_assessment_score: Optional[int] = Field(None, ge=1, le=10)
    strengths_identified: Optional[List[str]] = None
    areas_for_improvement: Optional[List[str]] = None
    next_period_recommendations: Optional[List[str]] = None

    # 只有重点方向和评分可以用 null 清空
    @field_validator('status', 'goals', 'actual_minutes_spent', 'strengths_identified',
                     'areas_for_improvement', 'next_period_recommendations')
    @classmethod
    def reject_null(cls, v, info):
        if v is None:
            raise ValueError(f'{info.field_name} cannot be null')
        return v


class ReviewPeriodRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    year: int
    period_number: int
    start_date: date
    end_date: date
    status: ReviewStatus = ReviewStatus.PLANNING
    hard_skill_focus: Optional[str] = None
    soft_skill_focus: Optional[str] = None
    goals: List[str] = Field(default_factory=list)
    total_items: int = 0
    completed_items: int = 0
    total_estimated_minutes: int = 0
    actual_minutes_spent: int = 0
    review_completed_at: Optional[datetime] = None
    self_assessment_score: Optional[int] = Field(None, ge=1, le=10)
    team_lead_assessment_score: Optional[int] = Field(None, ge=1, le=10)
    strengths_identified: List[str] = Field(default_factory=list)
    areas_for_improvement: List[str] = Field(default_factory=list)
    next_period_recommendations: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReviewPeriodSummary(ReviewPeriodRecord):
    """带派生指标的复盘周期视图"""
    completion_percentage: float = 0.0
    time_efficiency: float = 0.0
    is_active: bool = False
    days_until_end: int = 0
    can_start_review: bool = False
