from sqlalchemy import Column, String, Integer, Date, DateTime, JSON, UniqueConstraint
from datetime import datetime, UTC
from microlearning.db.base_class import Base


def _utcnow():
    return datetime.now(UTC)


class ReviewPeriod(Base):
    """复盘周期模型

    每年分为两个半年周期，记录该周期的学习重点、指标和评估结果。

    Attributes:
        id: 唯一ID
        owner_id: 所属用户ID
        year: 年份
        period_number: 1（上半年）或 2（下半年）
        start_date / end_date: 周期起止日期
        status: 'planning', 'in_progress', 'review_pending', 'completed', 'archived'
        total_items / completed_items: 条目总数 / 周期内完成数
        total_estimated_minutes / actual_minutes_spent: 预计时长 / 实际投入
        self_assessment_score / team_lead_assessment_score: 1-10 评分
    """
    __tablename__ = "review_periods"

    id = Column(String, primary_key=True)
    owner_id = Column(String, index=True, nullable=False)
    year = Column(Integer, nullable=False)
    period_number = Column(Integer, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String, nullable=False, default="planning")

    hard_skill_focus = Column(String, nullable=True)
    soft_skill_focus = Column(String, nullable=True)
    goals = Column(JSON, nullable=False, default=list)

    total_items = Column(Integer, nullable=False, default=0)
    completed_items = Column(Integer, nullable=False, default=0)
    total_estimated_minutes = Column(Integer, nullable=False, default=0)
    actual_minutes_spent = Column(Integer, nullable=False, default=0)

    review_completed_at = Column(DateTime(timezone=True), nullable=True)
    self_assessment_score = Column(Integer, nullable=True)
    team_lead_assessment_score = Column(Integer, nullable=True)
    strengths_identified = Column(JSON, nullable=False, default=list)
    areas_for_improvement = Column(JSON, nullable=False, default=list)
    next_period_recommendations = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("owner_id", "year", "period_number", name="uq_review_period_owner_year_period"),
    )
