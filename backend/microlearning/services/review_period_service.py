"""
复盘周期服务

每年两个半年周期：第1期 1月1日-6月30日，第2期 7月1日-12月31日。
周期指标（条目数、完成数、时长）根据用户当前的训练森林重新计算。
"""
import logging
import uuid
from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from microlearning.core.exceptions import NotFoundError, ValidationError
from microlearning.crud.crud_review_period import review_period as crud_review_period
from microlearning.schemas.review_period import (
    ReviewPeriodCreate,
    ReviewPeriodRecord,
    ReviewPeriodSummary,
    ReviewPeriodUpdate,
    ReviewStatus,
)
from microlearning.services.training_service import TrainingService
from microlearning.services.training_tree import TrainingForest

logger = logging.getLogger(__name__)


def period_dates(year: int, period_number: int) -> Tuple[date, date]:
    if period_number == 1:
        return date(year, 1, 1), date(year, 6, 30)
    if period_number == 2:
        return date(year, 7, 1), date(year, 12, 31)
    raise ValidationError(f"period_number must be 1 or 2, got {period_number}")


def completion_percentage(period: ReviewPeriodRecord) -> float:
    if period.total_items <= 0:
        return 0.0
    return period.completed_items / period.total_items * 100


def time_efficiency(period: ReviewPeriodRecord) -> float:
    if period.total_estimated_minutes <= 0:
        return 0.0
    return period.actual_minutes_spent / period.total_estimated_minutes * 100


def is_active(period: ReviewPeriodRecord, today: Optional[date] = None) -> bool:
    today = today or date.today()
    return period.start_date <= today <= period.end_date


def days_until_end(period: ReviewPeriodRecord, today: Optional[date] = None) -> int:
    today = today or date.today()
    return (period.end_date - today).days


def can_start_review(period: ReviewPeriodRecord, today: Optional[date] = None) -> bool:
    today = today or date.today()
    return period.status == ReviewStatus.IN_PROGRESS and today >= period.end_date


def summarize(period: ReviewPeriodRecord, today: Optional[date] = None) -> ReviewPeriodSummary:
    today = today or date.today()
    return ReviewPeriodSummary(
        **period.model_dump(),
        completion_percentage=completion_percentage(period),
        time_efficiency=time_efficiency(period),
        is_active=is_active(period, today),
        days_until_end=days_until_end(period, today),
        can_start_review=can_start_review(period, today),
    )


def compute_metrics(period: ReviewPeriodRecord, forest: TrainingForest) -> dict:
    """
    根据训练森林计算周期指标：
    total_items / total_estimated_minutes 为全部条目的平铺统计，
    completed_items / actual_minutes_spent 只计入 completed_at 落在周期内的条目。
    """
    items = forest.flatten()
    completed = [
        item for item in items
        if item.completed_at is not None and period.start_date <= item.completed_at.date() <= period.end_date
    ]
    return {
        "total_items": len(items),
        "completed_items": len(completed),
        "total_estimated_minutes": sum(item.estimated_duration_minutes for item in items),
        "actual_minutes_spent": sum(item.estimated_duration_minutes for item in completed),
    }


class ReviewPeriodService:
    def __init__(self, db: Session, training_service: TrainingService):
        self.db = db
        self.training_service = training_service

    def list_periods(self, owner_id: str) -> List[ReviewPeriodSummary]:
        rows = crud_review_period.get_by_owner(self.db, owner_id=owner_id)
        return [summarize(ReviewPeriodRecord.model_validate(row)) for row in rows]

    def get_period(self, period_id: str) -> ReviewPeriodRecord:
        row = crud_review_period.get(self.db, period_id)
        if row is None:
            raise NotFoundError(period_id, kind="review period")
        return ReviewPeriodRecord.model_validate(row)

    def create_period(self, period_in: ReviewPeriodCreate) -> ReviewPeriodSummary:
        existing = crud_review_period.get_by_period(
            self.db, owner_id=period_in.owner_id, year=period_in.year, period_number=period_in.period_number
        )
        if existing is not None:
            raise ValidationError(
                f"Review period {period_in.year}/{period_in.period_number} already exists for {period_in.owner_id}"
            )

        data = period_in.model_dump()
        if data["start_date"] is None:
            data["start_date"], data["end_date"] = period_dates(period_in.year, period_in.period_number)
        data["id"] = uuid.uuid4().hex
        data["status"] = period_in.status.value

        row = crud_review_period.create(self.db, obj_in=data)
        logger.info(f"Created review period {period_in.year}/{period_in.period_number} for {period_in.owner_id}")
        return summarize(ReviewPeriodRecord.model_validate(row))

    def update_period(self, period_id: str, period_in: ReviewPeriodUpdate) -> ReviewPeriodSummary:
        row = crud_review_period.get(self.db, period_id)
        if row is None:
            raise NotFoundError(period_id, kind="review period")
        fields = period_in.model_dump(exclude_unset=True)
        if "status" in fields:
            fields["status"] = fields["status"].value
        row = crud_review_period.update(self.db, db_obj=row, obj_in=fields)
        return summarize(ReviewPeriodRecord.model_validate(row))

    def refresh_metrics(self, period_id: str) -> ReviewPeriodSummary:
        period = self.get_period(period_id)
        forest = self.training_service.get_forest(period.owner_id)
        metrics = compute_metrics(period, forest)
        row = crud_review_period.update(self.db, db_obj=crud_review_period.get(self.db, period_id), obj_in=metrics)
        logger.info(f"Refreshed metrics for review period {period_id}: {metrics}")
        return summarize(ReviewPeriodRecord.model_validate(row))
