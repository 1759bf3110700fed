from typing import List

from fastapi import APIRouter, Depends, status

from microlearning.config.dependency_injection import get_review_period_service
from microlearning.core.exceptions import ValidationError
from microlearning.schemas.response import StandardResponse
from microlearning.schemas.review_period import ReviewPeriodCreate, ReviewPeriodSummary, ReviewPeriodUpdate
from microlearning.services.review_period_service import ReviewPeriodService

router = APIRouter()


@router.get("/users/{owner_id}", response_model=StandardResponse[List[ReviewPeriodSummary]])
def list_review_periods(owner_id: str, service: ReviewPeriodService = Depends(get_review_period_service)):
    return StandardResponse(data=service.list_periods(owner_id))


@router.post("/users/{owner_id}", response_model=StandardResponse[ReviewPeriodSummary], status_code=status.HTTP_201_CREATED)
def create_review_period(
        owner_id: str,
        period_in: ReviewPeriodCreate,
        service: ReviewPeriodService = Depends(get_review_period_service)
):
    """
    创建复盘周期；未指定起止日期时按半年周期计算
    """
    if period_in.owner_id != owner_id:
        raise ValidationError(f"owner_id in body ({period_in.owner_id}) does not match path ({owner_id})")
    return StandardResponse(data=service.create_period(period_in))


@router.patch("/{period_id}", response_model=StandardResponse[ReviewPeriodSummary])
def update_review_period(
        period_id: str,
        period_in: ReviewPeriodUpdate,
        service: ReviewPeriodService = Depends(get_review_period_service)
):
    return StandardResponse(data=service.update_period(period_id, period_in))


@router.post("/{period_id}/refresh-metrics", response_model=StandardResponse[ReviewPeriodSummary])
def refresh_review_period_metrics(period_id: str, service: ReviewPeriodService = Depends(get_review_period_service)):
    """
    根据用户当前的训练条目重新计算周期指标
    """
    return StandardResponse(data=service.refresh_metrics(period_id))
