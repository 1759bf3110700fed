"""
复盘周期测试：周期日期、派生指标和从训练森林刷新指标
"""
from datetime import date, datetime, UTC

import pytest

from microlearning.core.exceptions import ValidationError
from microlearning.schemas.review_period import ReviewPeriodCreate, ReviewPeriodRecord, ReviewStatus
from microlearning.schemas.training_item import TrainingItemCreate, TrainingItemRecord
from microlearning.services.review_period_service import (
    ReviewPeriodService,
    can_start_review,
    completion_percentage,
    compute_metrics,
    days_until_end,
    is_active,
    period_dates,
    time_efficiency,
)
from microlearning.services.training_tree import build_tree

OWNER = "user-1"


def make_period(**kwargs):
    start, end = period_dates(2025, 1)
    data = dict(id="p1", owner_id=OWNER, year=2025, period_number=1, start_date=start, end_date=end)
    data.update(kwargs)
    return ReviewPeriodRecord(**data)


def test_period_dates():
    assert period_dates(2025, 1) == (date(2025, 1, 1), date(2025, 6, 30))
    assert period_dates(2025, 2) == (date(2025, 7, 1), date(2025, 12, 31))
    with pytest.raises(ValidationError):
        period_dates(2025, 3)


def test_ratios_handle_zero_denominators():
    period = make_period()
    assert completion_percentage(period) == 0
    assert time_efficiency(period) == 0

    period = make_period(total_items=4, completed_items=1, total_estimated_minutes=200, actual_minutes_spent=50)
    assert completion_percentage(period) == 25.0
    assert time_efficiency(period) == 25.0


def test_activity_and_review_window():
    period = make_period(status=ReviewStatus.IN_PROGRESS)

    assert is_active(period, date(2025, 3, 1))
    assert not is_active(period, date(2025, 7, 1))
    assert days_until_end(period, date(2025, 6, 20)) == 10
    assert not can_start_review(period, date(2025, 6, 29))
    assert can_start_review(period, date(2025, 6, 30))
    assert not can_start_review(make_period(status=ReviewStatus.PLANNING), date(2025, 7, 1))


def test_compute_metrics_counts_completions_inside_period():
    items = [
        TrainingItemRecord(id="a", owner_id=OWNER, title="A", estimated_duration_minutes=60,
                           completed_at=datetime(2025, 2, 1, tzinfo=UTC)),
        TrainingItemRecord(id="b", owner_id=OWNER, parent_id="a", title="B", level=1, estimated_duration_minutes=30,
                           completed_at=datetime(2025, 8, 1, tzinfo=UTC)),
        TrainingItemRecord(id="c", owner_id=OWNER, title="C", order_index=1, estimated_duration_minutes=10),
    ]
    metrics = compute_metrics(make_period(), build_tree(items))
    assert metrics == {
        "total_items": 3,
        "completed_items": 1,
        "total_estimated_minutes": 100,
        "actual_minutes_spent": 60,
    }


def test_create_period_rejects_mismatched_dates():
    with pytest.raises(ValueError):
        ReviewPeriodCreate(owner_id=OWNER, year=2025, period_number=1, start_date=date(2025, 6, 1))
    with pytest.raises(ValueError):
        ReviewPeriodCreate(owner_id=OWNER, year=2025, period_number=1,
                           start_date=date(2025, 6, 1), end_date=date(2025, 1, 1))


def test_service_creates_and_refreshes(db, service):
    periods = ReviewPeriodService(db, service)
    created = periods.create_period(ReviewPeriodCreate(owner_id=OWNER, year=2025, period_number=2))
    assert created.start_date == date(2025, 7, 1)
    assert created.end_date == date(2025, 12, 31)
    assert created.status == ReviewStatus.PLANNING

    with pytest.raises(ValidationError):
        periods.create_period(ReviewPeriodCreate(owner_id=OWNER, year=2025, period_number=2))

    service.create_item(TrainingItemCreate(id="x", owner_id=OWNER, title="Item x"))
    refreshed = periods.refresh_metrics(created.id)
    assert refreshed.total_items == 1
    assert refreshed.total_estimated_minutes == 30
    assert [p.id for p in periods.list_periods(OWNER)] == [created.id]


def test_review_period_endpoints(client):
    response = client.post(
        f"/api/v1/review-periods/users/{OWNER}",
        json={"owner_id": OWNER, "year": 2025, "period_number": 1, "goals": ["Ship the importer"]},
    )
    assert response.status_code == 201
    period = response.json()["data"]
    assert period["start_date"] == "2025-01-01"
    assert period["goals"] == ["Ship the importer"]

    response = client.post(f"/api/v1/review-periods/{period['id']}/refresh-metrics")
    assert response.status_code == 200
    assert response.json()["data"]["total_items"] == 0

    response = client.patch(f"/api/v1/review-periods/{period['id']}", json={"self_assessment_score": 8})
    assert response.json()["data"]["self_assessment_score"] == 8

    listed = client.get(f"/api/v1/review-periods/users/{OWNER}").json()["data"]
    assert [p["id"] for p in listed] == [period["id"]]

    assert client.post("/api/v1/review-periods/missing/refresh-metrics").status_code == 404


def test_review_period_update_rejects_null_for_required_fields(client):
    response = client.post(
        f"/api/v1/review-periods/users/{OWNER}",
        json={"owner_id": OWNER, "year": 2025, "period_number": 2, "goals": ["Pair weekly"]},
    )
    period = response.json()["data"]

    for field in ("status", "goals", "actual_minutes_spent"):
        response = client.patch(f"/api/v1/review-periods/{period['id']}", json={field: None})
        assert response.status_code == 422, field

    listed = client.get(f"/api/v1/review-periods/users/{OWNER}").json()["data"]
    assert listed[0]["status"] == "planning"
    assert listed[0]["goals"] == ["Pair weekly"]

    response = client.patch(
        f"/api/v1/review-periods/{period['id']}",
        json={"self_assessment_score": 7, "hard_skill_focus": "SQL"},
    )
    assert response.json()["data"]["hard_skill_focus"] == "SQL"

    response = client.patch(
        f"/api/v1/review-periods/{period['id']}",
        json={"self_assessment_score": None, "hard_skill_focus": None},
    )
    assert response.status_code == 200
    assert response.json()["data"]["self_assessment_score"] is None
    assert response.json()["data"]["hard_skill_focus"] is None
